from bs4 import BeautifulSoup

from directory.collectors import enricher
from directory.core.config import Settings
from directory.core.models import EntityType, RawCandidate

SETTINGS = Settings(request_delay_seconds=0)

HOME_PAGE = """
<html><body>
  <p>Call 0803 123 4567 or write to Info@TentKings.ng</p>
  <a href="https://wa.me/2348090000000">WhatsApp</a>
  <a href="https://www.instagram.com/tentkings/">Instagram</a>
  <a href="/contact-us">Contact</a>
  <a href="https://other.ng/contact">Elsewhere</a>
</body></html>
"""

CONTACT_PAGE = """
<html><body>
  <a href="mailto:sales@tentkings.ng?subject=Quote">Sales</a>
  <a href="tel:+2348031112222">Office</a>
</body></html>
"""


class DummyResponse:
    def __init__(self, text="", status_code=200, url="", content_type="text/html"):
        self.text = text
        self.status_code = status_code
        self.url = url
        self.headers = {"Content-Type": content_type}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise enricher.requests.HTTPError(f"{self.status_code}")


class DummySession:
    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    def get(self, url, timeout=None, **kwargs):
        self.requested.append(url)
        page = self.pages.get(url)
        if page is None:
            return DummyResponse(status_code=404, url=url)
        return DummyResponse(page, url=url)


def test_sanitize_website():
    assert enricher.sanitize_website("tentkings.ng") == "https://tentkings.ng/"
    assert enricher.sanitize_website("https://tentkings.ng/about#team") == "https://tentkings.ng/about"
    assert enricher.sanitize_website("  ") is None


def test_extract_helpers():
    assert enricher.extract_emails("Mail INFO@shop.ng or info@shop.ng") == ["info@shop.ng"]
    assert enricher.extract_phone_strings("Call 0803 123 4567 or +234 809 000 0000") == [
        "0803 123 4567",
        "+234 809 000 0000",
    ]


def test_extract_links_sorts_contact_channels():
    soup = BeautifulSoup(HOME_PAGE + CONTACT_PAGE, "html.parser")

    emails, phones, whatsapp, socials = enricher.extract_links(soup, "https://tentkings.ng/")

    assert emails == ["sales@tentkings.ng"]
    assert phones == ["+2348031112222"]
    assert whatsapp == ["2348090000000"]
    assert socials == ["https://www.instagram.com/tentkings"]


def test_crawl_follows_same_domain_contact_pages():
    session = DummySession(
        {
            "https://tentkings.ng/robots.txt": "User-agent: *\nDisallow: /private\n",
            "https://tentkings.ng/": HOME_PAGE,
            "https://tentkings.ng/contact-us": CONTACT_PAGE,
        }
    )
    crawler = enricher.WebsiteEnricher(settings=SETTINGS, session=session, sleep=lambda _: None)

    found = crawler.crawl("tentkings.ng")

    assert "https://other.ng/contact" not in session.requested
    assert found["emails"] == ["info@tentkings.ng", "sales@tentkings.ng"]
    assert "0803 123 4567" in found["phones"]
    assert "+2348031112222" in found["phones"]
    assert found["whatsapp"] == ["2348090000000"]
    assert found["socials"] == ["https://www.instagram.com/tentkings"]


def test_crawl_respects_robots():
    session = DummySession(
        {
            "https://tentkings.ng/robots.txt": "User-agent: *\nDisallow: /\n",
            "https://tentkings.ng/": HOME_PAGE,
        }
    )
    crawler = enricher.WebsiteEnricher(settings=SETTINGS, session=session, sleep=lambda _: None)

    found = crawler.crawl("https://tentkings.ng")

    assert session.requested == ["https://tentkings.ng/robots.txt"]
    assert found == {"emails": [], "phones": [], "whatsapp": [], "socials": []}


def test_enrich_only_touches_suppliers_with_websites():
    session = DummySession({"https://tentkings.ng/": CONTACT_PAGE})
    crawler = enricher.WebsiteEnricher(settings=SETTINGS, session=session, sleep=lambda _: None)
    supplier = RawCandidate(
        name="Tent Kings",
        source_url="https://maps.example/1",
        source_platform="maps",
        phones=["0803 123 4567"],
        websites=["https://tentkings.ng"],
    )
    event = RawCandidate(
        name="Wedding",
        source_url="https://eventbrite.example/1",
        source_platform="eventbrite",
        entity_type=EntityType.EVENT,
        websites=["https://tentkings.ng"],
    )

    enriched = crawler.enrich(supplier)

    assert enriched.emails == ["sales@tentkings.ng"]
    assert enriched.phones == ["0803 123 4567", "+2348031112222"]
    assert supplier.emails == []
    assert crawler.enrich(event) is event
