"""BusinessList Nigeria directory collector."""

from __future__ import annotations

import logging
from typing import List

from bs4 import BeautifulSoup

from directory.collectors.base import Collector, absolute_link, text_of
from directory.core.models import EntityType, RawCandidate, utcnow

logger = logging.getLogger(__name__)

BASE_URL = "https://www.businesslist.ng"
CATEGORIES = ("event-equipment", "party-supplies", "rental-services")
CARD_SELECTOR = "div.company, .company-item, article.listing"


def parse_listing_page(soup: BeautifulSoup, page_url: str) -> List[RawCandidate]:
    observed_at = utcnow()
    candidates: List[RawCandidate] = []
    for card in soup.select(CARD_SELECTOR):
        name = text_of(card, "h4, h3, .company-name")
        link = absolute_link(card, page_url)
        if not name or not link:
            continue

        phones = [node.get_text(" ", strip=True) for node in card.select(".phone, [itemprop='telephone']")]
        websites = [
            anchor["href"].strip()
            for anchor in card.select("a.website[href], a[rel~='nofollow'][href^='http']")
            if "businesslist" not in anchor["href"]
        ]
        emails = [
            anchor["href"].split(":", 1)[1]
            for anchor in card.select("a[href^='mailto:']")
        ]
        description = text_of(card, ".details, .description, p")
        tags = [node.get_text(" ", strip=True) for node in card.select(".tags a, .category a")]

        candidates.append(
            RawCandidate(
                name=name,
                source_url=link,
                source_platform=BusinessListCollector.source_platform,
                entity_type=EntityType.SUPPLIER,
                address=text_of(card, ".address, [itemprop='address']") or None,
                phones=[phone for phone in phones if phone],
                emails=emails,
                websites=websites,
                product_examples=[tag for tag in tags if tag],
                notes=description or None,
                registration_number=text_of(card, ".reg-number, .registration") or None,
                observed_at=observed_at,
            )
        )
    return candidates


def has_next_page(soup: BeautifulSoup) -> bool:
    return soup.select_one("a[rel='next'], .pages_container a.pages_arrow[rel='next'], li.next a") is not None


class BusinessListCollector(Collector):
    source_platform = "directory"

    def targets(self) -> List[str]:
        return [f"{BASE_URL}/category/{category}" for category in CATEGORIES]

    def collect_target(self, target: str) -> List[RawCandidate]:
        max_pages = self.settings.max_pages if self.full_crawl else 1
        candidates: List[RawCandidate] = []
        for page in range(1, max(1, max_pages) + 1):
            url = target if page == 1 else f"{target}/{page}"
            if page > 1:
                self._sleep(self.settings.request_delay_seconds)
            soup = self.fetch_html(url)
            found = parse_listing_page(soup, url)
            logger.debug("BusinessList page %s yielded %d listings", url, len(found))
            candidates.extend(found)
            if not found or not has_next_page(soup):
                break
        return candidates
