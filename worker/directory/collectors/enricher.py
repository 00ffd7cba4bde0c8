"""Website enrichment: crawl a supplier's own pages for public contact data."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Set, Tuple
from urllib import robotparser
from urllib.parse import parse_qs, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from directory.core.config import Settings, get_settings
from directory.core.models import EntityType, RawCandidate, dedupe

logger = logging.getLogger(__name__)

MAX_PAGES_PER_DOMAIN = 3
SOCIAL_HOSTS = {
    "facebook": ("facebook.com", "fb.com"),
    "instagram": ("instagram.com", "instagr.am"),
    "linkedin": ("linkedin.com",),
    "tiktok": ("tiktok.com",),
    "x": ("twitter.com", "x.com"),
    "youtube": ("youtube.com", "youtu.be"),
}
CONTACT_PAGE_CANDIDATES = ("/contact", "/contact-us", "/contactus", "/about", "/about-us")

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_CANDIDATE_REGEX = re.compile(r"(?:\+?234|0)[\d\s().\-]{9,16}\d")
WHATSAPP_HOSTS = ("wa.me", "api.whatsapp.com", "wa.link")


def sanitize_website(raw_url: str) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""
    if not raw_url or not raw_url.strip():
        return None
    parsed = urlparse(raw_url.strip(), scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{raw_url.strip()}")
    if not parsed.netloc:
        return None
    path = parsed.path or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    return urlunparse(parsed._replace(path=path, fragment="", query=""))


def _host(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def extract_emails(text: str) -> List[str]:
    return sorted({match.group(0).lower() for match in EMAIL_REGEX.finditer(text or "")})


def extract_phone_strings(text: str) -> List[str]:
    """Raw phone-looking strings; the normalizer decides which are valid."""
    return dedupe(match.group(0).strip() for match in PHONE_CANDIDATE_REGEX.finditer(text or ""))


def extract_links(soup: BeautifulSoup, base_url: str) -> Tuple[List[str], List[str], List[str], List[str]]:
    """Return (emails, phones, whatsapp, socials) found in anchor hrefs."""
    emails: List[str] = []
    phones: List[str] = []
    whatsapp: List[str] = []
    socials: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        lowered = href.lower()
        if lowered.startswith("mailto:"):
            emails.append(href.split(":", 1)[1].split("?", 1)[0].strip().lower())
            continue
        if lowered.startswith("tel:"):
            phones.append(href.split(":", 1)[1].strip())
            continue

        parsed = urlparse(urljoin(base_url, href))
        host = _host(parsed.geturl())
        if host in WHATSAPP_HOSTS:
            number = parsed.path.strip("/") or (parse_qs(parsed.query).get("phone") or [""])[0]
            if number and number.lstrip("+").isdigit():
                whatsapp.append(number)
            continue
        if parsed.scheme in ("http", "https") and any(
            host == allowed or host.endswith(f".{allowed}")
            for hosts in SOCIAL_HOSTS.values()
            for allowed in hosts
        ):
            socials.append(urlunparse(("https", parsed.netloc.lower(), parsed.path.rstrip("/"), "", "", "")))
    return dedupe(emails), dedupe(phones), dedupe(whatsapp), dedupe(socials)


class WebsiteEnricher:
    """Crawl up to a few same-domain pages and collect contact details."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        max_pages: int = MAX_PAGES_PER_DOMAIN,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self.max_pages = max_pages
        self._sleep = sleep

    def _load_robot_rules(self, root_url: str) -> Optional[robotparser.RobotFileParser]:
        parsed = urlparse(root_url)
        robots_url = urlunparse((parsed.scheme, parsed.netloc, "/robots.txt", "", "", ""))
        try:
            response = self.session.get(robots_url, timeout=self.settings.request_timeout_seconds)
        except requests.RequestException as exc:
            logger.debug("Unable to read robots.txt from %s: %s", robots_url, exc)
            return None
        if response.status_code >= 400:
            return None
        rules = robotparser.RobotFileParser()
        rules.parse(response.text.splitlines())
        return rules

    def _fetch(self, url: str) -> Optional[Tuple[str, BeautifulSoup]]:
        try:
            response = self.session.get(url, timeout=self.settings.request_timeout_seconds, allow_redirects=True)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch %s: %s", url, exc)
            return None
        content_type = response.headers.get("Content-Type", "").lower()
        if "text/html" not in content_type:
            logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
            return None
        return response.url or url, BeautifulSoup(response.text, "html.parser")

    def _contact_pages(self, base_url: str, soup: BeautifulSoup, domain: str) -> List[str]:
        found = []
        for anchor in soup.find_all("a", href=True):
            absolute = urljoin(base_url, anchor["href"].strip())
            parsed = urlparse(absolute)
            if _host(absolute) != domain:
                continue
            if any(candidate in parsed.path.lower() for candidate in CONTACT_PAGE_CANDIDATES):
                found.append(urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", "")))
        return dedupe(found)

    def crawl(self, website: str) -> Dict[str, List[str]]:
        root_url = sanitize_website(website)
        result: Dict[str, List[str]] = {"emails": [], "phones": [], "whatsapp": [], "socials": []}
        if not root_url:
            return result

        domain = _host(root_url)
        robots = self._load_robot_rules(root_url)
        queue: List[str] = [root_url]
        visited: Set[str] = set()

        while queue and len(visited) < self.max_pages:
            url = queue.pop(0)
            if robots is not None and not robots.can_fetch(self.settings.user_agent, url):
                logger.info("Robots.txt disallows %s", url)
                continue
            if visited:
                self._sleep(self.settings.request_delay_seconds)
            fetched = self._fetch(url)
            visited.add(url)
            if not fetched:
                continue

            final_url, soup = fetched
            text = soup.get_text(" ", strip=True)
            emails, phones, whatsapp, socials = extract_links(soup, final_url)
            result["emails"].extend(extract_emails(text) + emails)
            result["phones"].extend(phones + extract_phone_strings(text))
            result["whatsapp"].extend(whatsapp)
            result["socials"].extend(socials)

            for candidate in self._contact_pages(final_url, soup, domain):
                if candidate not in visited and candidate not in queue:
                    queue.append(candidate)

        logger.debug("Crawled %d pages for %s", len(visited), domain)
        return {key: dedupe(values) for key, values in result.items()}

    def enrich(self, candidate: RawCandidate) -> RawCandidate:
        """Return a copy of a supplier candidate with contact details from its website."""
        if candidate.entity_type is not EntityType.SUPPLIER or not candidate.websites:
            return candidate
        found = self.crawl(candidate.websites[0])
        return replace(
            candidate,
            emails=dedupe([*candidate.emails, *found["emails"]]),
            phones=dedupe([*candidate.phones, *found["phones"]]),
            whatsapp=dedupe([*candidate.whatsapp, *found["whatsapp"]]),
            socials=dedupe([*candidate.socials, *found["socials"]]),
        )
