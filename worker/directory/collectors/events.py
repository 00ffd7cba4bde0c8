"""Ceremonial event collectors: Eventbrite searches and Punch obituaries."""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from directory.collectors.base import Collector, absolute_link, text_of
from directory.core.models import EntityType, RawCandidate, utcnow

logger = logging.getLogger(__name__)

EVENTBRITE_URL = "https://www.eventbrite.com/d/nigeria--nigeria/{query}/"
EVENTBRITE_QUERIES = {
    "wedding nigeria": "wedding",
    "traditional marriage nigeria": "traditional_marriage",
    "burial ceremony nigeria": "burial",
    "child dedication nigeria": "child_dedication",
    "thanksgiving service nigeria": "thanksgiving",
}

PUNCH_URL = "https://punchng.com/topics/obituary/"
OBITUARY_KEYWORDS = ("burial", "funeral", "memorial", "celebration of life", "interment")

MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"
DATE_IN_TEXT_REGEX = re.compile(
    rf"\b(?:\d{{1,2}}(?:st|nd|rd|th)?\s+{MONTHS},?\s+\d{{4}}|{MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}})\b",
    re.IGNORECASE,
)


def find_date_in_text(text: str) -> Optional[str]:
    match = DATE_IN_TEXT_REGEX.search(text or "")
    return match.group(0) if match else None


def parse_eventbrite_page(soup: BeautifulSoup, page_url: str, event_kind: str) -> List[RawCandidate]:
    observed_at = utcnow()
    candidates: List[RawCandidate] = []
    for card in soup.select("[data-testid='search-result-item'], .event-card"):
        title = text_of(card, ".event-title, h3, h2")
        link = absolute_link(card, page_url)
        if not title or not link:
            continue
        time_node = card.select_one("time[datetime]")
        date_text = time_node["datetime"] if time_node else text_of(card, ".event-date, [data-testid='event-date']")
        location = text_of(card, ".event-location, [data-testid='event-location']")
        candidates.append(
            RawCandidate(
                name=title,
                source_url=link.split("?", 1)[0],
                source_platform=EventbriteCollector.source_platform,
                entity_type=EntityType.EVENT,
                event_kind=event_kind,
                date_start=date_text or None,
                address=location or None,
                region=location or None,
                contact_name=text_of(card, ".event-organizer, [data-testid='organizer-name']") or None,
                observed_at=observed_at,
            )
        )
    return candidates


def parse_punch_page(soup: BeautifulSoup, page_url: str) -> List[RawCandidate]:
    observed_at = utcnow()
    candidates: List[RawCandidate] = []
    for article in soup.select("article, .post, .article-item"):
        title = text_of(article, "h2, h3, .title")
        link = absolute_link(article, page_url)
        excerpt = text_of(article, ".excerpt, p")
        text = f"{title} {excerpt}"
        lowered = text.lower()
        if not title or not link or not any(keyword in lowered for keyword in OBITUARY_KEYWORDS):
            continue

        date_text = find_date_in_text(text)
        if date_text is None:
            time_node = article.select_one("time[datetime]")
            date_text = time_node["datetime"] if time_node else (text_of(article, ".date, time, .published") or None)

        candidates.append(
            RawCandidate(
                name=title,
                source_url=link,
                source_platform=PunchObituaryCollector.source_platform,
                entity_type=EntityType.EVENT,
                event_kind="memorial" if "memorial" in lowered else "burial",
                date_start=date_text,
                region=excerpt or None,
                notes=excerpt or None,
                observed_at=observed_at,
            )
        )
    return candidates


class EventbriteCollector(Collector):
    source_platform = "eventbrite"

    def targets(self) -> List[str]:
        queries = list(EVENTBRITE_QUERIES)
        if not self.full_crawl:
            queries = queries[:3]
        return [EVENTBRITE_URL.format(query=quote(query)) for query in queries]

    def collect_target(self, target: str) -> List[RawCandidate]:
        event_kind = next(
            (kind for query, kind in EVENTBRITE_QUERIES.items() if quote(query) in target),
            "ceremony",
        )
        return parse_eventbrite_page(self.fetch_html(target), target, event_kind)


class PunchObituaryCollector(Collector):
    source_platform = "punch"

    def targets(self) -> List[str]:
        pages = self.settings.max_pages if self.full_crawl else 1
        return [PUNCH_URL] + [f"{PUNCH_URL}page/{page}/" for page in range(2, max(1, pages) + 1)]

    def collect_target(self, target: str) -> List[RawCandidate]:
        return parse_punch_page(self.fetch_html(target), target)
