"""Shared collector contract and HTTP plumbing."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from directory.core.config import Settings, get_settings
from directory.core.models import RawCandidate

logger = logging.getLogger(__name__)


class CollectorError(RuntimeError):
    """Raised when a source returns something a collector cannot use."""


@dataclass(slots=True)
class CollectorResult:
    source_platform: str
    raw_candidates: List[RawCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0

    @property
    def failed(self) -> bool:
        """A source that only produced errors counts as failed."""
        return bool(self.errors) and not self.raw_candidates


def build_session(settings: Optional[Settings] = None) -> requests.Session:
    """Create a session that retries transient 5xx responses."""
    settings = settings or get_settings()
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("GET", "POST"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    session.headers.update(
        {
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml",
            "Accept-Language": "en-NG,en;q=0.9",
        }
    )
    return session


def text_of(node, selector: str) -> str:
    """Stripped text of the first element matching `selector`, or ""."""
    found = node.select_one(selector)
    return found.get_text(" ", strip=True) if found else ""


def absolute_link(node, base_url: str) -> str:
    anchor = node.find("a", href=True)
    if not anchor:
        return ""
    return urljoin(base_url, anchor["href"].strip())


class Collector(ABC):
    """One external source: iterate targets, fetch, parse, and collect errors."""

    source_platform: str = ""

    def __init__(
        self,
        *,
        regions: Sequence[str] = (),
        full_crawl: bool = False,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.regions = list(regions) or list(self.settings.default_regions)
        self.full_crawl = full_crawl
        self.session = session or build_session(self.settings)
        self._sleep = sleep

    @abstractmethod
    def targets(self) -> List[str]:
        """URLs or queries visited by one scrape."""

    @abstractmethod
    def collect_target(self, target: str) -> List[RawCandidate]:
        ...

    def fetch_html(self, url: str) -> BeautifulSoup:
        response = self.session.get(url, timeout=self.settings.request_timeout_seconds)
        response.raise_for_status()
        return BeautifulSoup(response.text, "html.parser")

    def scrape(self) -> CollectorResult:
        started = time.monotonic()
        result = CollectorResult(source_platform=self.source_platform)

        for index, target in enumerate(self.targets()):
            if index:
                self._sleep(self.settings.request_delay_seconds)
            try:
                candidates = self.collect_target(target)
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s failed for %s: %s", self.source_platform, target, exc)
                result.errors.append(f"{target}: {exc}")
                continue
            logger.info("%s collected %d candidates from %s", self.source_platform, len(candidates), target)
            result.raw_candidates.extend(candidates)

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        return result

    def close(self) -> None:
        self.session.close()
