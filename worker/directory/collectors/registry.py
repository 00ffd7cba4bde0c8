"""The closed set of collectors a refresh run can use."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Type

import requests

from directory.collectors.base import Collector
from directory.collectors.businesslist import BusinessListCollector
from directory.collectors.events import EventbriteCollector, PunchObituaryCollector
from directory.collectors.maps import MapsCollector
from directory.core.config import Settings, get_settings

COLLECTORS: Sequence[Type[Collector]] = (
    MapsCollector,
    BusinessListCollector,
    EventbriteCollector,
    PunchObituaryCollector,
)

REGISTRY: Dict[str, Type[Collector]] = {collector.source_platform: collector for collector in COLLECTORS}


class UnknownSourceError(ValueError):
    """Raised when a refresh names a source that is not registered."""


def validate_sources(sources: Iterable[str]) -> List[str]:
    names = [source.strip() for source in sources if source and source.strip()]
    unknown = sorted(set(names) - set(REGISTRY))
    if unknown:
        raise UnknownSourceError(f"Unknown sources: {', '.join(unknown)}; expected one of {', '.join(REGISTRY)}")
    return list(dict.fromkeys(names))


def build_collectors(
    sources: Optional[Iterable[str]] = None,
    regions: Sequence[str] = (),
    full_crawl: bool = False,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> List[Collector]:
    settings = settings or get_settings()
    names = validate_sources(sources if sources is not None else settings.default_sources)
    return [
        REGISTRY[name](regions=regions, full_crawl=full_crawl, settings=settings, session=session)
        for name in names
    ]
