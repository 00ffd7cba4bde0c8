"""Google Maps supplier collector backed by SerpAPI."""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from serpapi import GoogleSearch

from directory.collectors.base import Collector, CollectorError
from directory.core.config import require_serpapi_key
from directory.core.models import EntityType, RawCandidate, Rating, utcnow

logger = logging.getLogger(__name__)

RETRY_LIMIT = 2
RETRY_DELAY_SECONDS = 1.2
INCREMENTAL_TERMS = 2
NO_RESULTS_MARKER = "hasn't returned any results"

SEARCH_TERMS = (
    "event equipment wholesale",
    "party rental wholesale",
    "tent wholesale",
    "chair rental wholesale",
    "event supplies wholesale",
)


def build_serpapi_params(query: str, api_key: str) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine."""
    if not query or not query.strip():
        raise ValueError("Query must be provided for SerpAPI lookups.")
    return {
        "engine": "google_maps",
        "q": query.strip(),
        "api_key": api_key,
        "type": "search",
        "gl": "ng",
        "hl": "en",
    }


def parse_serpapi_maps(data: Optional[Dict[str, Any]], region: Optional[str] = None) -> List[RawCandidate]:
    """Turn SerpAPI local/place results into raw supplier candidates."""
    if not data:
        return []

    items = list(_extract_items(data))
    if not items:
        logger.warning(
            "SerpAPI response missing local_results iterable. keys=%s preview=%s",
            list(data.keys())[:10],
            str(data.get("local_results"))[:200],
        )
        place_results = data.get("place_results")
        if isinstance(place_results, list):
            items = place_results
        elif isinstance(place_results, dict):
            items = [place_results]

    observed_at = utcnow()
    candidates: List[RawCandidate] = []
    for raw in items:
        if not isinstance(raw, dict):
            continue

        name = (raw.get("title") or raw.get("name") or "").strip()
        if not name:
            continue

        gps = raw.get("gps_coordinates") or {}
        stars = _safe_float(raw.get("rating"))
        review_count = _safe_int(raw.get("reviews_count") or raw.get("reviews"))
        place_id = _strip_or_none(raw.get("place_id"))
        source_url = _strip_or_none(raw.get("link")) or (
            f"https://www.google.com/maps/place/?q=place_id:{place_id}" if place_id else None
        )
        if not source_url:
            logger.debug("Skipping SerpAPI result without a place link: %s", name)
            continue

        types = raw.get("types") or ([raw["type"]] if raw.get("type") else [])
        candidates.append(
            RawCandidate(
                name=name,
                source_url=source_url,
                source_platform=MapsCollector.source_platform,
                entity_type=EntityType.SUPPLIER,
                address=_strip_or_none(raw.get("address")),
                region=region,
                phones=[phone for phone in [_strip_or_none(raw.get("phone"))] if phone],
                websites=[site for site in [_strip_or_none(raw.get("website"))] if site],
                product_examples=[str(value) for value in types if value],
                notes=_strip_or_none(raw.get("description")),
                latitude=_safe_float(gps.get("latitude")),
                longitude=_safe_float(gps.get("longitude")),
                business_hours=_format_hours(raw.get("operating_hours") or raw.get("hours")),
                ratings={"google": Rating(stars=stars, count=review_count)} if stars is not None else {},
                observed_at=observed_at,
            )
        )
    return candidates


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe
    return []


def _format_hours(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return "; ".join(f"{day}: {hours}" for day, hours in value.items()) or None
    return _strip_or_none(value)


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


class MapsCollector(Collector):
    source_platform = "maps"

    def targets(self) -> List[str]:
        require_serpapi_key(self.settings)
        terms = SEARCH_TERMS if self.full_crawl else SEARCH_TERMS[:INCREMENTAL_TERMS]
        self._query_regions = {
            f"{term} in {region}, Nigeria": region for region in self.regions for term in terms
        }
        return list(self._query_regions)

    def fetch(self, query: str) -> Dict[str, Any]:
        """Call SerpAPI Google Maps and return the raw JSON response with retry logic."""
        params = build_serpapi_params(query, require_serpapi_key(self.settings))

        attempt = 0
        while True:
            attempt += 1
            try:
                logger.info("Calling SerpAPI (attempt %s) for query=%s", attempt, query)
                data = GoogleSearch(params).get_dict()
                if not data:
                    raise CollectorError("SerpAPI returned an empty payload.")
                if "error" in data and NO_RESULTS_MARKER in str(data["error"]):
                    logger.info("SerpAPI found no results for query=%s", query)
                    return {}
                if "error" in data:
                    raise CollectorError(f"SerpAPI returned an error response: {data.get('error') or data}")
                return data
            except Exception as exc:  # noqa: BLE001
                logger.warning("SerpAPI request failed (attempt %s/%s): %s", attempt, RETRY_LIMIT + 1, exc)
                if attempt > RETRY_LIMIT:
                    logger.error("SerpAPI request exhausted retries for query=%s", query)
                    raise
                self._sleep(RETRY_DELAY_SECONDS + random.uniform(0, 0.8))

    def collect_target(self, target: str) -> List[RawCandidate]:
        region = getattr(self, "_query_regions", {}).get(target)
        return parse_serpapi_maps(self.fetch(target), region=region)
