"""Deterministic field-level merge rules for canonical records."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, TypeVar

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    Rating,
    dedupe,
    utcnow,
)
from directory.etl.normalize import build_identity_key

logger = logging.getLogger(__name__)

MERGED_FROM = " | merged from: "
MAX_EVIDENCE_SNIPPETS = 10

SCALAR_FIELDS = (
    "region",
    "locality",
    "address",
    "latitude",
    "longitude",
    "business_hours",
    "moq_units",
    "price_range_hint",
    "lead_time_days",
    "registration_number",
    "event_kind",
    "date_start",
    "date_end",
    "contact_name",
)

COLLECTION_FIELDS = (
    "categories",
    "product_examples",
    "phones",
    "whatsapp",
    "emails",
    "websites",
    "socials",
    "coverage_regions",
    "delivery_options",
)

T = TypeVar("T")


def _first(*values: Optional[T]) -> Optional[T]:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _union(first: List[str], second: List[str]) -> List[str]:
    return dedupe([*first, *second])


def _merge_ratings(first: Dict[str, Rating], second: Dict[str, Rating]) -> Dict[str, Rating]:
    """Per rating source keep the side with the larger sample; ties keep `first`."""
    merged = dict(second)
    for source, rating in first.items():
        other = merged.get(source)
        if other is None or (rating.count or 0) >= (other.count or 0):
            merged[source] = rating
    return merged


def _merge_notes(first: Optional[str], second: Optional[str]) -> Optional[str]:
    parts = dedupe([first, second])
    return " | ".join(parts) if parts else None


def _latest(first: Optional[datetime], second: Optional[datetime]) -> Optional[datetime]:
    if first is None or second is None:
        return first or second
    return max(first, second)


def _with_trail(source_url: str, trail_source: str) -> str:
    if MERGED_FROM not in trail_source:
        return source_url
    base, _, trail = source_url.partition(MERGED_FROM)
    _, _, existing_trail = trail_source.partition(MERGED_FROM)
    trails = dedupe([*(trail.split(MERGED_FROM) if trail else []), *existing_trail.split(MERGED_FROM)])
    return base + "".join(f"{MERGED_FROM}{item}" for item in trails)


def merge(primary: CanonicalRecord, secondary: CanonicalRecord, *, now: Optional[datetime] = None) -> CanonicalRecord:
    """Fold `secondary` into `primary`; the result keeps the primary's stable id.

    Scalars come from the primary and fall back to the secondary; collections
    are unioned in first-seen order so merging the same secondary twice does
    not grow them.
    """
    now = now or utcnow()
    values = {field: _first(getattr(primary, field), getattr(secondary, field)) for field in SCALAR_FIELDS}
    collections = {
        field: _union(getattr(primary, field), getattr(secondary, field)) for field in COLLECTION_FIELDS
    }

    alternate_names = [
        name
        for name in _union(primary.alternate_names, [secondary.name, *secondary.alternate_names])
        if name != primary.name
    ]

    source_url = primary.source_url
    secondary_base = secondary.source_url.split(MERGED_FROM, 1)[0]
    if secondary_base and secondary_base not in source_url.split(MERGED_FROM):
        source_url = f"{source_url}{MERGED_FROM}{secondary_base}"

    merged = replace(
        primary,
        **values,
        **collections,
        name=primary.name or secondary.name,
        identity_key=(
            primary.identity_key
            or build_identity_key(primary.phones[0] if primary.phones else None, primary.region)
        ),
        alternate_names=alternate_names,
        ratings=_merge_ratings(primary.ratings, secondary.ratings),
        bulk_available=primary.bulk_available or secondary.bulk_available,
        explicit_professional_language=(
            primary.explicit_professional_language or secondary.explicit_professional_language
        ),
        evidence_snippets=_union(primary.evidence_snippets, secondary.evidence_snippets)[:MAX_EVIDENCE_SNIPPETS],
        confidence=max(primary.confidence, secondary.confidence),
        notes=_merge_notes(primary.notes, secondary.notes),
        source_url=source_url,
        first_seen_at=min(primary.first_seen_at, secondary.first_seen_at),
        last_seen_at=max(primary.last_seen_at, secondary.last_seen_at),
        updated_at=now,
        is_blacklisted=primary.is_blacklisted or secondary.is_blacklisted,
        reviewed_at=_latest(primary.reviewed_at, secondary.reviewed_at),
    )
    logger.debug("Merged %s into %s", secondary.stable_id, primary.stable_id)
    return merged


def refresh_record(
    existing: CanonicalRecord, observed: CanonicalRecord, *, now: Optional[datetime] = None
) -> CanonicalRecord:
    """Apply a re-observation of an already stored stable id.

    Fresh scalars win, collections keep what earlier runs and merges added,
    and decisions made by a reviewer are never undone.
    """
    now = now or utcnow()
    values = {field: _first(getattr(observed, field), getattr(existing, field)) for field in SCALAR_FIELDS}
    collections = {
        field: _union(getattr(observed, field), getattr(existing, field)) for field in COLLECTION_FIELDS
    }

    if existing.reviewed_at is not None:
        approval_status = existing.approval_status
    elif ApprovalStatus.APPROVED in (existing.approval_status, observed.approval_status):
        approval_status = ApprovalStatus.APPROVED
    else:
        approval_status = observed.approval_status

    return replace(
        observed,
        **values,
        **collections,
        alternate_names=[
            name for name in _union(observed.alternate_names, existing.alternate_names) if name != observed.name
        ],
        ratings=_merge_ratings(observed.ratings, existing.ratings),
        bulk_available=observed.bulk_available or existing.bulk_available,
        explicit_professional_language=(
            observed.explicit_professional_language or existing.explicit_professional_language
        ),
        evidence_snippets=_union(observed.evidence_snippets, existing.evidence_snippets)[:MAX_EVIDENCE_SNIPPETS],
        confidence=max(observed.confidence, existing.confidence),
        notes=_first(observed.notes, existing.notes),
        source_url=_with_trail(observed.source_url, existing.source_url),
        first_seen_at=min(observed.first_seen_at, existing.first_seen_at),
        last_seen_at=max(observed.last_seen_at, existing.last_seen_at, now),
        updated_at=now,
        approval_status=approval_status,
        identity_key=observed.identity_key or existing.identity_key,
        is_blacklisted=existing.is_blacklisted,
        reviewed_at=existing.reviewed_at,
    )
