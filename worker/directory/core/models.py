"""Core data models shared by the collectors, the normalizer and the refresh pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class EntityType(str, Enum):
    SUPPLIER = "supplier"
    EVENT = "event"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RunState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    MERGED = "merged"
    DISMISSED = "dismissed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedupe(values: Iterable[Optional[str]]) -> List[str]:
    """Drop empty values and repeats while keeping first-seen order."""
    seen = set()
    result: List[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


@dataclass(slots=True)
class Rating:
    stars: Optional[float] = None
    count: Optional[int] = None


@dataclass(slots=True)
class RawCandidate:
    """One loosely structured record as a source reported it."""

    name: str
    source_url: str
    source_platform: str
    entity_type: EntityType = EntityType.SUPPLIER
    alternate_names: List[str] = field(default_factory=list)
    address: Optional[str] = None
    region: Optional[str] = None
    locality: Optional[str] = None
    phones: List[str] = field(default_factory=list)
    whatsapp: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    websites: List[str] = field(default_factory=list)
    socials: List[str] = field(default_factory=list)
    product_examples: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    coverage_regions: List[str] = field(default_factory=list)
    delivery_options: List[str] = field(default_factory=list)
    bulk_available: Optional[bool] = None
    moq_units: Optional[int] = None
    price_range_hint: Optional[str] = None
    lead_time_days: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    business_hours: Optional[str] = None
    ratings: Dict[str, Rating] = field(default_factory=dict)
    registration_number: Optional[str] = None
    observed_at: Optional[datetime] = None
    event_kind: Optional[str] = None
    date_start: Optional[str] = None
    date_end: Optional[str] = None
    contact_name: Optional[str] = None
    identity_key: Optional[str] = None


@dataclass(slots=True)
class CanonicalRecord:
    """The deduplicated, normalized representation of one real-world entity."""

    stable_id: str
    name: str
    source_platform: str
    source_url: str
    entity_type: EntityType = EntityType.SUPPLIER
    region: Optional[str] = None
    locality: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    business_hours: Optional[str] = None
    alternate_names: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    product_examples: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    whatsapp: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    websites: List[str] = field(default_factory=list)
    socials: List[str] = field(default_factory=list)
    coverage_regions: List[str] = field(default_factory=list)
    delivery_options: List[str] = field(default_factory=list)
    ratings: Dict[str, Rating] = field(default_factory=dict)
    bulk_available: bool = False
    moq_units: Optional[int] = None
    price_range_hint: Optional[str] = None
    lead_time_days: Optional[int] = None
    explicit_professional_language: bool = False
    evidence_snippets: List[str] = field(default_factory=list)
    registration_number: Optional[str] = None
    confidence: float = 0.0
    notes: Optional[str] = None
    event_kind: Optional[str] = None
    date_start: Optional[date] = None
    date_end: Optional[date] = None
    contact_name: Optional[str] = None
    # "phone|region" the stable id was hashed from; merges keep the primary's.
    identity_key: Optional[str] = None
    first_seen_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_blacklisted: bool = False
    reviewed_at: Optional[datetime] = None

    @property
    def effective_date(self) -> Optional[date]:
        """Date the retention window is measured against; suppliers have none."""
        if self.entity_type is not EntityType.EVENT:
            return None
        return self.date_end or self.date_start

    def contact_numbers(self) -> set:
        return set(self.phones) | set(self.whatsapp)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["entity_type"] = self.entity_type.value
        data["approval_status"] = self.approval_status.value
        for key in ("date_start", "date_end"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        for key in ("first_seen_at", "last_seen_at", "updated_at", "reviewed_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRecord":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["entity_type"] = EntityType(values.get("entity_type") or EntityType.SUPPLIER.value)
        values["approval_status"] = ApprovalStatus(values.get("approval_status") or ApprovalStatus.PENDING.value)
        values["ratings"] = {
            source: rating if isinstance(rating, Rating) else Rating(**rating)
            for source, rating in (values.get("ratings") or {}).items()
        }
        for key in ("date_start", "date_end"):
            value = values.get(key)
            if isinstance(value, str):
                values[key] = date.fromisoformat(value)
        for key in ("first_seen_at", "last_seen_at", "updated_at", "reviewed_at"):
            value = values.get(key)
            if isinstance(value, str):
                values[key] = datetime.fromisoformat(value)
            elif value is None and key != "reviewed_at":
                values.pop(key, None)
        return cls(**values)


@dataclass(slots=True)
class DuplicateMatch:
    record_a: CanonicalRecord
    record_b: CanonicalRecord
    similarity: float
    reason: str


@dataclass(slots=True)
class ReviewItem:
    """A persisted duplicate pair awaiting a human decision."""

    id: str
    record_a_id: str
    record_b_id: str
    similarity: float
    reason: str
    run_id: Optional[str] = None
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @classmethod
    def for_match(cls, match: DuplicateMatch, run_id: Optional[str] = None) -> "ReviewItem":
        """The id depends only on the pair, so re-detections map to the same item."""
        first, second = sorted((match.record_a.stable_id, match.record_b.stable_id))
        item_id = hashlib.sha256(f"{first}|{second}".encode("utf-8")).hexdigest()[:16]
        return cls(
            id=item_id,
            record_a_id=first,
            record_b_id=second,
            similarity=match.similarity,
            reason=match.reason,
            run_id=run_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "record_a_id": self.record_a_id,
            "record_b_id": self.record_b_id,
            "similarity": round(self.similarity, 4),
            "reason": self.reason,
            "run_id": self.run_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass(slots=True)
class SourceRunLog:
    """Audit entry for one collector within one run."""

    source_platform: str
    status: str = "pending"
    found: int = 0
    new: int = 0
    updated: int = 0
    invalid: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass(slots=True)
class RunRecord:
    run_id: str
    trigger: str
    state: RunState = RunState.QUEUED
    progress: int = 0
    sources: Dict[str, SourceRunLog] = field(default_factory=dict)
    found: int = 0
    new: int = 0
    updated: int = 0
    merged: int = 0
    queued_for_review: int = 0
    invalid: int = 0
    removed: int = 0
    suppressed: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    success: bool = False
    exports: Dict[str, str] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        if not self.started_at or not self.completed_at:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        data["duration_ms"] = self.duration_ms
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["state"] = RunState(values.get("state") or RunState.QUEUED.value)
        values["sources"] = {
            name: log if isinstance(log, SourceRunLog) else SourceRunLog(**log)
            for name, log in (values.get("sources") or {}).items()
        }
        for key in ("started_at", "completed_at"):
            value = values.get(key)
            if isinstance(value, str):
                values[key] = datetime.fromisoformat(value)
        return cls(**values)
