"""Record store interface and the in-process implementation."""

from __future__ import annotations

import copy
import logging
import threading
from datetime import date
from typing import Dict, Iterable, List, Optional, Protocol

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    EntityType,
    ReviewItem,
    ReviewStatus,
    RunRecord,
    utcnow,
)

logger = logging.getLogger(__name__)


class DuplicateRunError(RuntimeError):
    """Raised when a run record is saved twice; run records are append-only."""


class RecordStore(Protocol):
    def find_by_stable_id(self, stable_id: str) -> Optional[CanonicalRecord]:
        ...

    def upsert(self, record: CanonicalRecord) -> bool:
        """Insert or replace by stable id; returns True when the id was new."""
        ...

    def delete(self, stable_id: str) -> bool:
        ...

    def find_by_weak_signal(
        self,
        *,
        region: Optional[str] = None,
        phones: Iterable[str] = (),
        emails: Iterable[str] = (),
        websites: Iterable[str] = (),
        entity_type: Optional[EntityType] = None,
    ) -> List[CanonicalRecord]:
        ...

    def delete_where(self, date_before: date) -> int:
        """Delete time-bound records whose effective date is before `date_before`."""
        ...

    def list_records(
        self,
        approval_status: Optional[ApprovalStatus] = None,
        include_blacklisted: bool = False,
    ) -> List[CanonicalRecord]:
        ...

    def save_run(self, run: RunRecord) -> None:
        ...

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        ...

    def list_runs(self, limit: int = 20) -> List[RunRecord]:
        ...

    def save_review_item(self, item: ReviewItem) -> bool:
        """Insert a pending item; an existing item with the same id is left alone."""
        ...

    def get_review_item(self, item_id: str) -> Optional[ReviewItem]:
        ...

    def resolve_review_item(self, item_id: str, status: ReviewStatus) -> bool:
        ...

    def list_review_items(self, status: Optional[ReviewStatus] = ReviewStatus.PENDING) -> List[ReviewItem]:
        ...


def _sort_records(records: Iterable[CanonicalRecord]) -> List[CanonicalRecord]:
    return sorted(records, key=lambda record: (-record.confidence, record.stable_id))


class MemoryStore:
    """Thread-safe dictionary-backed store used for local runs and tests."""

    def __init__(self, records: Iterable[CanonicalRecord] = ()) -> None:
        self._lock = threading.RLock()
        self._records: Dict[str, CanonicalRecord] = {}
        self._runs: Dict[str, RunRecord] = {}
        self._review_items: Dict[str, ReviewItem] = {}
        for record in records:
            self._records[record.stable_id] = copy.deepcopy(record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def find_by_stable_id(self, stable_id: str) -> Optional[CanonicalRecord]:
        with self._lock:
            record = self._records.get(stable_id)
            return copy.deepcopy(record) if record else None

    def upsert(self, record: CanonicalRecord) -> bool:
        with self._lock:
            current = self._records.get(record.stable_id)
            stored = copy.deepcopy(record)
            if current is not None and current.is_blacklisted:
                # Only a human sets the flag and nothing clears it.
                stored.is_blacklisted = True
                stored.approval_status = current.approval_status
            self._records[record.stable_id] = stored
            return current is None

    def delete(self, stable_id: str) -> bool:
        with self._lock:
            return self._records.pop(stable_id, None) is not None

    def find_by_weak_signal(
        self,
        *,
        region: Optional[str] = None,
        phones: Iterable[str] = (),
        emails: Iterable[str] = (),
        websites: Iterable[str] = (),
        entity_type: Optional[EntityType] = None,
    ) -> List[CanonicalRecord]:
        phones, emails, websites = set(phones), set(emails), set(websites)
        with self._lock:
            matches = []
            for record in self._records.values():
                if entity_type is not None and record.entity_type is not entity_type:
                    continue
                if (
                    (region and record.region == region)
                    or phones & record.contact_numbers()
                    or emails & set(record.emails)
                    or websites & set(record.websites)
                ):
                    matches.append(copy.deepcopy(record))
            return _sort_records(matches)

    def delete_where(self, date_before: date) -> int:
        with self._lock:
            expired = [
                stable_id
                for stable_id, record in self._records.items()
                if record.effective_date is not None and record.effective_date < date_before
            ]
            for stable_id in expired:
                del self._records[stable_id]
        if expired:
            logger.info("Retention sweep removed %s records dated before %s", len(expired), date_before)
        return len(expired)

    def list_records(
        self,
        approval_status: Optional[ApprovalStatus] = None,
        include_blacklisted: bool = False,
    ) -> List[CanonicalRecord]:
        with self._lock:
            records = [
                copy.deepcopy(record)
                for record in self._records.values()
                if (approval_status is None or record.approval_status is approval_status)
                and (include_blacklisted or not record.is_blacklisted)
            ]
        return _sort_records(records)

    def save_run(self, run: RunRecord) -> None:
        with self._lock:
            if run.run_id in self._runs:
                raise DuplicateRunError(f"Run {run.run_id} has already been recorded")
            self._runs[run.run_id] = copy.deepcopy(run)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run else None

    def list_runs(self, limit: int = 20) -> List[RunRecord]:
        with self._lock:
            runs = sorted(self._runs.values(), key=lambda run: run.run_id, reverse=True)
            return [copy.deepcopy(run) for run in runs[:limit]]

    def save_review_item(self, item: ReviewItem) -> bool:
        with self._lock:
            if item.id in self._review_items:
                return False
            self._review_items[item.id] = copy.deepcopy(item)
            return True

    def get_review_item(self, item_id: str) -> Optional[ReviewItem]:
        with self._lock:
            item = self._review_items.get(item_id)
            return copy.deepcopy(item) if item else None

    def resolve_review_item(self, item_id: str, status: ReviewStatus) -> bool:
        with self._lock:
            item = self._review_items.get(item_id)
            if item is None:
                return False
            item.status = status
            item.resolved_at = utcnow()
            return True

    def list_review_items(self, status: Optional[ReviewStatus] = ReviewStatus.PENDING) -> List[ReviewItem]:
        with self._lock:
            items = [
                copy.deepcopy(item)
                for item in self._review_items.values()
                if status is None or item.status is status
            ]
        return sorted(items, key=lambda item: (-item.similarity, item.id))
