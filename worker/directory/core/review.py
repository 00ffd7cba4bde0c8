"""Human review actions over pending records and queued duplicate pairs."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    ReviewItem,
    ReviewStatus,
    utcnow,
)
from directory.core.store import RecordStore
from directory.dedupe.matcher import choose_primary
from directory.dedupe.merger import merge

logger = logging.getLogger(__name__)

MERGE = "merge"
DISMISS = "dismiss"


class ReviewError(ValueError):
    """Raised for review actions that cannot be applied."""


class UnknownReviewTargetError(ReviewError):
    """Raised when the record or review item does not exist."""


class ReviewService:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def pending_matches(self) -> List[ReviewItem]:
        return self.store.list_review_items(ReviewStatus.PENDING)

    def pending_records(self) -> List[CanonicalRecord]:
        return self.store.list_records(approval_status=ApprovalStatus.PENDING)

    def _require(self, stable_id: str) -> CanonicalRecord:
        record = self.store.find_by_stable_id(stable_id)
        if record is None:
            raise UnknownReviewTargetError(f"Unknown record {stable_id}")
        return record

    def _set_status(self, stable_id: str, status: ApprovalStatus, *, blacklist: bool = False) -> CanonicalRecord:
        record = self._require(stable_id)
        if record.is_blacklisted and status is ApprovalStatus.APPROVED:
            raise ReviewError(f"Record {stable_id} is blacklisted and cannot be approved")
        now = utcnow()
        updated = replace(
            record,
            approval_status=status,
            is_blacklisted=record.is_blacklisted or blacklist,
            reviewed_at=now,
            updated_at=now,
        )
        self.store.upsert(updated)
        logger.info("Record %s marked %s%s", stable_id, status.value, " and blacklisted" if blacklist else "")
        return updated

    def approve(self, stable_id: str) -> CanonicalRecord:
        return self._set_status(stable_id, ApprovalStatus.APPROVED)

    def reject(self, stable_id: str) -> CanonicalRecord:
        return self._set_status(stable_id, ApprovalStatus.REJECTED)

    def blacklist(self, stable_id: str) -> CanonicalRecord:
        """Reject and suppress a record; refresh runs never lift the flag."""
        return self._set_status(stable_id, ApprovalStatus.REJECTED, blacklist=True)

    def merge(self, primary_id: str, secondary_id: str) -> CanonicalRecord:
        if primary_id == secondary_id:
            raise ReviewError("Cannot merge a record into itself")
        primary = self._require(primary_id)
        secondary = self._require(secondary_id)

        now = utcnow()
        merged = merge(primary, secondary, now=now)
        merged.reviewed_at = now
        self.store.upsert(merged)
        self.store.delete(secondary_id)
        logger.info("Merged %s into %s by review", secondary_id, primary_id)
        return merged

    def resolve_match(self, match_id: str, action: str = MERGE, primary_id: Optional[str] = None) -> ReviewItem:
        item = self.store.get_review_item(match_id)
        if item is None:
            raise UnknownReviewTargetError(f"Unknown review item {match_id}")
        if item.status is not ReviewStatus.PENDING:
            raise ReviewError(f"Review item {match_id} is already {item.status.value}")

        if action == DISMISS:
            self.store.resolve_review_item(match_id, ReviewStatus.DISMISSED)
        elif action == MERGE:
            pair = {item.record_a_id, item.record_b_id}
            if primary_id is not None and primary_id not in pair:
                raise ReviewError(f"{primary_id} is not part of review item {match_id}")
            if primary_id is None:
                primary, _ = choose_primary(self._require(item.record_a_id), self._require(item.record_b_id))
                primary_id = primary.stable_id
            (secondary_id,) = pair - {primary_id}
            self.merge(primary_id, secondary_id)
            self.store.resolve_review_item(match_id, ReviewStatus.MERGED)
        else:
            raise ReviewError(f"Unsupported review action {action!r}")

        resolved = self.store.get_review_item(match_id)
        return resolved if resolved is not None else item
