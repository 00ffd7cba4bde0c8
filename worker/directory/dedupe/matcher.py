"""Pairwise duplicate scoring between canonical records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from directory.core.config import MatcherConfig
from directory.core.models import CanonicalRecord, DuplicateMatch

if TYPE_CHECKING:
    from directory.core.store import RecordStore

logger = logging.getLogger(__name__)

AUTO_MERGE = "auto_merge"
REVIEW = "review"
DISCARD = "discard"


def levenshtein_similarity(a: str, b: str) -> float:
    """`1 - distance / max(len)` on lower-cased names; two empty names are identical."""
    left, right = (a or "").lower(), (b or "").lower()
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(left, right) / longest


def choose_primary(a: CanonicalRecord, b: CanonicalRecord) -> Tuple[CanonicalRecord, CanonicalRecord]:
    """Return `(primary, secondary)`: higher confidence, then most recently seen, then stable id."""
    key_a = (a.confidence, a.last_seen_at)
    key_b = (b.confidence, b.last_seen_at)
    if key_a > key_b:
        return a, b
    if key_b > key_a:
        return b, a
    return (a, b) if a.stable_id <= b.stable_id else (b, a)


class Matcher:
    def __init__(self, config: Optional[MatcherConfig] = None) -> None:
        self.config = config or MatcherConfig()

    def similarity(self, a: CanonicalRecord, b: CanonicalRecord) -> Tuple[float, str]:
        if a.stable_id == b.stable_id:
            return 1.0, "identical stable id"

        config = self.config
        name_score = levenshtein_similarity(a.name, b.name)
        score = name_score * config.name_weight
        weight = config.name_weight
        reasons = [f"name {name_score:.2f}"]

        if a.contact_numbers() & b.contact_numbers():
            score += config.phone_weight
            weight += config.phone_weight
            reasons.append("shared phone")

        if a.region and a.region == b.region:
            score += config.region_weight
            weight += config.region_weight
            reasons.append(f"same region ({a.region})")

        if set(a.websites) & set(b.websites) or set(a.emails) & set(b.emails):
            score += config.web_or_email_weight
            weight += config.web_or_email_weight
            reasons.append("shared website/email")

        return min(1.0, score / weight), ", ".join(reasons)

    def classify(self, similarity: float) -> str:
        if similarity >= self.config.auto_merge_threshold:
            return AUTO_MERGE
        if similarity >= self.config.review_threshold:
            return REVIEW
        return DISCARD

    def compare(self, a: CanonicalRecord, b: CanonicalRecord) -> Optional[DuplicateMatch]:
        """Score a pair and return a match when it clears the review threshold."""
        if a.entity_type is not b.entity_type:
            return None
        score, reason = self.similarity(a, b)
        if self.classify(score) == DISCARD:
            return None
        return DuplicateMatch(record_a=a, record_b=b, similarity=score, reason=reason)

    def find_duplicates(self, batch: Sequence[CanonicalRecord]) -> List[DuplicateMatch]:
        matches: List[DuplicateMatch] = []
        for index, left in enumerate(batch):
            for right in batch[index + 1:]:
                match = self.compare(left, right)
                if match:
                    matches.append(match)
        matches.sort(key=lambda match: match.similarity, reverse=True)
        logger.debug("Found %s candidate duplicate pairs in a batch of %s", len(matches), len(batch))
        return matches

    def find_store_matches(self, record: CanonicalRecord, store: "RecordStore") -> List[DuplicateMatch]:
        """Compare a record against store residents sharing at least one weak signal."""
        candidates = store.find_by_weak_signal(
            region=record.region,
            phones=sorted(record.contact_numbers()),
            emails=record.emails,
            websites=record.websites,
            entity_type=record.entity_type,
        )
        matches: List[DuplicateMatch] = []
        for existing in candidates:
            if existing.stable_id == record.stable_id:
                continue
            match = self.compare(record, existing)
            if match:
                matches.append(match)
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches
