"""One refresh run: collect, normalize, deduplicate, upsert, retire, export, notify."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple

from directory.collectors.base import Collector, CollectorResult
from directory.collectors.enricher import WebsiteEnricher
from directory.core.config import Settings, get_settings
from directory.core.models import (
    CanonicalRecord,
    DuplicateMatch,
    ReviewItem,
    RunRecord,
    RunState,
    SourceRunLog,
    utcnow,
)
from directory.core.store import RecordStore
from directory.dedupe.matcher import AUTO_MERGE, REVIEW, Matcher, choose_primary
from directory.dedupe.merger import merge, refresh_record
from directory.etl.normalize import NormalizationError, Normalizer
from directory.export.exporter import Exporter
from directory.notify.webhook import Notifier, dispatch_notification

if TYPE_CHECKING:
    from directory.jobs.queue import RefreshRequest

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_COLLECTED = 40
PROGRESS_NORMALIZED = 55
PROGRESS_MATCHED = 75
PROGRESS_STORED = 85
PROGRESS_DONE = 100

_run_id_lock = threading.Lock()
_last_run_at: Optional[datetime] = None


def generate_run_id(now: Optional[datetime] = None) -> str:
    """`run_<UTC timestamp>`; strictly increasing within the process."""
    global _last_run_at
    with _run_id_lock:
        current = (now or utcnow()).astimezone(timezone.utc)
        if _last_run_at is not None and current <= _last_run_at:
            current = _last_run_at + timedelta(microseconds=1)
        _last_run_at = current
    return f"run_{current:%Y%m%dT%H%M%S%f}Z"


def retention_cutoff(today: date, retention_days: int) -> date:
    """Events whose effective date falls before this are retired."""
    return today - timedelta(days=1) - timedelta(days=retention_days)


class RunCoordinator:
    def __init__(
        self,
        store: RecordStore,
        collector_factory: Callable[["RefreshRequest"], List[Collector]],
        *,
        settings: Optional[Settings] = None,
        normalizer: Optional[Normalizer] = None,
        matcher: Optional[Matcher] = None,
        exporter: Optional[Exporter] = None,
        notifier: Optional[Notifier] = None,
        enricher: Optional[WebsiteEnricher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.collector_factory = collector_factory
        self.settings = settings or get_settings()
        self.normalizer = normalizer or Normalizer()
        self.matcher = matcher or Matcher()
        self.exporter = exporter
        self.notifier = notifier
        self.enricher = enricher
        self.clock = clock

    def run(
        self,
        request: "RefreshRequest",
        run_id: Optional[str] = None,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> RunRecord:
        run = RunRecord(
            run_id=run_id or generate_run_id(),
            trigger=request.trigger,
            state=RunState.RUNNING,
            started_at=self.clock(),
        )
        self._advance(run, PROGRESS_STARTED, on_progress)
        logger.info("Run %s started (trigger=%s, sources=%s)", run.run_id, run.trigger, request.sources or "default")

        results = self._collect(self.collector_factory(request), run)
        self._advance(run, PROGRESS_COLLECTED, on_progress)

        if not any(not log.failed for log in run.sources.values()):
            logger.error("Run %s: every source failed; leaving the store untouched", run.run_id)
            run.errors.append("All sources failed")
            return self._finalize(run, success=False, on_progress=on_progress)

        cutoff = retention_cutoff(self.clock().date(), self.settings.retention_days)
        records = self._normalize(results, run, cutoff)
        self._advance(run, PROGRESS_NORMALIZED, on_progress)

        survivors, retired = self._deduplicate(records, run)
        self._advance(run, PROGRESS_MATCHED, on_progress)

        self._store(survivors, retired, run)
        self._advance(run, PROGRESS_STORED, on_progress)

        run.removed = self.store.delete_where(cutoff)
        return self._finalize(run, success=True, on_progress=on_progress)

    def _advance(self, run: RunRecord, progress: int, on_progress: Optional[Callable[[int], None]]) -> None:
        run.progress = progress
        if on_progress is not None:
            on_progress(progress)

    def _collect(self, collectors: Sequence[Collector], run: RunRecord) -> Dict[str, CollectorResult]:
        results: Dict[str, CollectorResult] = {}
        if not collectors:
            return results

        executor = ThreadPoolExecutor(
            max_workers=min(self.settings.collector_concurrency, len(collectors)),
            thread_name_prefix="collector",
        )
        try:
            futures = {executor.submit(collector.scrape): collector for collector in collectors}
            done, not_done = wait(futures, timeout=self.settings.collector_timeout_seconds)

            for future, collector in futures.items():
                name = collector.source_platform
                log = SourceRunLog(source_platform=name)
                run.sources[name] = log
                if future in not_done:
                    future.cancel()
                    log.status = "failed"
                    log.errors.append(f"timed out after {self.settings.collector_timeout_seconds:.0f}s")
                    logger.warning("Collector %s timed out", name)
                    continue
                try:
                    result = future.result()
                except Exception as exc:  # noqa: BLE001
                    log.status = "failed"
                    log.errors.append(str(exc))
                    logger.warning("Collector %s failed: %s", name, exc)
                    continue

                if self.enricher is not None:
                    self._enrich(result)
                results[name] = result
                log.found = len(result.raw_candidates)
                log.errors.extend(result.errors)
                log.execution_time_ms = result.execution_time_ms
                if result.failed:
                    log.status = "failed"
                else:
                    log.status = "partial" if result.errors else "completed"
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            for collector in collectors:
                collector.close()

        for name, log in run.sources.items():
            run.errors.extend(f"{name}: {error}" for error in log.errors)
        run.found = sum(log.found for log in run.sources.values())
        return results

    def _enrich(self, result: CollectorResult) -> None:
        enriched = []
        for candidate in result.raw_candidates:
            try:
                enriched.append(self.enricher.enrich(candidate))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Website enrichment failed for %s: %s", candidate.name, exc)
                enriched.append(candidate)
        result.raw_candidates = enriched

    def _normalize(
        self, results: Dict[str, CollectorResult], run: RunRecord, cutoff: date
    ) -> List[CanonicalRecord]:
        now = self.clock()
        by_id: Dict[str, CanonicalRecord] = {}
        for name, result in results.items():
            log = run.sources[name]
            for candidate in result.raw_candidates:
                try:
                    record = self.normalizer.normalize(candidate, now=now)
                except NormalizationError as exc:
                    log.invalid += 1
                    run.invalid += 1
                    logger.debug("Invalid candidate from %s: %s", name, exc)
                    continue
                if record.effective_date is not None and record.effective_date < cutoff:
                    logger.debug("Skipping expired event %s (%s)", record.name, record.effective_date)
                    continue
                seen = by_id.get(record.stable_id)
                by_id[record.stable_id] = merge(seen, record, now=now) if seen else record
        return list(by_id.values())

    def _deduplicate(
        self, records: List[CanonicalRecord], run: RunRecord
    ) -> Tuple[Dict[str, CanonicalRecord], set]:
        now = self.clock()
        alive: Dict[str, CanonicalRecord] = {}
        for record in records:
            existing = self.store.find_by_stable_id(record.stable_id)
            if existing is not None and existing.is_blacklisted:
                run.suppressed += 1
                logger.info("Suppressed blacklisted record %s", record.stable_id)
                continue
            alive[record.stable_id] = record

        redirect: Dict[str, str] = {}
        retired: set = set()
        absorbed: set = set()
        reviews: List[DuplicateMatch] = []

        def current(stable_id: str) -> str:
            while stable_id in redirect:
                stable_id = redirect[stable_id]
            return stable_id

        def fold(record: CanonicalRecord, other: CanonicalRecord) -> None:
            primary, secondary = choose_primary(record, other)
            alive.pop(record.stable_id, None)
            alive.pop(other.stable_id, None)
            alive[primary.stable_id] = merge(primary, secondary, now=now)
            redirect[secondary.stable_id] = primary.stable_id
            retired.add(secondary.stable_id)
            run.merged += 1

        for match in self.matcher.find_duplicates(list(alive.values())):
            left, right = current(match.record_a.stable_id), current(match.record_b.stable_id)
            if left == right:
                continue
            verdict = self.matcher.classify(match.similarity)
            if verdict == AUTO_MERGE:
                fold(alive[left], alive[right])
            elif verdict == REVIEW:
                reviews.append(match)

        for stable_id in sorted(alive):
            record = alive.get(stable_id)
            if record is None:
                continue
            for match in self.matcher.find_store_matches(record, self.store):
                resident = match.record_b
                if resident.stable_id in absorbed:
                    # Already folded into a survivor earlier in this run.
                    holder = alive.get(current(resident.stable_id))
                    if holder is None or holder.stable_id == record.stable_id:
                        continue
                    match = self.matcher.compare(record, holder)
                    if match is None:
                        continue
                elif resident.stable_id in alive or resident.stable_id in retired:
                    continue
                other = match.record_b
                if self.matcher.classify(match.similarity) == AUTO_MERGE and not other.is_blacklisted:
                    fold(record, other)
                    absorbed.add(resident.stable_id)
                    break
                reviews.append(match)

        self._queue_reviews(reviews, alive, current, run)
        retired -= set(alive)
        return alive, retired

    def _queue_reviews(
        self,
        reviews: List[DuplicateMatch],
        alive: Dict[str, CanonicalRecord],
        current: Callable[[str], str],
        run: RunRecord,
    ) -> None:
        """Re-score review pairs against the records that survived merging."""
        for match in reviews:
            left, right = current(match.record_a.stable_id), current(match.record_b.stable_id)
            if left == right:
                continue
            rescored = self.matcher.compare(alive.get(left, match.record_a), alive.get(right, match.record_b))
            if rescored is None:
                continue
            if self.store.save_review_item(ReviewItem.for_match(rescored, run.run_id)):
                run.queued_for_review += 1

    def _store(self, survivors: Dict[str, CanonicalRecord], retired: set, run: RunRecord) -> None:
        now = self.clock()
        for record in survivors.values():
            existing = self.store.find_by_stable_id(record.stable_id)
            if existing is not None and existing.is_blacklisted:
                run.suppressed += 1
                continue
            if existing is not None:
                record = refresh_record(existing, record, now=now)
            inserted = self.store.upsert(record)
            log = run.sources.get(record.source_platform)
            if inserted:
                run.new += 1
            else:
                run.updated += 1
            if log is not None:
                if inserted:
                    log.new += 1
                else:
                    log.updated += 1

        for stable_id in sorted(retired):
            if self.store.delete(stable_id):
                logger.info("Retired merged record %s", stable_id)

    def _finalize(
        self, run: RunRecord, *, success: bool, on_progress: Optional[Callable[[int], None]]
    ) -> RunRecord:
        run.success = success
        run.state = RunState.COMPLETED if success else RunState.FAILED
        run.completed_at = self.clock()
        run.progress = PROGRESS_DONE

        if success and self.exporter is not None:
            try:
                run.exports = self.exporter.export_run(run, self.store.list_records())
            except Exception as exc:  # noqa: BLE001
                logger.exception("Export failed for %s: %s", run.run_id, exc)
                run.errors.append(f"export: {exc}")

        self.store.save_run(run)
        dispatch_notification(
            self.notifier,
            run_id=run.run_id,
            trigger=run.trigger,
            found=run.found,
            new=run.new,
            updated=run.updated,
            duration_ms=run.duration_ms,
            success=run.success,
            errors=list(run.errors),
        )
        logger.info(
            "Run %s %s: found=%s new=%s updated=%s merged=%s review=%s invalid=%s removed=%s",
            run.run_id,
            run.state.value,
            run.found,
            run.new,
            run.updated,
            run.merged,
            run.queued_for_review,
            run.invalid,
            run.removed,
        )
        if on_progress is not None:
            on_progress(PROGRESS_DONE)
        return run
