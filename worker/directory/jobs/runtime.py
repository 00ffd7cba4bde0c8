"""Wire the store, coordinator, queue, scheduler and review service together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from directory.collectors.base import Collector, build_session
from directory.collectors.enricher import WebsiteEnricher
from directory.collectors.registry import build_collectors
from directory.core.config import Settings, get_settings
from directory.core.db import PostgresStore
from directory.core.review import ReviewService
from directory.core.store import MemoryStore, RecordStore
from directory.export.exporter import Exporter
from directory.jobs.coordinator import RunCoordinator
from directory.jobs.queue import RefreshQueue, RefreshRequest
from directory.jobs.scheduler import RefreshScheduler
from directory.notify.webhook import WebhookNotifier

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: RecordStore
    coordinator: RunCoordinator
    queue: RefreshQueue
    scheduler: RefreshScheduler
    review: ReviewService

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.queue.shutdown(wait=False)


def build_store(settings: Settings) -> RecordStore:
    if not settings.database_url:
        logger.warning("Using the in-memory record store; data is lost on restart.")
        return MemoryStore()
    store = PostgresStore()
    store.ensure_schema()
    return store


def build_runtime(settings: Optional[Settings] = None, store: Optional[RecordStore] = None) -> Runtime:
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    notifier = WebhookNotifier(settings)

    def collector_factory(request: RefreshRequest) -> List[Collector]:
        return build_collectors(request.sources, request.regions, request.full_crawl, settings)

    enricher = WebsiteEnricher(settings=settings, session=build_session(settings)) if settings.enrich_websites else None
    coordinator = RunCoordinator(
        store,
        collector_factory,
        settings=settings,
        exporter=Exporter(settings.export_dir),
        notifier=notifier,
        enricher=enricher,
    )
    queue = RefreshQueue(
        coordinator.run,
        max_workers=settings.queue_workers,
        max_attempts=settings.job_max_attempts,
        backoff_seconds=settings.job_backoff_seconds,
        notifier=notifier,
        store=store,
    )
    scheduler = RefreshScheduler(queue.enqueue, timezone_name=settings.schedule_timezone)
    return Runtime(
        settings=settings,
        store=store,
        coordinator=coordinator,
        queue=queue,
        scheduler=scheduler,
        review=ReviewService(store),
    )
