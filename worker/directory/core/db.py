"""PostgreSQL-backed record store for the worker."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from psycopg2 import extras, pool

from directory.core.config import get_settings
from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    EntityType,
    ReviewItem,
    ReviewStatus,
    RunRecord,
)
from directory.core.store import DuplicateRunError

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS directory_records (
    stable_id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    name TEXT NOT NULL,
    region TEXT,
    contact_numbers TEXT[] NOT NULL DEFAULT '{}',
    emails TEXT[] NOT NULL DEFAULT '{}',
    websites TEXT[] NOT NULL DEFAULT '{}',
    effective_date DATE,
    confidence DOUBLE PRECISION NOT NULL,
    approval_status TEXT NOT NULL,
    is_blacklisted BOOLEAN NOT NULL DEFAULT FALSE,
    payload JSONB NOT NULL,
    first_seen_at TIMESTAMPTZ NOT NULL,
    last_seen_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS directory_records_region_idx ON directory_records (region);
CREATE INDEX IF NOT EXISTS directory_records_contact_idx ON directory_records USING GIN (contact_numbers);
CREATE INDEX IF NOT EXISTS directory_records_emails_idx ON directory_records USING GIN (emails);
CREATE INDEX IF NOT EXISTS directory_records_websites_idx ON directory_records USING GIN (websites);
CREATE INDEX IF NOT EXISTS directory_records_effective_date_idx ON directory_records (effective_date);

CREATE TABLE IF NOT EXISTS run_records (
    run_id TEXT PRIMARY KEY,
    trigger TEXT NOT NULL,
    state TEXT NOT NULL,
    success BOOLEAN NOT NULL,
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    payload JSONB NOT NULL
);

CREATE TABLE IF NOT EXISTS review_items (
    id TEXT PRIMARY KEY,
    record_a_id TEXT NOT NULL,
    record_b_id TEXT NOT NULL,
    similarity DOUBLE PRECISION NOT NULL,
    reason TEXT NOT NULL,
    run_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    resolved_at TIMESTAMPTZ
);
"""

_UPSERT_RECORD = """
INSERT INTO directory_records (
    stable_id,
    entity_type,
    name,
    region,
    contact_numbers,
    emails,
    websites,
    effective_date,
    confidence,
    approval_status,
    is_blacklisted,
    payload,
    first_seen_at,
    last_seen_at,
    updated_at
) VALUES (
    %(stable_id)s,
    %(entity_type)s,
    %(name)s,
    %(region)s,
    %(contact_numbers)s,
    %(emails)s,
    %(websites)s,
    %(effective_date)s,
    %(confidence)s,
    %(approval_status)s,
    %(is_blacklisted)s,
    %(payload)s,
    %(first_seen_at)s,
    %(last_seen_at)s,
    NOW()
)
ON CONFLICT (stable_id) DO UPDATE SET
    entity_type = EXCLUDED.entity_type,
    name = EXCLUDED.name,
    region = EXCLUDED.region,
    contact_numbers = EXCLUDED.contact_numbers,
    emails = EXCLUDED.emails,
    websites = EXCLUDED.websites,
    effective_date = EXCLUDED.effective_date,
    confidence = EXCLUDED.confidence,
    approval_status = CASE WHEN directory_records.is_blacklisted
        THEN directory_records.approval_status ELSE EXCLUDED.approval_status END,
    is_blacklisted = directory_records.is_blacklisted OR EXCLUDED.is_blacklisted,
    payload = CASE WHEN directory_records.is_blacklisted
        THEN EXCLUDED.payload || jsonb_build_object(
            'is_blacklisted', TRUE,
            'approval_status', directory_records.approval_status
        )
        ELSE EXCLUDED.payload END,
    first_seen_at = LEAST(directory_records.first_seen_at, EXCLUDED.first_seen_at),
    last_seen_at = GREATEST(directory_records.last_seen_at, EXCLUDED.last_seen_at),
    updated_at = NOW()
RETURNING (xmax = 0) AS inserted;
"""

_FIND_BY_WEAK_SIGNAL = """
SELECT payload FROM directory_records
WHERE (%(entity_type)s::text IS NULL OR entity_type = %(entity_type)s)
  AND (
    (%(region)s::text IS NOT NULL AND region = %(region)s)
    OR contact_numbers && %(phones)s::text[]
    OR emails && %(emails)s::text[]
    OR websites && %(websites)s::text[]
  )
ORDER BY confidence DESC, stable_id;
"""

_LIST_RECORDS = """
SELECT payload FROM directory_records
WHERE (%(approval_status)s::text IS NULL OR approval_status = %(approval_status)s)
  AND (%(include_blacklisted)s OR NOT is_blacklisted)
ORDER BY confidence DESC, stable_id;
"""

_INSERT_RUN = """
INSERT INTO run_records (run_id, trigger, state, success, started_at, completed_at, payload)
VALUES (
    %(run_id)s,
    %(trigger)s,
    %(state)s,
    %(success)s,
    %(started_at)s,
    %(completed_at)s,
    %(payload)s
)
ON CONFLICT (run_id) DO NOTHING
RETURNING run_id;
"""

_INSERT_REVIEW_ITEM = """
INSERT INTO review_items (id, record_a_id, record_b_id, similarity, reason, run_id, status, created_at)
VALUES (
    %(id)s,
    %(record_a_id)s,
    %(record_b_id)s,
    %(similarity)s,
    %(reason)s,
    %(run_id)s,
    %(status)s,
    %(created_at)s
)
ON CONFLICT (id) DO NOTHING
RETURNING id;
"""

_REVIEW_COLUMNS = "id, record_a_id, record_b_id, similarity, reason, run_id, status, created_at, resolved_at"


def _prepare_record_params(record: CanonicalRecord) -> Dict[str, Any]:
    return {
        "stable_id": record.stable_id,
        "entity_type": record.entity_type.value,
        "name": record.name,
        "region": record.region,
        "contact_numbers": sorted(record.contact_numbers()),
        "emails": list(record.emails),
        "websites": list(record.websites),
        "effective_date": record.effective_date,
        "confidence": record.confidence,
        "approval_status": record.approval_status.value,
        "is_blacklisted": record.is_blacklisted,
        "payload": extras.Json(record.to_dict()),
        "first_seen_at": record.first_seen_at,
        "last_seen_at": record.last_seen_at,
    }


def _review_item_from_row(row) -> ReviewItem:
    item_id, record_a_id, record_b_id, similarity, reason, run_id, status, created_at, resolved_at = row
    return ReviewItem(
        id=item_id,
        record_a_id=record_a_id,
        record_b_id=record_b_id,
        similarity=float(similarity),
        reason=reason,
        run_id=run_id,
        status=ReviewStatus(status),
        created_at=created_at,
        resolved_at=resolved_at,
    )


class PostgresStore:
    """`RecordStore` backed by the pooled PostgreSQL connection."""

    def ensure_schema(self) -> None:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("Database schema ensured")

    def _fetch_payloads(self, sql: str, params: Dict[str, Any]) -> List[CanonicalRecord]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [CanonicalRecord.from_dict(row[0]) for row in rows]

    def _execute(self, sql: str, params: Dict[str, Any]) -> int:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                affected = cur.rowcount
            conn.commit()
        return affected

    def find_by_stable_id(self, stable_id: str) -> Optional[CanonicalRecord]:
        records = self._fetch_payloads(
            "SELECT payload FROM directory_records WHERE stable_id = %(stable_id)s",
            {"stable_id": stable_id},
        )
        return records[0] if records else None

    def upsert(self, record: CanonicalRecord) -> bool:
        params = _prepare_record_params(record)
        if not params["stable_id"] or not params["name"]:
            raise ValueError("stable_id and name are required for upsert")

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_UPSERT_RECORD, params)
                row = cur.fetchone()
            conn.commit()
        logger.debug("Upserted record %s (%s)", record.stable_id, record.name)
        return bool(row and row[0])

    def delete(self, stable_id: str) -> bool:
        return self._execute(
            "DELETE FROM directory_records WHERE stable_id = %(stable_id)s",
            {"stable_id": stable_id},
        ) > 0

    def find_by_weak_signal(
        self,
        *,
        region: Optional[str] = None,
        phones: Iterable[str] = (),
        emails: Iterable[str] = (),
        websites: Iterable[str] = (),
        entity_type: Optional[EntityType] = None,
    ) -> List[CanonicalRecord]:
        return self._fetch_payloads(
            _FIND_BY_WEAK_SIGNAL,
            {
                "region": region,
                "phones": list(phones),
                "emails": list(emails),
                "websites": list(websites),
                "entity_type": entity_type.value if entity_type else None,
            },
        )

    def delete_where(self, date_before: date) -> int:
        removed = self._execute(
            "DELETE FROM directory_records WHERE effective_date IS NOT NULL AND effective_date < %(date_before)s",
            {"date_before": date_before},
        )
        if removed:
            logger.info("Retention sweep removed %s records dated before %s", removed, date_before)
        return removed

    def list_records(
        self,
        approval_status: Optional[ApprovalStatus] = None,
        include_blacklisted: bool = False,
    ) -> List[CanonicalRecord]:
        return self._fetch_payloads(
            _LIST_RECORDS,
            {
                "approval_status": approval_status.value if approval_status else None,
                "include_blacklisted": include_blacklisted,
            },
        )

    def save_run(self, run: RunRecord) -> None:
        params = {
            "run_id": run.run_id,
            "trigger": run.trigger,
            "state": run.state.value,
            "success": run.success,
            "started_at": run.started_at,
            "completed_at": run.completed_at,
            "payload": extras.Json(run.to_dict()),
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_RUN, params)
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise DuplicateRunError(f"Run {run.run_id} has already been recorded")

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT payload FROM run_records WHERE run_id = %(run_id)s", {"run_id": run_id})
                row = cur.fetchone()
        return RunRecord.from_dict(row[0]) if row else None

    def list_runs(self, limit: int = 20) -> List[RunRecord]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT payload FROM run_records ORDER BY run_id DESC LIMIT %(limit)s",
                    {"limit": limit},
                )
                rows = cur.fetchall()
        return [RunRecord.from_dict(row[0]) for row in rows]

    def save_review_item(self, item: ReviewItem) -> bool:
        params = {
            "id": item.id,
            "record_a_id": item.record_a_id,
            "record_b_id": item.record_b_id,
            "similarity": item.similarity,
            "reason": item.reason,
            "run_id": item.run_id,
            "status": item.status.value,
            "created_at": item.created_at,
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_REVIEW_ITEM, params)
                row = cur.fetchone()
            conn.commit()
        return row is not None

    def get_review_item(self, item_id: str) -> Optional[ReviewItem]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_REVIEW_COLUMNS} FROM review_items WHERE id = %(id)s", {"id": item_id})
                row = cur.fetchone()
        return _review_item_from_row(row) if row else None

    def resolve_review_item(self, item_id: str, status: ReviewStatus) -> bool:
        return self._execute(
            "UPDATE review_items SET status = %(status)s, resolved_at = NOW() WHERE id = %(id)s",
            {"id": item_id, "status": status.value},
        ) > 0

    def list_review_items(self, status: Optional[ReviewStatus] = ReviewStatus.PENDING) -> List[ReviewItem]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_REVIEW_COLUMNS} FROM review_items "
                    "WHERE (%(status)s::text IS NULL OR status = %(status)s) "
                    "ORDER BY similarity DESC, id",
                    {"status": status.value if status else None},
                )
                rows = cur.fetchall()
        return [_review_item_from_row(row) for row in rows]
