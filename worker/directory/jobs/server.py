"""HTTP entrypoint for manual refresh triggers, run status and human review."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from directory.collectors.registry import UnknownSourceError, validate_sources
from directory.core.models import ApprovalStatus
from directory.core.review import DISMISS, MERGE, ReviewError, UnknownReviewTargetError
from directory.jobs.queue import RefreshRequest, estimate_duration_minutes
from directory.jobs.runtime import Runtime, build_runtime

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & runtime ----------
app = Flask(__name__)
_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def _string_list(payload: Dict[str, Any], key: str) -> Optional[List[str]]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    runtime = get_runtime()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": runtime.settings.worker_port,
                "scheduler_running": runtime.scheduler.running,
                "queue": runtime.queue.stats(),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/refresh")
def enqueue_refresh() -> Any:
    """
    Enqueue a refresh run.
    Optional JSON fields: sources (list), regions (list), full_crawl (bool)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    runtime = get_runtime()

    try:
        sources = _string_list(payload, "sources")
        regions = _string_list(payload, "regions")
        if sources is not None:
            sources = validate_sources(sources)
    except (ValueError, UnknownSourceError) as exc:
        return jsonify({"error": str(exc)}), 400

    full_crawl = payload.get("full_crawl", False)
    if not isinstance(full_crawl, bool):
        return jsonify({"error": "full_crawl must be a boolean"}), 400

    refresh = RefreshRequest(
        sources=sources or None,
        regions=regions or [],
        full_crawl=full_crawl,
        trigger="manual",
    )
    job = runtime.scheduler.trigger_manual(refresh)
    sources_queued = refresh.sources or list(runtime.settings.default_sources)
    regions_queued = refresh.regions or list(runtime.settings.default_regions)

    logger.info("Queued manual refresh %s: sources=%s regions=%s", job.run_id, sources_queued, regions_queued)
    return (
        jsonify(
            {
                "data": {
                    "status": "queued",
                    "run_id": job.run_id,
                    "estimated_duration_minutes": estimate_duration_minutes(sources_queued, full_crawl),
                    "sources_queued": sources_queued,
                    "regions_queued": regions_queued,
                }
            }
        ),
        202,
    )


@app.get("/refresh/<run_id>")
def refresh_status(run_id: str) -> Any:
    runtime = get_runtime()
    job = runtime.queue.get(run_id)
    if job is not None:
        return jsonify({"data": job.to_dict()}), 200
    run = runtime.store.get_run(run_id)
    if run is None:
        return jsonify({"error": f"unknown run {run_id}"}), 404
    return jsonify({"data": run.to_dict()}), 200


@app.delete("/refresh/<run_id>")
def cancel_refresh(run_id: str) -> Any:
    runtime = get_runtime()
    job = runtime.queue.get(run_id)
    if job is None:
        return jsonify({"error": f"unknown run {run_id}"}), 404
    if not runtime.queue.cancel(run_id):
        return jsonify({"error": f"run {run_id} is {job.state.value} and cannot be cancelled"}), 409
    return jsonify({"data": {"run_id": run_id, "status": "cancelled"}}), 200


@app.get("/runs")
def list_runs() -> Any:
    runtime = get_runtime()
    try:
        limit = int(request.args.get("limit", 20))
    except ValueError:
        return jsonify({"error": "limit must be numeric"}), 400
    return (
        jsonify(
            {
                "data": {
                    "active": [job.to_dict() for job in runtime.queue.list_jobs()],
                    "history": [run.to_dict() for run in runtime.store.list_runs(limit)],
                }
            }
        ),
        200,
    )


@app.get("/review/matches")
def review_matches() -> Any:
    items = get_runtime().review.pending_matches()
    return jsonify({"data": [item.to_dict() for item in items]}), 200


@app.post("/review/matches/<match_id>")
def resolve_match(match_id: str) -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    action = payload.get("action", MERGE)
    if action not in (MERGE, DISMISS):
        return jsonify({"error": f"action must be one of {MERGE}, {DISMISS}"}), 400
    try:
        item = get_runtime().review.resolve_match(match_id, action, payload.get("primary_id"))
    except UnknownReviewTargetError as exc:
        return jsonify({"error": str(exc)}), 404
    except ReviewError as exc:
        return jsonify({"error": str(exc)}), 409
    return jsonify({"data": item.to_dict()}), 200


@app.get("/review/records")
def review_records() -> Any:
    records = get_runtime().review.pending_records()
    return jsonify({"data": [record.to_dict() for record in records]}), 200


@app.post("/review/records/<stable_id>")
def review_record(stable_id: str) -> Any:
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    review = get_runtime().review
    actions = {
        ApprovalStatus.APPROVED.value: review.approve,
        ApprovalStatus.REJECTED.value: review.reject,
        "blacklist": review.blacklist,
    }
    action = payload.get("action")
    if action == "merge":
        secondary_id = payload.get("secondary_id")
        if not secondary_id:
            return jsonify({"error": "secondary_id is required for merge"}), 400
        handler = lambda target: review.merge(target, secondary_id)  # noqa: E731
    elif action in actions:
        handler = actions[action]
    else:
        return jsonify({"error": "action must be approved, rejected, blacklist or merge"}), 400

    try:
        record = handler(stable_id)
    except UnknownReviewTargetError as exc:
        return jsonify({"error": str(exc)}), 404
    except ReviewError as exc:
        return jsonify({"error": str(exc)}), 409
    return jsonify({"data": record.to_dict()}), 200


def main() -> None:
    env_port = os.getenv("PORT")
    runtime = get_runtime()
    port = int(env_port or runtime.settings.worker_port)
    runtime.scheduler.start()
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    try:
        app.run(host="0.0.0.0", port=port)
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
