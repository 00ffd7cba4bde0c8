"""Re-import a records_<run_id>.jsonl export through the normalizer and report stable-id drift."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from directory.core.config import get_settings  # noqa: E402
from directory.core.store import RecordStore  # noqa: E402
from directory.dedupe.merger import refresh_record  # noqa: E402
from directory.etl.normalize import NormalizationError, Normalizer  # noqa: E402
from directory.export.exporter import load_snapshot  # noqa: E402
from directory.jobs.runtime import build_store  # noqa: E402

logger = logging.getLogger("reimport_snapshot")


def reimport(
    snapshot: Path, normalizer: Normalizer, store: Optional[RecordStore] = None
) -> Tuple[int, int, int]:
    """Return `(drift, invalid, skipped)`; with a store, records are applied like a refresh run."""
    with snapshot.open("r", encoding="utf-8") as handle:
        expected_ids = [json.loads(line)["stable_id"] for line in handle if line.strip()]

    drift = invalid = skipped = 0
    for expected, candidate in zip(expected_ids, load_snapshot(snapshot)):
        try:
            record = normalizer.normalize(candidate)
        except NormalizationError as exc:
            invalid += 1
            logger.warning("Could not re-normalize %s: %s", expected, exc)
            continue
        if record.stable_id != expected:
            drift += 1
            logger.warning("Stable id drift for %r: %s -> %s", candidate.name, expected, record.stable_id)
        if store is None:
            continue

        existing = store.find_by_stable_id(record.stable_id)
        if existing is not None and existing.is_blacklisted:
            skipped += 1
            logger.info("Skipping blacklisted record %s", record.stable_id)
            continue
        if existing is not None:
            record = refresh_record(existing, record)
        store.upsert(record)

    logger.info(
        "Re-imported %d records: drift=%d invalid=%d skipped=%d", len(expected_ids), drift, invalid, skipped
    )
    return drift, invalid, skipped


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("snapshot", type=Path, help="Path to a records_<run_id>.jsonl export")
    parser.add_argument("--apply", action="store_true", help="Upsert re-normalized records into the store")
    args = parser.parse_args(argv)

    store = build_store(get_settings()) if args.apply else None
    drift, invalid, _ = reimport(args.snapshot, Normalizer(), store)
    return 1 if drift or invalid else 0


if __name__ == "__main__":
    raise SystemExit(main())
