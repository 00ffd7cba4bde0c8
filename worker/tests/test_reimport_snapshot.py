import importlib.util
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from directory.core.models import ApprovalStatus, RawCandidate
from directory.core.store import MemoryStore
from directory.etl.normalize import Normalizer
from directory.export.exporter import Exporter

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "reimport_snapshot.py"
spec = importlib.util.spec_from_file_location("reimport_snapshot", SCRIPT)
reimport_snapshot = importlib.util.module_from_spec(spec)
spec.loader.exec_module(reimport_snapshot)

EARLY = datetime(2026, 1, 1, tzinfo=timezone.utc)
EXPORTED = datetime(2026, 10, 1, tzinfo=timezone.utc)
REVIEWED = datetime(2026, 10, 5, tzinfo=timezone.utc)


def normalized(name, **overrides):
    values = {
        "name": name,
        "source_url": f"https://example.ng/{name.lower().replace(' ', '-')}",
        "source_platform": "directory",
        "region": "Lagos",
        "phones": ["0803 123 4567"],
    }
    values.update(overrides)
    return Normalizer().normalize(RawCandidate(**values), now=EXPORTED)


def test_reimport_reports_without_a_store(tmp_path):
    path = Exporter(tmp_path).write_jsonl("run_x", [normalized("Tent Kings", notes="wholesale tents")])

    assert reimport_snapshot.reimport(path, Normalizer()) == (0, 0, 0)


def test_apply_keeps_review_decisions_and_blacklist(tmp_path):
    banned = normalized("Fake Rentals")
    kept = normalized("Tent Kings", phones=["0809 000 0000"], notes="wholesale tents")
    path = Exporter(tmp_path).write_jsonl("run_x", [banned, kept])

    banned_stored = replace(banned, is_blacklisted=True, approval_status=ApprovalStatus.REJECTED)
    kept_stored = replace(
        kept,
        approval_status=ApprovalStatus.REJECTED,
        reviewed_at=REVIEWED,
        first_seen_at=EARLY,
        emails=["sales@tentkings.ng"],
    )
    store = MemoryStore([banned_stored, kept_stored])

    assert reimport_snapshot.reimport(path, Normalizer(), store) == (0, 0, 1)

    assert store.find_by_stable_id(banned.stable_id).to_dict() == banned_stored.to_dict()
    refreshed = store.find_by_stable_id(kept.stable_id)
    assert refreshed.approval_status is ApprovalStatus.REJECTED
    assert refreshed.reviewed_at == REVIEWED
    assert refreshed.first_seen_at == EARLY
    assert refreshed.emails == ["sales@tentkings.ng"]
    assert refreshed.is_blacklisted is False
