from datetime import date

import pytest

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    DuplicateMatch,
    EntityType,
    ReviewItem,
    ReviewStatus,
    RunRecord,
)
from directory.core.store import DuplicateRunError, MemoryStore


def make_record(stable_id, **overrides):
    values = {
        "stable_id": stable_id,
        "name": f"Record {stable_id}",
        "source_platform": "directory",
        "source_url": f"https://example.ng/{stable_id}",
    }
    values.update(overrides)
    return CanonicalRecord(**values)


def test_upsert_reports_inserts_and_returns_copies():
    store = MemoryStore()
    record = make_record("a", confidence=0.7)

    assert store.upsert(record) is True
    assert store.upsert(record) is False

    found = store.find_by_stable_id("a")
    found.name = "changed"
    assert store.find_by_stable_id("a").name == "Record a"
    assert len(store) == 1


def test_upsert_never_clears_the_blacklist():
    store = MemoryStore([make_record("a", is_blacklisted=True, approval_status=ApprovalStatus.REJECTED)])

    assert store.upsert(make_record("a", name="Renamed", approval_status=ApprovalStatus.APPROVED)) is False

    found = store.find_by_stable_id("a")
    assert found.is_blacklisted is True
    assert found.approval_status is ApprovalStatus.REJECTED
    assert found.name == "Renamed"


def test_find_by_weak_signal_matches_any_signal_within_type():
    store = MemoryStore(
        [
            make_record("region", region="Lagos"),
            make_record("phone", whatsapp=["+2348031234567"]),
            make_record("email", emails=["sales@tentkings.ng"]),
            make_record("web", websites=["https://tentkings.ng"]),
            make_record("event", region="Lagos", entity_type=EntityType.EVENT, date_start=date(2026, 11, 7)),
            make_record("none", region="Kano"),
        ]
    )

    found = store.find_by_weak_signal(
        region="Lagos",
        phones=["+2348031234567"],
        emails=["sales@tentkings.ng"],
        websites=["https://tentkings.ng"],
        entity_type=EntityType.SUPPLIER,
    )

    assert sorted(record.stable_id for record in found) == ["email", "phone", "region", "web"]


def test_delete_where_only_sweeps_dated_events():
    store = MemoryStore(
        [
            make_record("old", entity_type=EntityType.EVENT, date_start=date(2026, 9, 1)),
            make_record(
                "ongoing",
                entity_type=EntityType.EVENT,
                date_start=date(2026, 8, 1),
                date_end=date(2026, 10, 20),
            ),
            make_record("fresh", entity_type=EntityType.EVENT, date_start=date(2026, 10, 15)),
            make_record("supplier"),
        ]
    )

    assert store.delete_where(date(2026, 10, 10)) == 1
    assert store.find_by_stable_id("old") is None
    assert {record.stable_id for record in store.list_records()} == {"ongoing", "fresh", "supplier"}


def test_list_records_filters_status_and_blacklist():
    store = MemoryStore(
        [
            make_record("approved", approval_status=ApprovalStatus.APPROVED, confidence=0.8),
            make_record("approved-low", approval_status=ApprovalStatus.APPROVED, confidence=0.65),
            make_record("pending", confidence=0.9),
            make_record("banned", approval_status=ApprovalStatus.APPROVED, is_blacklisted=True),
        ]
    )

    approved = store.list_records(approval_status=ApprovalStatus.APPROVED)
    everything = store.list_records(include_blacklisted=True)

    assert [record.stable_id for record in approved] == ["approved", "approved-low"]
    assert len(everything) == 4


def test_run_records_are_append_only():
    store = MemoryStore()
    store.save_run(RunRecord(run_id="run_1", trigger="manual"))
    store.save_run(RunRecord(run_id="run_2", trigger="monthly-1st"))

    with pytest.raises(DuplicateRunError):
        store.save_run(RunRecord(run_id="run_1", trigger="manual"))

    assert [run.run_id for run in store.list_runs()] == ["run_2", "run_1"]
    assert store.get_run("run_1").trigger == "manual"
    assert store.get_run("missing") is None


def test_review_items_keep_first_detection():
    store = MemoryStore()
    a, b = make_record("b-id"), make_record("a-id")
    item = ReviewItem.for_match(DuplicateMatch(a, b, 0.8, "name 0.80"), run_id="run_1")
    again = ReviewItem.for_match(DuplicateMatch(b, a, 0.85, "name 0.85"), run_id="run_2")

    assert item.id == again.id
    assert (item.record_a_id, item.record_b_id) == ("a-id", "b-id")
    assert store.save_review_item(item) is True
    assert store.save_review_item(again) is False
    assert store.get_review_item(item.id).run_id == "run_1"

    assert store.resolve_review_item(item.id, ReviewStatus.DISMISSED) is True
    assert store.list_review_items() == []
    assert store.list_review_items(None)[0].status is ReviewStatus.DISMISSED
    assert store.resolve_review_item("missing", ReviewStatus.MERGED) is False
