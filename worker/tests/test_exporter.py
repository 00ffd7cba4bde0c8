import csv
import json
from datetime import date, datetime, timezone

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    EntityType,
    RawCandidate,
    Rating,
    RunRecord,
    SourceRunLog,
)
from directory.dedupe.merger import merge
from directory.etl.normalize import Normalizer
from directory.export import exporter

STARTED = datetime(2026, 10, 1, 4, 0, tzinfo=timezone.utc)


def make_record(stable_id, **overrides):
    values = {
        "stable_id": stable_id,
        "name": f"Supplier {stable_id}",
        "source_platform": "maps",
        "source_url": f"https://example.ng/{stable_id}",
        "approval_status": ApprovalStatus.APPROVED,
        "confidence": 0.7,
    }
    values.update(overrides)
    return CanonicalRecord(**values)


def make_run():
    return RunRecord(
        run_id="run_20261001T040000000000Z",
        trigger="monthly-1st",
        sources={"maps": SourceRunLog(source_platform="maps", status="completed", found=3, new=2)},
        found=3,
        new=2,
        success=True,
        started_at=STARTED,
        completed_at=STARTED,
    )


def test_exportable_filters_and_orders():
    records = [
        make_record("low", confidence=0.65),
        make_record("high", confidence=0.9),
        make_record("pending", approval_status=ApprovalStatus.PENDING, confidence=0.99),
        make_record("banned", is_blacklisted=True, confidence=0.95),
    ]

    assert [record.stable_id for record in exporter.exportable(records)] == ["high", "low"]


def test_csv_row_quotes_lists_and_flattens_newlines():
    record = make_record(
        "a",
        name="Tent Kings\nNigeria",
        phones=["+2348031234567"],
        ratings={"google": Rating(stars=4.5, count=20)},
        explicit_professional_language=True,
    )

    row = dict(zip(exporter.CSV_COLUMNS, exporter.csv_row(record)))

    assert row["name"] == "Tent Kings Nigeria"
    assert row["phones"] == '["+2348031234567"]'
    assert row["google_rating"] == "4.5"
    assert row["facebook_rating"] == ""
    assert row["confidence"] == "0.70"
    assert row["explicit_professional_language"] == "true"


def test_quality_report_sections():
    records = [
        make_record("a", region="Lagos", categories=["tents"], phones=["+2348031234567"], confidence=0.9),
        make_record("b", region="Lagos", categories=["tents", "seating"], confidence=0.65),
        make_record("c", region="Kano", confidence=0.4),
    ]

    report = exporter.build_quality_report(records, make_run())

    assert "# Directory Quality Report" in report
    assert "| High (>=80%) | 1 | 33.3% |" in report
    assert "| Medium (60-79%) | 1 | 33.3% |" in report
    assert "**Regions Covered**: 2/37" in report
    assert "1. Lagos: 2" in report
    assert "- tents: 2" in report
    assert "- **Phone**: 1 (33.3%)" in report
    assert "run_20261001T040000000000Z" in report


def test_export_run_writes_all_files(tmp_path):
    run = make_run()
    records = [
        make_record("a", confidence=0.9, notes='said "hello", twice'),
        make_record("b", approval_status=ApprovalStatus.PENDING),
    ]

    paths = exporter.Exporter(tmp_path / "exports").export_run(run, records)

    assert set(paths) == {"jsonl", "csv", "quality_report", "sources_log"}
    lines = (tmp_path / "exports" / f"records_{run.run_id}.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["stable_id"] for line in lines] == ["a"]

    with open(paths["csv"], newline="", encoding="utf-8") as handle:
        header = handle.readline()
        handle.seek(0)
        rows = list(csv.reader(handle))
    assert header.startswith('"stable_id","entity_type"')
    assert rows[0] == list(exporter.CSV_COLUMNS)
    assert len(rows) == 2

    with open(paths["sources_log"], encoding="utf-8") as handle:
        log_entries = [json.loads(line) for line in handle]
    assert log_entries == [
        {
            "run_id": run.run_id,
            "source_platform": "maps",
            "status": "completed",
            "records_found": 3,
            "records_new": 2,
            "records_updated": 0,
            "records_invalid": 0,
            "errors": [],
            "execution_time_ms": 0,
        }
    ]


def test_snapshot_reimport_reproduces_stable_ids(tmp_path):
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    normalizer = Normalizer()
    supplier = normalizer.normalize(
        RawCandidate(
            name="Tent Kings Nigeria",
            source_url="https://maps.example/1",
            source_platform="maps",
            region="Lagos",
            phones=["0803 123 4567"],
            product_examples=["wholesale tents"],
        ),
        now=now,
    )
    event = normalizer.normalize(
        RawCandidate(
            name="Burial of Chief Adebayo",
            source_url="https://punchng.com/obituary",
            source_platform="punch",
            entity_type=EntityType.EVENT,
            date_start="14th November 2026",
            region="Ibadan, Oyo State",
        ),
        now=now,
    )
    supplier.source_url += " | merged from: https://example.ng/other"

    path = exporter.Exporter(tmp_path).write_jsonl("run_x", [supplier, event])
    candidates = exporter.load_snapshot(path)

    reimported = [normalizer.normalize(candidate, now=now) for candidate in candidates]
    assert [record.stable_id for record in reimported] == [supplier.stable_id, event.stable_id]
    assert reimported[0].source_url == "https://maps.example/1"
    assert reimported[1].date_start == date(2026, 11, 14)


def test_snapshot_reimport_keeps_stable_id_of_merged_record(tmp_path):
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    normalizer = Normalizer()
    primary = normalizer.normalize(
        RawCandidate(
            name="Tent Kings",
            source_url="https://businesslist.example/tent-kings",
            source_platform="directory",
            emails=["sales@tentkings.ng"],
            product_examples=["wholesale tents"],
        ),
        now=now,
    )
    secondary = normalizer.normalize(
        RawCandidate(
            name="Tent Kings",
            source_url="https://maps.example/tent-kings",
            source_platform="maps",
            region="Lagos",
            phones=["08031234567"],
        ),
        now=now,
    )
    merged = merge(primary, secondary, now=now)
    assert merged.region == "Lagos"
    assert merged.phones == ["+2348031234567"]
    merged.approval_status = ApprovalStatus.APPROVED

    path = exporter.Exporter(tmp_path).write_jsonl("run_x", [merged])
    candidates = exporter.load_snapshot(path)

    assert candidates[0].identity_key == "no-phone|no-region"
    reimported = normalizer.normalize(candidates[0], now=now)
    assert reimported.stable_id == primary.stable_id
    assert reimported.region == "Lagos"


def test_load_snapshot_skips_malformed_lines(tmp_path, caplog):
    path = tmp_path / "records.jsonl"
    path.write_text('{"name": "Tent Kings", "source_url": "https://x.ng"}\nnot json\n\n', encoding="utf-8")

    with caplog.at_level("WARNING"):
        candidates = exporter.load_snapshot(path)

    assert [candidate.name for candidate in candidates] == ["Tent Kings"]
    assert "Skipping malformed snapshot line 2" in " ".join(caplog.messages)
