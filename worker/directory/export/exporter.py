"""Snapshot exports: JSONL and CSV records, a quality report and the source log."""

from __future__ import annotations

import csv
import json
import logging
import statistics
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    EntityType,
    RawCandidate,
    Rating,
    RunRecord,
    utcnow,
)
from directory.etl.reference import NIGERIAN_STATES

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "stable_id",
    "entity_type",
    "name",
    "alternate_names",
    "categories",
    "product_examples",
    "region",
    "locality",
    "address",
    "phones",
    "whatsapp",
    "emails",
    "websites",
    "socials",
    "moq_units",
    "lead_time_days",
    "delivery_options",
    "price_range_hint",
    "business_hours",
    "google_rating",
    "facebook_rating",
    "confidence",
    "explicit_professional_language",
    "registration_number",
    "event_kind",
    "date_start",
    "date_end",
    "source_platform",
    "source_url",
    "first_seen_at",
    "last_seen_at",
)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6


def exportable(records: Sequence[CanonicalRecord]) -> List[CanonicalRecord]:
    """Approved, non-blacklisted records by descending confidence."""
    selected = [
        record
        for record in records
        if record.approval_status is ApprovalStatus.APPROVED and not record.is_blacklisted
    ]
    return sorted(selected, key=lambda record: (-record.confidence, record.stable_id))


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = json.dumps(list(value), ensure_ascii=False)
    elif isinstance(value, bool):
        value = "true" if value else "false"
    return str(value).replace("\r\n", " ").replace("\r", " ").replace("\n", " ")


def _rating_stars(record: CanonicalRecord, source: str) -> Optional[float]:
    rating = record.ratings.get(source)
    return rating.stars if rating else None


def csv_row(record: CanonicalRecord) -> List[str]:
    data = record.to_dict()
    data["google_rating"] = _rating_stars(record, "google")
    data["facebook_rating"] = _rating_stars(record, "facebook")
    data["confidence"] = f"{record.confidence:.2f}"
    return [_csv_value(data.get(column)) for column in CSV_COLUMNS]


def _percent(part: int, total: int) -> str:
    return f"{(part / total * 100):.1f}%" if total else "0.0%"


def build_quality_report(records: Sequence[CanonicalRecord], run: Optional[RunRecord] = None) -> str:
    total = len(records)
    confidences = [record.confidence for record in records]
    high = sum(1 for value in confidences if value >= HIGH_CONFIDENCE)
    medium = sum(1 for value in confidences if MEDIUM_CONFIDENCE <= value < HIGH_CONFIDENCE)
    low = total - high - medium
    median = statistics.median(confidences) if confidences else 0.0

    by_region = Counter(record.region for record in records if record.region)
    by_category = Counter(category for record in records for category in record.categories)
    with_phone = sum(1 for record in records if record.phones)
    with_whatsapp = sum(1 for record in records if record.whatsapp)
    with_email = sum(1 for record in records if record.emails)
    with_website = sum(1 for record in records if record.websites)
    explicit = sum(1 for record in records if record.explicit_professional_language)
    suppliers = sum(1 for record in records if record.entity_type is EntityType.SUPPLIER)

    lines = [
        "# Directory Quality Report",
        "",
        f"**Generated**: {utcnow().isoformat()}",
    ]
    if run is not None:
        lines += [
            f"**Run**: {run.run_id} ({run.trigger}, {'success' if run.success else 'failed'})",
            f"**Found / New / Updated / Merged / Review / Invalid / Removed**: "
            f"{run.found} / {run.new} / {run.updated} / {run.merged} / {run.queued_for_review} / "
            f"{run.invalid} / {run.removed}",
        ]
    lines += [
        f"**Total Records**: {total} ({suppliers} suppliers, {total - suppliers} events)",
        "",
        "## Confidence Distribution",
        "",
        "| Level | Count | Percentage |",
        "|-------|-------|------------|",
        f"| High (>=80%) | {high} | {_percent(high, total)} |",
        f"| Medium (60-79%) | {medium} | {_percent(medium, total)} |",
        f"| Low (<60%) | {low} | {_percent(low, total)} |",
        "",
        f"Median confidence: {median:.2f}",
        "",
        "## Geographic Coverage",
        "",
        f"**Regions Covered**: {len(by_region)}/{len(NIGERIAN_STATES)}",
        "",
    ]
    lines += [
        f"{index}. {region}: {count}" for index, (region, count) in enumerate(by_region.most_common(10), start=1)
    ] or ["No records carry a resolved region."]
    lines += ["", "## Category Distribution", ""]
    lines += [f"- {category}: {count}" for category, count in by_category.most_common()] or ["- none"]
    lines += [
        "",
        "## Contact Coverage",
        "",
        f"- **Phone**: {with_phone} ({_percent(with_phone, total)})",
        f"- **WhatsApp**: {with_whatsapp} ({_percent(with_whatsapp, total)})",
        f"- **Email**: {with_email} ({_percent(with_email, total)})",
        f"- **Website**: {with_website} ({_percent(with_website, total)})",
        f"- **Explicit professional language**: {explicit} ({_percent(explicit, total)})",
        "",
    ]
    return "\n".join(lines)


class Exporter:
    def __init__(self, export_dir: Union[str, Path]) -> None:
        self.export_dir = Path(export_dir)

    def _path(self, stem: str, run_id: str, suffix: str) -> Path:
        return self.export_dir / f"{stem}_{run_id}.{suffix}"

    def write_jsonl(self, run_id: str, records: Sequence[CanonicalRecord]) -> Path:
        path = self._path("records", run_id, "jsonl")
        with path.open("w", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True))
                handle.write("\n")
        return path

    def write_csv(self, run_id: str, records: Sequence[CanonicalRecord]) -> Path:
        path = self._path("records", run_id, "csv")
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for record in records:
                writer.writerow(csv_row(record))
        return path

    def write_quality_report(self, run: RunRecord, records: Sequence[CanonicalRecord]) -> Path:
        path = self._path("quality_report", run.run_id, "md")
        path.write_text(build_quality_report(records, run), encoding="utf-8")
        return path

    def write_source_log(self, run: RunRecord) -> Path:
        path = self._path("sources_log", run.run_id, "jsonl")
        with path.open("w", encoding="utf-8") as handle:
            for name, log in sorted(run.sources.items()):
                entry = {
                    "run_id": run.run_id,
                    "source_platform": name,
                    "status": log.status,
                    "records_found": log.found,
                    "records_new": log.new,
                    "records_updated": log.updated,
                    "records_invalid": log.invalid,
                    "errors": log.errors,
                    "execution_time_ms": log.execution_time_ms,
                }
                handle.write(json.dumps(entry, ensure_ascii=False))
                handle.write("\n")
        return path

    def export_run(self, run: RunRecord, records: Sequence[CanonicalRecord]) -> Dict[str, str]:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        selected = exportable(records)
        paths = {
            "jsonl": self.write_jsonl(run.run_id, selected),
            "csv": self.write_csv(run.run_id, selected),
            "quality_report": self.write_quality_report(run, selected),
            "sources_log": self.write_source_log(run),
        }
        logger.info("Exported %d records for %s to %s", len(selected), run.run_id, self.export_dir)
        return {key: str(path) for key, path in paths.items()}


def _raw_from_export(data: Dict[str, Any]) -> RawCandidate:
    ratings = {
        source: Rating(**rating) if isinstance(rating, dict) else rating
        for source, rating in (data.get("ratings") or {}).items()
    }
    return RawCandidate(
        name=data.get("name") or "",
        source_url=(data.get("source_url") or "").split(" | ", 1)[0],
        source_platform=data.get("source_platform") or "snapshot",
        entity_type=EntityType(data.get("entity_type") or EntityType.SUPPLIER.value),
        alternate_names=list(data.get("alternate_names") or []),
        address=data.get("address"),
        region=data.get("region"),
        locality=data.get("locality"),
        phones=list(data.get("phones") or []),
        whatsapp=list(data.get("whatsapp") or []),
        emails=list(data.get("emails") or []),
        websites=list(data.get("websites") or []),
        socials=list(data.get("socials") or []),
        product_examples=list(data.get("product_examples") or []),
        notes=data.get("notes"),
        coverage_regions=list(data.get("coverage_regions") or []),
        delivery_options=list(data.get("delivery_options") or []),
        bulk_available=data.get("bulk_available"),
        moq_units=data.get("moq_units"),
        price_range_hint=data.get("price_range_hint"),
        lead_time_days=data.get("lead_time_days"),
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        business_hours=data.get("business_hours"),
        ratings=ratings,
        registration_number=data.get("registration_number"),
        event_kind=data.get("event_kind"),
        date_start=data.get("date_start"),
        date_end=data.get("date_end"),
        contact_name=data.get("contact_name"),
        identity_key=data.get("identity_key"),
    )


def load_snapshot(path: Union[str, Path]) -> List[RawCandidate]:
    """Read a `records_<run_id>.jsonl` export back as raw candidates."""
    candidates: List[RawCandidate] = []
    with Path(path).open("r", encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                candidates.append(_raw_from_export(json.loads(line)))
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed snapshot line %s in %s: %s", line_number, path, exc)
    return candidates
