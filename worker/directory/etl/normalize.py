"""Turn raw collector candidates into canonical, confidence-scored records.

The helpers in this module are pure: they take strings (or a `RawCandidate`)
and return canonical values without touching the store. `Normalizer` ties
them together using an explicit `NormalizerConfig`.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

import phonenumbers

from directory.core.config import NormalizerConfig
from directory.core.models import (
    ApprovalStatus,
    CanonicalRecord,
    EntityType,
    RawCandidate,
    dedupe,
    utcnow,
)
from directory.etl.reference import (
    CATEGORY_PATTERNS,
    LOCALITY_PATTERNS,
    MOQ_LABEL,
    MOQ_QUANTITY_REGEX,
    NIGERIAN_STATES,
    PROFESSIONAL_PATTERNS,
    REGION_ALIASES,
    STATE_PATTERNS,
)

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ORDINAL_REGEX = re.compile(r"(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)
WEEKDAY_REGEX = re.compile(
    r"^\s*(?:mon|tue|tues|wed|thu|thur|thurs|fri|sat|sun)[a-z]*\.?,?\s+", re.IGNORECASE
)
DMY_REGEX = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b")
DATE_FORMATS = ("%d %B %Y", "%d %b %Y", "%B %d %Y", "%b %d %Y", "%B %d, %Y", "%b %d, %Y")

NO_PHONE = "no-phone"
NO_REGION = "no-region"

_STATES_BY_KEY = {state.lower(): state for state in NIGERIAN_STATES}


class NormalizationError(ValueError):
    """Raised when a raw candidate lacks the fields a canonical record needs."""


@dataclass(frozen=True)
class LanguageDetection:
    detected: bool
    score: float
    evidence: List[str] = field(default_factory=list)
    labels: Tuple[str, ...] = ()


def normalize_phone(raw: Optional[str], config: Optional[NormalizerConfig] = None) -> Optional[str]:
    """Fold local, country-code and international variants to one E.164 string."""
    if not raw:
        return None
    config = config or NormalizerConfig()

    text = str(raw).strip()
    digits = re.sub(r"\D", "", text)
    if not digits:
        return None
    if digits.startswith("00"):
        candidate = f"+{digits[2:]}"
    elif text.startswith("+"):
        candidate = f"+{digits}"
    elif digits.startswith(config.country_code) and len(digits) > config.national_number_length:
        candidate = f"+{digits}"
    else:
        candidate = digits

    region = phonenumbers.region_code_for_country_code(int(config.country_code))
    try:
        parsed = phonenumbers.parse(candidate, region)
    except phonenumbers.NumberParseException:
        return None

    if parsed.country_code != int(config.country_code):
        return None
    if len(str(parsed.national_number)) != config.national_number_length:
        return None
    if not phonenumbers.is_possible_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize_email(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    value = str(raw).strip().lower()
    if value.startswith("mailto:"):
        value = value[len("mailto:"):].split("?", 1)[0].strip()
    if not EMAIL_REGEX.match(value):
        return None
    return value


def normalize_website(raw: Optional[str]) -> Optional[str]:
    """Lower-case the host and drop fragments so equal sites compare equal."""
    if not raw:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if "://" not in value:
        value = f"https://{value}"
    scheme, _, rest = value.partition("://")
    host, slash, path = rest.partition("/")
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    if not host or "." not in host:
        return None
    path = path.split("#", 1)[0].rstrip("/")
    normalized = f"{scheme.lower()}://{host}"
    if slash and path:
        normalized = f"{normalized}/{path}"
    return normalized


def normalize_name(raw: Optional[str]) -> str:
    return re.sub(r"\s+", " ", raw or "").strip()


def _region_key(text: str) -> str:
    key = text.lower().replace("-", " ")
    key = re.sub(r"[^a-z ]", " ", key)
    key = re.sub(r"\s+", " ", key).strip()
    if key.endswith(" state"):
        key = key[: -len(" state")].strip()
    return key


def _rightmost_region(text: str) -> Optional[str]:
    best: Optional[Tuple[int, str]] = None
    for pattern, state in list(STATE_PATTERNS) + list(LOCALITY_PATTERNS):
        for match in pattern.finditer(text):
            if best is None or match.start() > best[0]:
                best = (match.start(), state)
    return best[1] if best else None


def resolve_region(region_text: Optional[str], address_text: Optional[str] = None) -> Optional[str]:
    """Resolve free text to one of the 37 regions, or None; never guesses."""
    if region_text and region_text.strip():
        key = _region_key(region_text)
        if key in _STATES_BY_KEY:
            return _STATES_BY_KEY[key]
        if key in REGION_ALIASES:
            return REGION_ALIASES[key]
        compact = key.replace(" ", "")
        if compact in REGION_ALIASES:
            return REGION_ALIASES[compact]

    for text in (region_text, address_text):
        if text and text.strip():
            region = _rightmost_region(text)
            if region:
                return region
    return None


def categorize(text: str) -> List[str]:
    """Return every category whose keywords appear as whole words in the text."""
    if not text:
        return []
    return [
        category
        for category, patterns in CATEGORY_PATTERNS.items()
        if any(pattern.search(text) for pattern in patterns)
    ]


def detect_professional_language(
    text: str, config: Optional[NormalizerConfig] = None
) -> LanguageDetection:
    config = config or NormalizerConfig()
    if not text:
        return LanguageDetection(detected=False, score=0.0)

    score = 0.0
    evidence: List[str] = []
    labels: List[str] = []
    for pattern, weight, label in PROFESSIONAL_PATTERNS:
        match = pattern.search(text)
        if match:
            score += weight
            labels.append(label)
            evidence.append(f"'{match.group(0)}' ({label})")

    score = min(score, 1.0)
    return LanguageDetection(
        detected=score >= config.professional_language_cutoff,
        score=score,
        evidence=evidence[: config.max_evidence_snippets],
        labels=tuple(labels),
    )


def extract_moq(text: str) -> Optional[int]:
    match = MOQ_QUANTITY_REGEX.search(text or "")
    if not match:
        return None
    value = int(match.group(1))
    return value or None


def build_identity_key(primary_phone: Optional[str], region: Optional[str]) -> str:
    return f"{primary_phone or NO_PHONE}|{region or NO_REGION}"


def stable_id_for(name: str, identity_key: str, date_start: Optional[date] = None) -> str:
    parts = [name, identity_key]
    if date_start is not None:
        parts.append(date_start.isoformat())
    key = "|".join(parts).lower()
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def generate_stable_id(
    name: str,
    primary_phone: Optional[str],
    region: Optional[str],
    date_start: Optional[date] = None,
) -> str:
    return stable_id_for(name, build_identity_key(primary_phone, region), date_start)


def parse_event_date(raw: Optional[str]) -> Optional[date]:
    """Parse the date formats event listings use; returns None rather than guessing."""
    if not raw:
        return None
    text = str(raw).strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    match = DMY_REGEX.search(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    cleaned = WEEKDAY_REGEX.sub("", text)
    cleaned = ORDINAL_REGEX.sub(r"\1", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned.replace(",", ", ")).strip()
    for candidate in (cleaned, cleaned.replace(",", "")):
        candidate = re.sub(r"\s+", " ", candidate).strip()
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    return None


def compute_confidence(
    record: CanonicalRecord,
    *,
    has_trade_terms: bool,
    config: Optional[NormalizerConfig] = None,
) -> float:
    config = config or NormalizerConfig()
    confidence = config.base_confidence

    if record.explicit_professional_language:
        confidence += config.professional_language_bonus
    if record.moq_units:
        confidence += config.moq_bonus
    if record.phones:
        confidence += config.phone_bonus
    if record.whatsapp:
        confidence += config.whatsapp_bonus
    if record.emails:
        confidence += config.email_bonus
    if record.region:
        confidence += config.region_bonus
    if record.registration_number:
        confidence += config.registration_bonus
    if len(record.categories) >= 2:
        confidence += config.multi_category_bonus
    if not has_trade_terms:
        confidence -= config.no_trade_terms_penalty

    return round(max(0.0, min(1.0, confidence)), 4)


def compute_event_confidence(
    record: CanonicalRecord, config: Optional[NormalizerConfig] = None
) -> float:
    config = config or NormalizerConfig()
    confidence = config.event_base_confidence
    if record.date_start:
        confidence += config.event_date_bonus
    if record.address:
        confidence += config.event_venue_bonus
    if record.phones or record.emails:
        confidence += config.event_contact_bonus
    if record.region:
        confidence += config.event_region_bonus
    return round(min(confidence, config.event_confidence_cap), 4)


def _clean_list(values: Iterable[Optional[str]]) -> List[str]:
    return dedupe(normalize_name(value) for value in values)


class Normalizer:
    """Normalize `RawCandidate` objects using an explicit configuration."""

    def __init__(self, config: Optional[NormalizerConfig] = None) -> None:
        self.config = config or NormalizerConfig()

    def normalize(self, raw: RawCandidate, *, now: Optional[datetime] = None) -> CanonicalRecord:
        name = normalize_name(raw.name)
        source_url = (raw.source_url or "").strip()
        if not name or not source_url:
            raise NormalizationError("Missing required fields: name or source_url")

        now = now or utcnow()
        phones = dedupe(normalize_phone(value, self.config) for value in raw.phones)
        whatsapp = dedupe(normalize_phone(value, self.config) for value in raw.whatsapp)
        emails = dedupe(normalize_email(value) for value in raw.emails)
        websites = dedupe(normalize_website(value) for value in raw.websites)
        region = resolve_region(raw.region, raw.address)

        free_text = " ".join(
            part for part in [name, *raw.product_examples, raw.notes or ""] if part
        )
        detection = detect_professional_language(free_text, self.config)
        moq_units = raw.moq_units or extract_moq(free_text)
        has_trade_terms = bool(raw.bulk_available or moq_units or detection.labels)

        date_start = date_end = None
        if raw.entity_type is EntityType.EVENT:
            date_start = parse_event_date(raw.date_start)
            if date_start is None:
                raise NormalizationError(f"Unparseable event date: {raw.date_start!r}")
            date_end = parse_event_date(raw.date_end)
            if date_end is not None and date_end < date_start:
                date_end = None

        # Snapshots carry the key a merged record was first hashed from.
        identity_key = (raw.identity_key or "").strip()
        if not identity_key:
            identity_key = build_identity_key(phones[0] if phones else None, region)
        observed = raw.observed_at or now
        record = CanonicalRecord(
            stable_id=stable_id_for(name, identity_key, date_start),
            name=name,
            source_platform=raw.source_platform,
            source_url=source_url,
            entity_type=raw.entity_type,
            region=region,
            locality=normalize_name(raw.locality) or None,
            address=normalize_name(raw.address) or None,
            latitude=raw.latitude,
            longitude=raw.longitude,
            business_hours=normalize_name(raw.business_hours) or None,
            alternate_names=[alias for alias in _clean_list(raw.alternate_names) if alias != name],
            categories=categorize(free_text) if raw.entity_type is EntityType.SUPPLIER else [],
            product_examples=_clean_list(raw.product_examples),
            phones=phones,
            whatsapp=whatsapp,
            emails=emails,
            websites=websites,
            socials=dedupe(value.strip() for value in raw.socials if value),
            coverage_regions=dedupe(
                resolve_region(value) or normalize_name(value) for value in raw.coverage_regions
            ),
            delivery_options=_clean_list(raw.delivery_options),
            ratings=dict(raw.ratings),
            bulk_available=bool(raw.bulk_available) or MOQ_LABEL in detection.labels,
            moq_units=moq_units,
            price_range_hint=normalize_name(raw.price_range_hint) or None,
            lead_time_days=raw.lead_time_days,
            explicit_professional_language=detection.detected,
            evidence_snippets=detection.evidence,
            registration_number=normalize_name(raw.registration_number) or None,
            notes=normalize_name(raw.notes) or None,
            event_kind=raw.event_kind,
            date_start=date_start,
            date_end=date_end,
            contact_name=normalize_name(raw.contact_name) or None,
            identity_key=identity_key,
            first_seen_at=now,
            last_seen_at=observed,
            updated_at=now,
        )

        if record.entity_type is EntityType.EVENT:
            record.confidence = compute_event_confidence(record, self.config)
        else:
            record.confidence = compute_confidence(
                record, has_trade_terms=has_trade_terms, config=self.config
            )
        record.approval_status = (
            ApprovalStatus.APPROVED
            if record.confidence >= self.config.approval_threshold
            else ApprovalStatus.PENDING
        )
        return record

    def normalize_batch(
        self, candidates: Sequence[RawCandidate], *, now: Optional[datetime] = None
    ) -> Tuple[List[CanonicalRecord], List[str]]:
        """Normalize many candidates; failures are reported, not raised."""
        records: List[CanonicalRecord] = []
        errors: List[str] = []
        for candidate in candidates:
            try:
                records.append(self.normalize(candidate, now=now))
            except NormalizationError as exc:
                logger.debug("Dropping candidate %r from %s: %s", candidate.name, candidate.source_platform, exc)
                errors.append(f"{candidate.source_platform}: {candidate.name or '<unnamed>'}: {exc}")
        return records, errors
