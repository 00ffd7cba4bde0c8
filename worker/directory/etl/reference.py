"""Reference tables used by the normalizer: regions, localities, categories and trade language."""

from __future__ import annotations

import re
from typing import Dict, List, Pattern, Tuple

NIGERIAN_STATES: Tuple[str, ...] = (
    "Abia",
    "Adamawa",
    "Akwa Ibom",
    "Anambra",
    "Bauchi",
    "Bayelsa",
    "Benue",
    "Borno",
    "Cross River",
    "Delta",
    "Ebonyi",
    "Edo",
    "Ekiti",
    "Enugu",
    "FCT",
    "Gombe",
    "Imo",
    "Jigawa",
    "Kaduna",
    "Kano",
    "Katsina",
    "Kebbi",
    "Kogi",
    "Kwara",
    "Lagos",
    "Nasarawa",
    "Niger",
    "Ogun",
    "Ondo",
    "Osun",
    "Oyo",
    "Plateau",
    "Rivers",
    "Sokoto",
    "Taraba",
    "Yobe",
    "Zamfara",
)

# Keys are lower-cased with hyphens folded to spaces.
REGION_ALIASES: Dict[str, str] = {
    "fct abuja": "FCT",
    "abuja fct": "FCT",
    "abuja": "FCT",
    "federal capital territory": "FCT",
    "federal capital territory abuja": "FCT",
    "f c t": "FCT",
    "akwaibom": "Akwa Ibom",
    "crossriver": "Cross River",
    "nassarawa": "Nasarawa",
    "lag": "Lagos",
    "ph": "Rivers",
}

# Locality (city, LGA or market) -> state, matched as whole words.
LOCALITY_REGIONS: Dict[str, str] = {
    "ikeja": "Lagos",
    "lekki": "Lagos",
    "victoria island": "Lagos",
    "vi": "Lagos",
    "ikoyi": "Lagos",
    "surulere": "Lagos",
    "yaba": "Lagos",
    "festac": "Lagos",
    "ojo": "Lagos",
    "alaba": "Lagos",
    "trade fair": "Lagos",
    "ajah": "Lagos",
    "oshodi": "Lagos",
    "wuse": "FCT",
    "garki": "FCT",
    "maitama": "FCT",
    "gwarinpa": "FCT",
    "port harcourt": "Rivers",
    "ph": "Rivers",
    "calabar": "Cross River",
    "uyo": "Akwa Ibom",
    "aba": "Abia",
    "umuahia": "Abia",
    "onitsha": "Anambra",
    "awka": "Anambra",
    "nnewi": "Anambra",
    "owerri": "Imo",
    "warri": "Delta",
    "asaba": "Delta",
    "benin city": "Edo",
    "ibadan": "Oyo",
    "ogbomoso": "Oyo",
    "abeokuta": "Ogun",
    "ota": "Ogun",
    "akure": "Ondo",
    "osogbo": "Osun",
    "ilorin": "Kwara",
    "jos": "Plateau",
    "maiduguri": "Borno",
    "zaria": "Kaduna",
    "makurdi": "Benue",
    "lokoja": "Kogi",
    "minna": "Niger",
    "yenagoa": "Bayelsa",
}

CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "seating": ("chair", "chiavari", "napoleon", "ghost chair", "folding chair", "banquet chair", "tiffany", "resin"),
    "tables": ("table", "banquet table", "round table", "cocktail table", "serpentine"),
    "tents": ("tent", "canopy", "marquee", "pagoda", "stretch tent", "gazebo"),
    "flooring_grass": ("grass", "artificial turf", "carpet grass", "astro turf", "flooring", "mat"),
    "linens": ("linen", "tablecloth", "napkin", "table runner", "chair cover", "sash"),
    "decor": ("decor", "decoration", "centerpiece", "backdrop", "flower", "balloon"),
    "lighting": ("light", "lighting", "led", "par can", "uplighting", "fairy light"),
    "sound": ("sound", "speaker", "mixer", "microphone", "pa system", "line array", "subwoofer"),
    "staging_truss": ("stage", "truss", "platform", "riser", "runway"),
    "catering": ("catering", "chafing dish", "buffet", "food warmer", "serving tray"),
    "power_generators": ("generator", "kva", "power supply"),
    "mobile_toilet": ("toilet", "portable toilet", "restroom", "loo"),
    "bridal_wear": ("wedding gown", "bridal", "bride", "gown rental", "dress"),
}

# (pattern, weight, label). Matches are collected on the original text so the
# evidence snippets keep the source casing.
PROFESSIONAL_PATTERNS: Tuple[Tuple[Pattern[str], float, str], ...] = (
    (re.compile(r"\bwholesale\b", re.IGNORECASE), 0.30, "wholesale"),
    (re.compile(r"\bbulk\s+(?:sale|order|purchase|buy)s?\b", re.IGNORECASE), 0.25, "bulk"),
    (re.compile(r"\bdistributors?\b", re.IGNORECASE), 0.20, "distributor"),
    (re.compile(r"\bmanufacturers?\b", re.IGNORECASE), 0.15, "manufacturer"),
    (re.compile(r"\bimporters?\b", re.IGNORECASE), 0.15, "importer"),
    (re.compile(r"\bmoq\b|\bminimum\s+order\b", re.IGNORECASE), 0.20, "MOQ"),
    (re.compile(r"\b(?:cartons?|pallets?|containers?)\b", re.IGNORECASE), 0.15, "bulk units"),
    (re.compile(r"\bb2b\b|\bbusiness\s+to\s+business\b", re.IGNORECASE), 0.20, "B2B"),
    (re.compile(r"\btrade\s+prices?\b", re.IGNORECASE), 0.20, "trade price"),
    (re.compile(r"\bwholesale\s+(?:and|&)\s+retail\b", re.IGNORECASE), 0.25, "wholesale & retail"),
)

MOQ_LABEL = "MOQ"

MOQ_QUANTITY_REGEX = re.compile(
    r"\b(?:moq|minimum\s+order(?:\s+quantity)?)\s*(?:of|is|:|-)?\s*(\d{1,6})\b",
    re.IGNORECASE,
)


def _word_pattern(phrase: str, plural: bool = False) -> Pattern[str]:
    escaped = r"\s+".join(re.escape(part) for part in phrase.split())
    suffix = r"(?:s|es)?" if plural else ""
    return re.compile(rf"\b{escaped}{suffix}\b", re.IGNORECASE)


CATEGORY_PATTERNS: Dict[str, List[Pattern[str]]] = {
    category: [_word_pattern(keyword, plural=True) for keyword in keywords]
    for category, keywords in CATEGORY_KEYWORDS.items()
}

STATE_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (_word_pattern(state), state) for state in NIGERIAN_STATES
]

LOCALITY_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (_word_pattern(locality), state) for locality, state in LOCALITY_REGIONS.items()
]
