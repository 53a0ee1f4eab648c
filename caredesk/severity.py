"""
Severity Module
===============
Four-level triage severity scale and the deterministic keyword rule used
whenever the language model is unavailable.

The rule scans the symptom text for keywords, most severe level first,
and returns the first level that matches. Text with no keyword match is
``Low``.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

SEVERITY_LOW = "Low"
SEVERITY_MEDIUM = "Medium"
SEVERITY_HIGH = "High"
SEVERITY_CRITICAL = "Critical"

# Ordered least → most severe
SEVERITY_LEVELS: tuple[str, ...] = (
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    SEVERITY_HIGH,
    SEVERITY_CRITICAL,
)

DEFAULT_SEVERITY = SEVERITY_MEDIUM

SEVERITY_COLORS: dict[str, str] = {
    SEVERITY_LOW: "🟢",
    SEVERITY_MEDIUM: "🟡",
    SEVERITY_HIGH: "🟠",
    SEVERITY_CRITICAL: "🔴",
}

# Keywords per level. Hindi entries cover patients answering in hi-IN.
DEFAULT_SEVERITY_KEYWORDS: dict[str, list[str]] = {
    SEVERITY_CRITICAL: [
        "chest pain", "breathing difficulty", "unconscious", "severe bleeding",
        "seizure", "stroke", "heart attack",
        "सीने में दर्द", "सांस लेने में तकलीफ", "बेहोश", "दौरा", "दिल का दौरा",
    ],
    SEVERITY_HIGH: [
        "fracture", "high fever", "severe pain", "head injury", "burn",
        "allergic reaction",
        "हड्डी टूट", "तेज़ बुखार", "तेज बुखार", "सिर में चोट", "जलन",
    ],
    SEVERITY_MEDIUM: [
        "fever", "vomiting", "diarrhea", "moderate pain", "infection", "sprain",
        "बुखार", "उल्टी", "दस्त", "संक्रमण", "मोच",
    ],
}


def normalize_severity(value: object, default: str = DEFAULT_SEVERITY) -> str:
    """Coerce a model-provided severity into the four-level scale.

    Matching is case-insensitive; anything unrecognised becomes ``default``.
    """
    if isinstance(value, str):
        for level in SEVERITY_LEVELS:
            if value.strip().lower() == level.lower():
                return level
    return default


def fallback_severity(
    symptoms: Optional[str],
    keywords: Optional[Mapping[str, Sequence[str]]] = None,
) -> str:
    """Classify symptom text with the keyword rule.

    Args:
        symptoms: Free-text symptom description (may be empty or None).
        keywords: Optional replacement keyword table keyed by severity level.
            Levels missing from the table never match.

    Returns:
        One of ``Low``, ``Medium``, ``High``, ``Critical``.
    """
    table = keywords if keywords is not None else DEFAULT_SEVERITY_KEYWORDS
    lower = (symptoms or "").lower()

    for level in reversed(SEVERITY_LEVELS[1:]):
        if any(kw.lower() in lower for kw in table.get(level, ())):
            return level
    return SEVERITY_LOW
