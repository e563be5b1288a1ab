from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ..config import ALERT_KEYWORDS

ALERT_TYPES = ("contract_termination", "legal_threat", "safety_concern", "other")
CRITICAL_ALERT_TYPES = {"contract_termination", "legal_threat", "safety_concern"}

_LABELS = {
    "contract_termination": "Contract termination risk",
    "legal_threat": "Legal threat",
    "safety_concern": "Safety concern",
    "other": "Flagged during interview",
}
_SNIPPET_RADIUS = 80


@dataclass(frozen=True)
class DetectedAlert:
    alert_type: str
    severity: str
    description: str


def severity_for(alert_type: str) -> str:
    return "critical" if alert_type in CRITICAL_ALERT_TYPES else "warning"


def _normalize_flags(flags: Any) -> dict[str, str | None]:
    """Intake flags arrive either as a list of type names or a mapping of type -> note/bool."""
    out: dict[str, str | None] = {}
    if isinstance(flags, dict):
        for key, value in flags.items():
            if value is False or value is None:
                continue
            note = value.strip() if isinstance(value, str) and value.strip() else None
            out[str(key).strip().lower()] = note
    elif isinstance(flags, (list, tuple)):
        for key in flags:
            text = str(key or "").strip().lower()
            if text:
                out[text] = None
    return out


def _snippet(content: str, start: int, end: int) -> str:
    left = max(0, start - _SNIPPET_RADIUS)
    right = min(len(content), end + _SNIPPET_RADIUS)
    text = " ".join(content[left:right].split())
    if left > 0:
        text = "..." + text
    if right < len(content):
        text = text + "..."
    return text


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"\b" + re.escape(keyword).replace(r"\ ", r"\s+") + r"\b", re.IGNORECASE)


def detect_alerts(
    *,
    content: str | None = None,
    flags: Any = None,
    keywords: dict[str, list[str]] | None = None,
) -> list[DetectedAlert]:
    """At most one alert per type; explicit intake flags win over content matches."""
    keywords = keywords if keywords is not None else ALERT_KEYWORDS
    found: dict[str, DetectedAlert] = {}

    for flag, note in _normalize_flags(flags).items():
        alert_type = flag if flag in CRITICAL_ALERT_TYPES else "other"
        if alert_type in found:
            continue
        description = f"{_LABELS[alert_type]} flagged during interview"
        if alert_type == "other":
            description = f"{_LABELS['other']}: {flag}"
        if note:
            description = f"{description}: {note}"
        found[alert_type] = DetectedAlert(alert_type, severity_for(alert_type), description)

    text = content or ""
    if text.strip():
        for alert_type in ("contract_termination", "legal_threat", "safety_concern"):
            if alert_type in found:
                continue
            for keyword in keywords.get(alert_type, []):
                match = _keyword_pattern(keyword).search(text)
                if match:
                    description = f'{_LABELS[alert_type]}: mentioned "{keyword}" - "{_snippet(text, match.start(), match.end())}"'
                    found[alert_type] = DetectedAlert(alert_type, severity_for(alert_type), description)
                    break

    return [found[t] for t in ALERT_TYPES if t in found]
