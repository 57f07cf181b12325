"""
AI Response Validator
=====================

Turns an untyped JSON value from the completion API into an AnalysisResult.

Rules:
- Non-object input yields the empty result.
- List fields keep only objects whose required fields are all strings;
  anything else is dropped whole, never partially coerced.
- Optional scalars are copied only when they are strings.
- riskLevel must be exactly low|medium|high, otherwise it is `low`.
  The fallback is not an inference; nothing here guesses a risk level.

validate_ai_response never raises.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import ValidationDegraded
from .schemas import AnalysisResult, Insight, KeyDate, Party, Risk, RiskLevel, RiskSeverity

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")

# wire key -> AnalysisResult attribute
SCALAR_FIELDS = {
    "summary": "summary",
    "title": "title",
    "counterparty": "counterparty",
    "contractType": "contract_type",
    "value": "value",
    "effectiveDate": "effective_date",
    "expiryDate": "expiry_date",
}

VALID_RISK_LEVELS = {level.value for level in RiskLevel}
_SEVERITY_BY_NAME = {s.value.lower(): s for s in RiskSeverity}


@dataclass
class ValidatedAnalysis:
    """Validator output: the safe result plus what was discarded on the way."""
    result: AnalysisResult
    degraded: ValidationDegraded = field(default_factory=ValidationDegraded)


def _string_fields(item: Any, names: Tuple[str, ...]) -> Optional[Dict[str, str]]:
    if not isinstance(item, dict):
        return None
    values = {}
    for name in names:
        value = item.get(name)
        if not isinstance(value, str):
            return None
        values[name] = value
    return values


def _parse_party(item: Any) -> Optional[Party]:
    fields = _string_fields(item, ("name", "role"))
    return Party(**fields) if fields else None


def _parse_key_date(item: Any) -> Optional[KeyDate]:
    fields = _string_fields(item, ("date", "event"))
    if not fields or not ISO_DATE_RE.match(fields["date"]):
        return None
    return KeyDate(**fields)


def _parse_risk(item: Any) -> Optional[Risk]:
    fields = _string_fields(item, ("level", "description"))
    if not fields:
        return None
    severity = _SEVERITY_BY_NAME.get(fields["level"].strip().lower())
    if severity is None:
        return None
    return Risk(level=severity, description=fields["description"])


def _parse_insight(item: Any) -> Optional[Insight]:
    fields = _string_fields(item, ("type", "title", "content"))
    return Insight(**fields) if fields else None


LIST_FIELDS = {
    "parties": ("parties", _parse_party),
    "keyDates": ("key_dates", _parse_key_date),
    "risks": ("risks", _parse_risk),
    "insights": ("insights", _parse_insight),
}


def validate_ai_response(data: Any) -> ValidatedAnalysis:
    """
    Validate and normalize a parsed completion.

    Args:
        data: Any JSON value (object, array, scalar, None)

    Returns:
        ValidatedAnalysis; `degraded` lists discarded fields/elements
    """
    degraded = ValidationDegraded()

    if not isinstance(data, dict):
        degraded.discarded.append(f"root:{type(data).__name__}")
        return ValidatedAnalysis(result=AnalysisResult(), degraded=degraded)

    values: Dict[str, Any] = {}

    for wire_key, (attr, parse) in LIST_FIELDS.items():
        raw = data.get(wire_key)
        if raw is None:
            values[attr] = []
            continue
        if not isinstance(raw, list):
            degraded.discarded.append(wire_key)
            values[attr] = []
            continue

        kept = []
        for item in raw:
            try:
                parsed = parse(item)
            except (TypeError, ValueError):
                parsed = None
            if parsed is None:
                continue
            kept.append(parsed)
        if len(kept) < len(raw):
            degraded.discarded.append(f"{wire_key}[{len(raw) - len(kept)}]")
        values[attr] = kept

    for wire_key, attr in SCALAR_FIELDS.items():
        raw = data.get(wire_key)
        if isinstance(raw, str):
            values[attr] = raw
        elif raw is not None:
            degraded.discarded.append(wire_key)

    raw_level = data.get("riskLevel")
    if isinstance(raw_level, str) and raw_level in VALID_RISK_LEVELS:
        values["risk_level"] = RiskLevel(raw_level)
    else:
        if raw_level is not None:
            degraded.discarded.append("riskLevel")
        values["risk_level"] = RiskLevel.LOW

    result = AnalysisResult(**values)

    if degraded:
        logger.info(f"AI response partially discarded: {degraded.summary()}")

    return ValidatedAnalysis(result=result, degraded=degraded)
