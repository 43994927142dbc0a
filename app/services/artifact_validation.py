"""
Field validation for submitted DMAIC artifacts.

``normalize_artifacts`` turns a raw submission ({kind: [record, ...]}) into
clean records ready for the repository, or raises with every problem found:

    InvalidFieldRange   a numeric field is outside its domain
                        (severity 0, impact_score 11, usl < target, ...)
    ValidationError     missing text, unknown enum value, wrong type

Both put the per-field list in ``details["errors"]``:
    {"kind": "risk_items", "index": 0, "field": "severity",
     "message": "...", "value": 0, "min": 1, "max": 10}
"""

from __future__ import annotations

import math
from typing import Any

from app.core.exceptions import InvalidFieldRange, ValidationError
from app.models.dmaic import (
    CONSTRAINT_TYPES,
    CONTROL_FLAGS,
    IMPACT_LEVELS,
    PRIORITY_LEVELS,
    REQUIREMENT_CATEGORIES,
    SOLUTION_APPROACHES,
    SOLUTION_STATUSES,
)
from app.services.artifact_repository import ARTIFACT_KINDS

RATING_MIN, RATING_MAX = 1, 10      # FMEA severity / occurrence / detection
SCORE_MIN, SCORE_MAX = 0, 10        # solution impact / effort / risk / cost

MAX_TEXT = 5000
MAX_NAME = 300

_MISSING = object()


class _Errors:
    """Collects field errors across all records of a submission."""

    def __init__(self):
        self.items: list[dict] = []

    def add(self, kind: str, index: int, field: str, message: str, **extra: Any) -> None:
        self.items.append({"kind": kind, "index": index, "field": field,
                           "message": message, **extra})

    @property
    def has_range_error(self) -> bool:
        return any("min" in e or "max" in e for e in self.items)

    def raise_if_any(self) -> None:
        if not self.items:
            return
        count = len(self.items)
        details = {"errors": self.items}
        if self.has_range_error:
            raise InvalidFieldRange(f"{count} artifact field(s) out of range", details=details)
        raise ValidationError(f"{count} artifact field(s) invalid", details=details)


# ── Field helpers ────────────────────────────────────────────────────────────

def _text(row, field, errors, kind, index, *, required=True, default="", max_len=MAX_TEXT):
    value = row.get(field, _MISSING)
    if value is _MISSING or value is None:
        if required:
            errors.add(kind, index, field, f"{field} is required")
        return default
    value = str(value).strip()
    if required and not value:
        errors.add(kind, index, field, f"{field} must not be empty")
    elif len(value) > max_len:
        errors.add(kind, index, field, f"{field} must be <= {max_len} chars")
    return value


def _choice(row, field, errors, kind, index, choices, default, *, upper=False):
    value = row.get(field)
    if value is None:
        return default
    value = str(value).strip()
    value = value.upper() if upper else value.lower()
    if value not in choices:
        errors.add(kind, index, field, f"{field} must be one of {list(choices)}", value=row.get(field))
        return default
    return value


def _number(row, field, errors, kind, index, *, required=True, default=None,
            lo=None, hi=None, integer=False):
    value = row.get(field)
    if value is None:
        if required:
            errors.add(kind, index, field, f"{field} is required")
        return default
    if isinstance(value, bool):
        errors.add(kind, index, field, f"{field} must be a number", value=value)
        return default

    bounds = {}
    if lo is not None:
        bounds["min"] = lo
    if hi is not None:
        bounds["max"] = hi

    try:
        number = float(value)
    except OverflowError:
        # integers beyond float range
        number = math.inf
    except (TypeError, ValueError):
        errors.add(kind, index, field, f"{field} must be a number", value=value)
        return default
    if not math.isfinite(number):
        if bounds:
            errors.add(kind, index, field, f"{field} is out of range", **bounds)
        else:
            errors.add(kind, index, field, f"{field} must be finite")
        return default
    out_of_range = (lo is not None and number < lo) or (hi is not None and number > hi)
    if integer and not number.is_integer():
        out_of_range = True
    if out_of_range:
        domain = "an integer" if integer else "a number"
        errors.add(kind, index, field,
                   f"{field} must be {domain} in [{lo}, {hi}]", value=value, **bounds)
        return default
    return int(number) if integer else number


# ── Per-kind normalizers ─────────────────────────────────────────────────────

def _requirement(row, errors, index):
    kind = "requirements"
    return {
        "requirement": _text(row, "requirement", errors, kind, index),
        "category": _choice(row, "category", errors, kind, index,
                            REQUIREMENT_CATEGORIES, "functional"),
        "priority": _choice(row, "priority", errors, kind, index,
                            PRIORITY_LEVELS, "MEDIUM", upper=True),
    }


def _ctq_item(row, errors, index):
    kind = "ctq_items"
    record = {
        "need": _text(row, "need", errors, kind, index),
        "driver": _text(row, "driver", errors, kind, index),
        "ctq": _text(row, "ctq", errors, kind, index, max_len=MAX_NAME),
        "target": _number(row, "target", errors, kind, index),
        "usl": _number(row, "usl", errors, kind, index),
    }
    if record["target"] is not None and record["usl"] is not None and record["usl"] < record["target"]:
        errors.add(kind, index, "usl", "usl must be >= target",
                   value=record["usl"], min=record["target"])
    return record


def _constraint(row, errors, index):
    kind = "constraints"
    # "category" is accepted as an alias of the stored "type" column
    source = dict(row)
    if source.get("type") is None and source.get("category") is not None:
        source["type"] = source["category"]
    constraint_type = _choice(source, "type", errors, kind, index, CONSTRAINT_TYPES, None)
    if constraint_type is None and source.get("type") is None:
        errors.add(kind, index, "type", "type is required")
    return {
        "type": constraint_type,
        "description": _text(row, "description", errors, kind, index),
        "impact": _choice(row, "impact", errors, kind, index, IMPACT_LEVELS, "MEDIUM", upper=True),
    }


def _kpi(row, errors, index):
    kind = "kpis"
    return {
        "name": _text(row, "name", errors, kind, index, max_len=200),
        "description": _text(row, "description", errors, kind, index, required=False),
        "target": _number(row, "target", errors, kind, index),
        "current_value": _number(row, "current_value", errors, kind, index,
                                 required=False, default=0.0),
        "unit": _text(row, "unit", errors, kind, index, required=False, max_len=50),
    }


def _risk_item(row, errors, index):
    kind = "risk_items"
    record = {
        "failure_mode": _text(row, "failure_mode", errors, kind, index),
        "effects": _text(row, "effects", errors, kind, index),
        "causes": _text(row, "causes", errors, kind, index),
    }
    for field in ("severity", "occurrence", "detection"):
        record[field] = _number(row, field, errors, kind, index,
                                lo=RATING_MIN, hi=RATING_MAX, integer=True)
    return record


def _solution(row, errors, index):
    kind = "solutions"
    record = {
        "title": _text(row, "title", errors, kind, index, max_len=MAX_NAME),
        "description": _text(row, "description", errors, kind, index, required=False),
        "approach": _choice(row, "approach", errors, kind, index,
                            SOLUTION_APPROACHES, "incremental"),
        "status": _choice(row, "status", errors, kind, index, SOLUTION_STATUSES, "proposed"),
    }
    for field in ("impact_score", "effort_score", "risk_score", "cost_score"):
        record[field] = _number(row, field, errors, kind, index, required=False,
                                default=0.0, lo=SCORE_MIN, hi=SCORE_MAX)
    return record


def _checklist(row, errors, index):
    kind = "control_checklist"
    record = {}
    for field, value in row.items():
        if field not in CONTROL_FLAGS:
            errors.add(kind, index, field, f"unknown checklist flag; expected one of {list(CONTROL_FLAGS)}")
        elif not isinstance(value, bool):
            errors.add(kind, index, field, f"{field} must be true or false", value=value)
        else:
            record[field] = value
    return record


def _phase_artifact(row, errors, index):
    kind = "phase_artifacts"
    data = row.get("data", {})
    if not isinstance(data, dict):
        errors.add(kind, index, "data", "data must be an object")
        data = {}
    return {
        "artifact_type": _text(row, "artifact_type", errors, kind, index, max_len=100),
        "data": data,
    }


_NORMALIZERS = {
    "requirements": _requirement,
    "ctq_items": _ctq_item,
    "constraints": _constraint,
    "kpis": _kpi,
    "risk_items": _risk_item,
    "solutions": _solution,
    "control_checklist": _checklist,
    "phase_artifacts": _phase_artifact,
}


# ── Public API ───────────────────────────────────────────────────────────────

def normalize_artifacts(artifacts: dict) -> dict[str, list[dict]]:
    """Validate a raw submission and return clean records per kind.

    ``control_checklist`` may be given as a single object or a list.

    Raises:
        ValidationError: malformed submission or invalid fields.
        InvalidFieldRange: at least one numeric field outside its domain.
    """
    if not isinstance(artifacts, dict) or not artifacts:
        raise ValidationError("artifacts must be a non-empty object keyed by artifact kind")

    unknown = sorted(set(artifacts) - set(ARTIFACT_KINDS))
    if unknown:
        raise ValidationError(
            f"Unknown artifact kind(s): {', '.join(unknown)}",
            details={"allowed": list(ARTIFACT_KINDS)},
        )

    errors = _Errors()
    normalized: dict[str, list[dict]] = {}
    for kind, rows in artifacts.items():
        if kind == "control_checklist" and isinstance(rows, dict):
            rows = [rows]
        if not isinstance(rows, list):
            errors.add(kind, -1, kind, f"{kind} must be a list of objects")
            continue
        records = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                errors.add(kind, index, kind, "record must be an object")
                continue
            records.append(_NORMALIZERS[kind](row, errors, index))
        normalized[kind] = records

    errors.raise_if_any()
    return normalized
