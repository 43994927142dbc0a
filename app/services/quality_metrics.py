"""
DMAIC Metrics Aggregator.

Pure functions over an artifact snapshot — no DB access, no I/O:
  • RPN + RPN label per FMEA item
  • Project risk level from the average RPN
  • Process capability: defect rate, DPMO, sigma level, Cp, Cpk
  • KPI performance
  • Composite quality score

Usage:
    from app.services.quality_metrics import project_risk_level, quality_score
    level = project_risk_level(snapshot.risk_items)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping


# ═════════════════════════════════════════════════════════════════════════════
# Thresholds
# ═════════════════════════════════════════════════════════════════════════════

RPN_LABEL_THRESHOLDS = (
    (300, "CRITICAL"),
    (150, "HIGH"),
    (80, "MEDIUM"),
)

RISK_LEVEL_THRESHOLDS = (
    (300, "HIGH"),
    (150, "MEDIUM"),
)

# Upper DPMO bound (inclusive) → sigma level
SIGMA_BREAKPOINTS = (
    (233, 6),
    (6_210, 5),
    (66_800, 4),
    (308_000, 3),
    (690_000, 2),
)

# A KPI whose current value is below this share of its target counts as a defect
DEFECT_TARGET_RATIO = 0.9

# Risk contribution to the quality score per risk level
RISK_POINTS = {"LOW": 30, "MEDIUM": 20, "HIGH": 10}

COMPLETION_WEIGHT = 0.4
GATE_WEIGHT = 0.3
RISK_WEIGHT = 0.3

TOTAL_PHASES = 5


# ═════════════════════════════════════════════════════════════════════════════
# Risk (FMEA)
# ═════════════════════════════════════════════════════════════════════════════

def calculate_rpn(severity: int, occurrence: int, detection: int) -> int:
    """Risk priority number: severity × occurrence × detection (1-1000)."""
    return int(severity) * int(occurrence) * int(detection)


def rpn_label(rpn: float) -> str:
    """CRITICAL > 300, HIGH > 150, MEDIUM > 80, else LOW."""
    for bound, label in RPN_LABEL_THRESHOLDS:
        if rpn > bound:
            return label
    return "LOW"


def _item_rpn(item: Mapping) -> int:
    return calculate_rpn(item["severity"], item["occurrence"], item["detection"])


def average_rpn(risk_items: Iterable[Mapping]) -> float | None:
    """Mean RPN across risk items, None for an empty list."""
    values = [_item_rpn(item) for item in risk_items]
    if not values:
        return None
    return sum(values) / len(values)


def project_risk_level(risk_items: Iterable[Mapping]) -> str:
    """Project risk from the average RPN.

    > 300 → HIGH, > 150 → MEDIUM, else LOW.  No risk items → LOW.
    """
    avg = average_rpn(risk_items)
    if avg is None:
        return "LOW"
    for bound, level in RISK_LEVEL_THRESHOLDS:
        if avg > bound:
            return level
    return "LOW"


def rank_risk_items(risk_items: Iterable[Mapping]) -> list[dict]:
    """Risk items annotated with rpn / rpn_label, highest RPN first."""
    ranked = []
    for item in risk_items:
        rpn = _item_rpn(item)
        ranked.append({**item, "rpn": rpn, "rpn_label": rpn_label(rpn)})
    ranked.sort(key=lambda r: r["rpn"], reverse=True)
    return ranked


# ═════════════════════════════════════════════════════════════════════════════
# Process capability (MEASURE)
# ═════════════════════════════════════════════════════════════════════════════

def kpi_performance(current_value: float | None, target: float | None) -> float | None:
    """current / target × 100; None when the target is missing or zero."""
    if not target:
        return None
    return round((current_value or 0) / target * 100, 1)


def is_defect(kpi: Mapping) -> bool:
    """A KPI is a defect when current < 90% of target."""
    target = kpi.get("target")
    if target is None:
        return False
    current = kpi.get("current_value") or 0
    return current < DEFECT_TARGET_RATIO * target


def sigma_level(dpmo: float) -> int:
    """Step sigma level from fixed DPMO breakpoints."""
    for bound, sigma in SIGMA_BREAKPOINTS:
        if dpmo <= bound:
            return sigma
    return 1


def process_capability(kpis: Iterable[Mapping]) -> dict:
    """Defect rate, DPMO, sigma level, Cp and Cpk from measured KPIs.

    With no KPIs there are no opportunities and the indices are None.
    """
    kpis = list(kpis)
    total = len(kpis)
    if total == 0:
        return {
            "opportunities": 0,
            "defects": 0,
            "defect_rate": None,
            "dpmo": None,
            "sigma_level": None,
            "cp": None,
            "cpk": None,
        }

    defects = sum(1 for k in kpis if is_defect(k))
    defect_rate = defects / total
    dpmo = defect_rate * 1_000_000
    cp = max(0.5, 1.33 - 2 * defect_rate)
    return {
        "opportunities": total,
        "defects": defects,
        "defect_rate": defect_rate,
        "dpmo": dpmo,
        "sigma_level": sigma_level(dpmo),
        "cp": cp,
        "cpk": 0.9 * cp,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Composite scores
# ═════════════════════════════════════════════════════════════════════════════

def completion_after(phase_index: int) -> float:
    """Phase completion once the phase at ``phase_index`` (0-based) is done."""
    return min(100.0, (phase_index + 1) / TOTAL_PHASES * 100)


def quality_score(
    phase_completion: float,
    criteria_met: int,
    criteria_total: int,
    risk_level: str,
) -> float:
    """Composite quality score, clamped to 0-100.

    0.4 × completion + 0.3 × gate-criteria-met % + 0.3 × risk contribution
    (LOW 30, MEDIUM 20, HIGH 10).
    """
    gate_pct = (criteria_met / criteria_total * 100) if criteria_total else 0.0
    score = (
        COMPLETION_WEIGHT * (phase_completion or 0)
        + GATE_WEIGHT * gate_pct
        + RISK_WEIGHT * RISK_POINTS.get(risk_level, RISK_POINTS["HIGH"])
    )
    return round(max(0.0, min(100.0, score)), 1)
