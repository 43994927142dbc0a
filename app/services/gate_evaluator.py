"""
DMAIC Gate Evaluator — phase exit criteria.

Each phase owns an ordered list of named boolean criteria evaluated against
that phase's artifacts.  A gate policy turns the criteria map into a verdict:

    strict    every criterion must hold (default)
    weighted  share of met criteria must reach a threshold (80% by default)

Usage:
    from app.services.gate_evaluator import evaluate_gate
    result = evaluate_gate("DEFINE", snapshot)
    # -> GateResult(passed=True, criteria={...}, missing=[], recommendations=[])
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from app.models.dmaic import COMPLETED, CONTROL_FLAGS, DMAIC_PHASES
from app.services.artifact_repository import ArtifactSnapshot

logger = logging.getLogger(__name__)

MIN_REQUIREMENTS = 1
MIN_CTQ_ITEMS = 1
MIN_CONSTRAINTS = 1
MIN_KPIS = 3
MIN_RISK_ITEMS = 2
SELECTED_SOLUTION_STATUSES = ("approved", "implemented")


# ═════════════════════════════════════════════════════════════════════════════
# Data classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GateCriterion:
    """Single named exit criterion of a phase."""
    name: str
    description: str
    check: Callable[[ArtifactSnapshot], bool]
    recommendation: Callable[[ArtifactSnapshot], str]


@dataclass(frozen=True)
class GatePolicy:
    """Named rule turning a criteria map into a pass/fail verdict."""
    name: str
    passes: Callable[[dict[str, bool]], bool]


@dataclass
class GateResult:
    """Outcome of evaluating one phase gate."""
    phase: str
    passed: bool
    criteria: dict[str, bool] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    policy: str = "strict"
    descriptions: dict[str, str] = field(default_factory=dict)

    @property
    def met_count(self) -> int:
        return sum(1 for ok in self.criteria.values() if ok)

    @property
    def score(self) -> float:
        if not self.criteria:
            return 0.0
        return round(self.met_count / len(self.criteria) * 100, 1)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "passed": self.passed,
            "criteria": dict(self.criteria),
            "descriptions": dict(self.descriptions),
            "missing": list(self.missing),
            "recommendations": list(self.recommendations),
            "policy": self.policy,
            "score": self.score,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Criterion checks
# ═════════════════════════════════════════════════════════════════════════════

def _has_target_and_usl(item: dict) -> bool:
    return item.get("target") is not None and item.get("usl") is not None


def _kpis_defined(snapshot: ArtifactSnapshot) -> bool:
    kpis = snapshot.kpis
    return len(kpis) >= MIN_KPIS and all(k.get("target") is not None for k in kpis)


def _kpi_recommendation(snapshot: ArtifactSnapshot) -> str:
    without_target = sum(1 for k in snapshot.kpis if k.get("target") is None)
    short = max(0, MIN_KPIS - len(snapshot.kpis))
    parts = []
    if short:
        parts.append(f"define {short} more KPI(s)")
    if without_target:
        parts.append(f"set a target on {without_target} KPI(s)")
    return (
        f"At least {MIN_KPIS} KPIs with targets are required: "
        + " and ".join(parts or ["review KPI targets"]) + "."
    )


def _checklist_flag(flag: str) -> Callable[[ArtifactSnapshot], bool]:
    def check(snapshot: ArtifactSnapshot) -> bool:
        checklist = snapshot.control_checklist or {}
        return checklist.get(flag) is True
    return check


_CONTROL_GUIDANCE = {
    "monitoring": "Configure monitoring dashboards, alerts and control charts for the KPIs.",
    "documentation": "Publish SOPs and process documentation for the improved process.",
    "validation": "Run validation testing to confirm the improvements are working.",
    "training": "Deliver training on the new process to all team members.",
}


# ═════════════════════════════════════════════════════════════════════════════
# Gate definitions
# ═════════════════════════════════════════════════════════════════════════════

PHASE_GATES: dict[str, list[GateCriterion]] = {
    "DEFINE": [
        GateCriterion(
            name="requirements_documented",
            description=f"At least {MIN_REQUIREMENTS} requirement captured",
            check=lambda s: len(s.requirements) >= MIN_REQUIREMENTS,
            recommendation=lambda s: "Capture at least one customer requirement (voice of customer).",
        ),
        GateCriterion(
            name="ctq_targets_defined",
            description=f"At least {MIN_CTQ_ITEMS} CTQ item with target and USL",
            check=lambda s: sum(1 for c in s.ctq_items if _has_target_and_usl(c)) >= MIN_CTQ_ITEMS,
            recommendation=lambda s: "Define a CTQ characteristic with a numeric target and upper specification limit.",
        ),
        GateCriterion(
            name="constraints_documented",
            description=f"At least {MIN_CONSTRAINTS} project constraint documented",
            check=lambda s: len(s.constraints) >= MIN_CONSTRAINTS,
            recommendation=lambda s: "Document the technical, business, regulatory or resource constraints.",
        ),
    ],
    "MEASURE": [
        GateCriterion(
            name="kpis_defined",
            description=f"At least {MIN_KPIS} KPIs, each with a target",
            check=_kpis_defined,
            recommendation=_kpi_recommendation,
        ),
    ],
    "ANALYZE": [
        GateCriterion(
            name="risk_items_identified",
            description=f"At least {MIN_RISK_ITEMS} FMEA risk items",
            check=lambda s: len(s.risk_items) >= MIN_RISK_ITEMS,
            recommendation=lambda s: (
                f"Add {MIN_RISK_ITEMS - len(s.risk_items)} more FMEA item(s) "
                "with severity, occurrence and detection ratings."
            ),
        ),
    ],
    "IMPROVE": [
        GateCriterion(
            name="solution_selected",
            description="At least one solution approved or implemented",
            check=lambda s: any(
                sol.get("status") in SELECTED_SOLUTION_STATUSES for sol in s.solutions
            ),
            recommendation=lambda s: (
                "Approve a candidate solution; the highest-ranked proposal is the recommended pick."
                if s.solutions else "Propose and approve at least one improvement solution."
            ),
        ),
    ],
    "CONTROL": [
        GateCriterion(
            name=flag,
            description=f"Control checklist: {flag} in place",
            check=_checklist_flag(flag),
            recommendation=lambda s, _flag=flag: _CONTROL_GUIDANCE[_flag],
        )
        for flag in CONTROL_FLAGS
    ],
}


# ═════════════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════════════

def _all_criteria(criteria: dict[str, bool]) -> bool:
    return bool(criteria) and all(criteria.values())


STRICT_POLICY = GatePolicy(name="strict", passes=_all_criteria)


def weighted_policy(threshold_pct: float = 80.0) -> GatePolicy:
    """Pass when at least ``threshold_pct`` percent of criteria hold."""
    def passes(criteria: dict[str, bool]) -> bool:
        if not criteria:
            return False
        met = sum(1 for ok in criteria.values() if ok)
        return met / len(criteria) * 100 >= threshold_pct
    return GatePolicy(name="weighted", passes=passes)


def get_gate_policy(name: str = "strict", threshold_pct: float = 80.0) -> GatePolicy:
    """Resolve a configured policy name."""
    if name == "strict":
        return STRICT_POLICY
    if name == "weighted":
        return weighted_policy(threshold_pct)
    raise ValueError(f"Unknown gate policy {name!r}; expected 'strict' or 'weighted'")


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════════

def evaluate_criteria(phase: str, snapshot: ArtifactSnapshot) -> dict[str, bool]:
    """Ordered {criterion name: met} map for a phase."""
    return {c.name: bool(c.check(snapshot)) for c in PHASE_GATES.get(phase, [])}


def evaluate_gate(
    phase: str,
    snapshot: ArtifactSnapshot,
    policy: GatePolicy = STRICT_POLICY,
) -> GateResult:
    """Evaluate the exit gate of ``phase`` over ``snapshot``.

    Pure: the same snapshot always yields the same result.
    """
    if phase == COMPLETED:
        return GateResult(
            phase=phase,
            passed=False,
            recommendations=["Project is completed; no further gates apply."],
            policy=policy.name,
        )
    if phase not in PHASE_GATES:
        raise ValueError(f"Unknown DMAIC phase {phase!r}")

    criteria = {}
    descriptions = {}
    missing = []
    recommendations = []
    for criterion in PHASE_GATES[phase]:
        ok = bool(criterion.check(snapshot))
        criteria[criterion.name] = ok
        descriptions[criterion.name] = criterion.description
        if not ok:
            missing.append(criterion.name)
            recommendations.append(criterion.recommendation(snapshot))

    result = GateResult(
        phase=phase,
        passed=policy.passes(criteria),
        criteria=criteria,
        missing=missing,
        recommendations=recommendations,
        policy=policy.name,
        descriptions=descriptions,
    )
    logger.debug("Gate %s evaluated: passed=%s missing=%s", phase, result.passed, missing)
    return result


def criteria_progress(current_phase: str, snapshot: ArtifactSnapshot) -> tuple[int, int]:
    """(met, total) over the gates of every phase reached so far.

    Phases up to and including ``current_phase`` count; a completed
    project counts all five gates.
    """
    if current_phase == COMPLETED:
        reached = DMAIC_PHASES
    else:
        reached = DMAIC_PHASES[: DMAIC_PHASES.index(current_phase) + 1]

    met = total = 0
    for phase in reached:
        criteria = evaluate_criteria(phase, snapshot)
        total += len(criteria)
        met += sum(1 for ok in criteria.values() if ok)
    return met, total
