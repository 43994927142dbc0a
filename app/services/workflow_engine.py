"""
DMAIC Phase Workflow Engine — Service Layer.

Finite-state controller over the artifact repository:
    - Project creation:      starts in DEFINE, completion 0, quality 0, risk LOW
    - Artifact submission:   only for the project's current phase
    - Gate evaluation:       phase exit criteria under the configured policy
    - Phase advance:         gate re-check + compare-and-swap phase write
    - Metric refresh:        risk level + quality score, on advance or on demand
    - Solution ranking:      configured scoring strategy, status untouched
    - Process capability:    defect rate / DPMO / sigma / Cp / Cpk from KPIs

The engine holds no project state of its own; every call reads a fresh
snapshot from the repository.  Phase order is fixed and never skipped:

    DEFINE → MEASURE → ANALYZE → IMPROVE → CONTROL → COMPLETED
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from app.core.exceptions import (
    ConcurrentTransition,
    GateNotSatisfied,
    InvalidFieldRange,
    PhaseMismatch,
    ProjectCompleted,
    ValidationError,
    WorkflowError,
)
from app.models.dmaic import (
    COMPLETED,
    DMAIC_PHASES,
    SOLUTION_STATUSES,
    next_phase,
    validate_solution_transition,
)
from app.services.artifact_repository import (
    ARTIFACT_KINDS,
    ARTIFACT_PHASES,
    ArtifactRepository,
    ArtifactSnapshot,
)
from app.services.artifact_validation import normalize_artifacts
from app.services.gate_evaluator import (
    STRICT_POLICY,
    GatePolicy,
    GateResult,
    criteria_progress,
    evaluate_gate,
    get_gate_policy,
)
from app.services.quality_metrics import (
    completion_after,
    process_capability,
    project_risk_level,
    quality_score,
    rank_risk_items,
)
from app.services.solution_scorer import LINEAR, ScoringStrategy, get_scoring_strategy, rank_solutions

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_LIMIT = 5000
DEFAULT_TIMELINE_DAYS = 90


@dataclass
class SubmissionResult:
    """Outcome of an accepted artifact submission."""
    project_id: str
    phase: str
    submitted: dict[str, int]
    artifact_count: int

    def to_dict(self) -> dict:
        return {
            "accepted": True,
            "errors": [],
            "project_id": self.project_id,
            "phase": self.phase,
            "submitted": dict(self.submitted),
            "artifact_count": self.artifact_count,
        }


@dataclass
class PhaseAdvance:
    """Outcome of a successful phase transition."""
    project_id: str
    previous_phase: str
    phase: str
    completion: float
    quality: float
    risk: str

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "previous_phase": self.previous_phase,
            "phase": self.phase,
            "completion": self.completion,
            "quality": self.quality,
            "risk": self.risk,
        }


class PhaseWorkflowEngine:
    """Stateless DMAIC workflow controller.

    Args:
        repository: Artifact repository holding projects and artifacts.
        gate_policy: Verdict rule for phase gates (strict by default).
        scoring: Solution scoring strategy (linear by default).
    """

    def __init__(
        self,
        repository: ArtifactRepository,
        gate_policy: GatePolicy = STRICT_POLICY,
        scoring: ScoringStrategy = LINEAR,
    ):
        self.repository = repository
        self.gate_policy = gate_policy
        self.scoring = scoring

    @classmethod
    def from_config(cls, config, repository: ArtifactRepository) -> PhaseWorkflowEngine:
        """Build an engine with the strategies named in a Flask config mapping."""
        policy = get_gate_policy(
            config.get("DMAIC_GATE_POLICY", "strict"),
            float(config.get("DMAIC_WEIGHTED_GATE_THRESHOLD", 80)),
        )
        scoring = get_scoring_strategy(config.get("DMAIC_SOLUTION_SCORING", "linear"))
        return cls(repository, gate_policy=policy, scoring=scoring)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require_open(self, project_id: str) -> dict:
        project = self.repository.get_project(project_id)
        if project["current_phase"] == COMPLETED:
            raise ProjectCompleted(project_id)
        return project

    @staticmethod
    def _metrics(phase: str, completion: float, snapshot: ArtifactSnapshot) -> dict:
        risk = project_risk_level(snapshot.risk_items)
        met, total = criteria_progress(phase, snapshot)
        return {
            "risk_level": risk,
            "quality_score": quality_score(completion, met, total, risk),
        }

    # ── Projects ─────────────────────────────────────────────────────────

    def create_project(
        self,
        name: str,
        business_case: str,
        deployment_target: str = "cloud",
        budget_limit: float = DEFAULT_BUDGET_LIMIT,
        timeline_days: int = DEFAULT_TIMELINE_DAYS,
    ) -> dict:
        """Create a project in DEFINE with zeroed metrics."""
        errors = []
        name = str(name or "").strip()
        business_case = str(business_case or "").strip()
        if not name:
            errors.append({"field": "name", "message": "name is required"})
        elif len(name) > 200:
            errors.append({"field": "name", "message": "name must be <= 200 chars"})
        if not business_case:
            errors.append({"field": "business_case", "message": "business_case is required"})

        deployment_target = str(deployment_target or "cloud").strip()
        if len(deployment_target) > 50:
            errors.append({"field": "deployment_target",
                           "message": "deployment_target must be <= 50 chars"})

        range_errors = []
        try:
            budget_limit = float(DEFAULT_BUDGET_LIMIT if budget_limit is None else budget_limit)
        except OverflowError:
            budget_limit = math.inf
        except (TypeError, ValueError):
            errors.append({"field": "budget_limit", "message": "budget_limit must be a number"})
            budget_limit = None
        if budget_limit is not None and (not math.isfinite(budget_limit) or budget_limit < 0):
            range_errors.append({"field": "budget_limit",
                                 "message": "budget_limit must be a finite number >= 0", "min": 0})

        try:
            timeline = float(DEFAULT_TIMELINE_DAYS if timeline_days is None else timeline_days)
        except OverflowError:
            timeline = math.inf
        except (TypeError, ValueError):
            errors.append({"field": "timeline_days", "message": "timeline_days must be an integer"})
            timeline = None
        if timeline is not None:
            if not math.isfinite(timeline) or timeline < 1:
                range_errors.append({"field": "timeline_days",
                                     "message": "timeline_days must be a finite integer >= 1", "min": 1})
            else:
                timeline_days = int(timeline)

        if range_errors:
            raise InvalidFieldRange("Project field out of range",
                                    details={"errors": range_errors + errors})
        if errors:
            raise ValidationError("Invalid project fields", details={"errors": errors})

        project = self.repository.create_project({
            "name": name,
            "business_case": business_case,
            "deployment_target": deployment_target,
            "budget_limit": budget_limit,
            "timeline_days": timeline_days,
            "current_phase": DMAIC_PHASES[0],
            "phase_completion": 0.0,
            "quality_score": 0.0,
            "risk_level": "LOW",
        })
        logger.info("DMAIC project created: %s", project["id"],
                    extra={"project_id": project["id"], "phase": project["current_phase"],
                           "event_type": "project_created"})
        return project

    def list_projects(self) -> list[dict]:
        return self.repository.list_projects()

    def get_status(self, project_id: str, include_artifacts: bool = False) -> dict:
        """Project record, artifact counts and (optionally) every artifact.

        Risk items are listed by RPN and solutions by score, highest first.
        """
        project = self.repository.get_project(project_id)
        snapshot = self.repository.get_snapshot(project_id)
        counts = {
            kind: len(getattr(snapshot, kind))
            for kind in ARTIFACT_KINDS if kind != "control_checklist"
        }
        counts["control_checklist"] = 1 if snapshot.control_checklist is not None else 0

        status = {
            "project": project,
            "artifact_counts": counts,
            "artifact_count": snapshot.count(),
        }
        if include_artifacts:
            artifacts = snapshot.to_dict()
            artifacts["risk_items"] = rank_risk_items(snapshot.risk_items)
            artifacts["solutions"] = rank_solutions(snapshot.solutions, self.scoring)["ranking"]
            status["artifacts"] = artifacts
        return status

    # ── Artifacts ────────────────────────────────────────────────────────

    def submit_artifacts(self, project_id: str, phase: str, artifacts: dict) -> SubmissionResult:
        """Validate and store artifacts for the project's current phase.

        Raises:
            ProjectCompleted: project is already COMPLETED.
            PhaseMismatch: ``phase`` (or an artifact kind's owning phase)
                differs from the current phase.
            InvalidFieldRange / ValidationError: field problems, listed in
                ``details["errors"]``.
        """
        project = self._require_open(project_id)
        current = project["current_phase"]

        phase = str(phase or "").strip().upper()
        if phase not in DMAIC_PHASES:
            raise ValidationError(
                f"phase must be one of {list(DMAIC_PHASES)}",
                details={"errors": [{"field": "phase", "message": "unknown phase", "value": phase}]},
            )
        if phase != current:
            raise PhaseMismatch(project_id, current, phase)

        if isinstance(artifacts, dict):
            for kind, rows in artifacts.items():
                owner = ARTIFACT_PHASES.get(kind)
                if owner and owner != current:
                    raise PhaseMismatch(project_id, current, owner, artifact_kind=kind)
                if kind == "phase_artifacts" and isinstance(rows, list):
                    for row in rows:
                        tagged = row.get("phase") if isinstance(row, dict) else None
                        if tagged and str(tagged).upper() != current:
                            raise PhaseMismatch(project_id, current, str(tagged).upper(),
                                                artifact_kind=kind)

        records = normalize_artifacts(artifacts)
        for record in records.get("phase_artifacts", []):
            record["phase"] = current

        count = self.repository.add_artifacts(project_id, current, records)
        submitted = {kind: len(rows) for kind, rows in records.items()}
        logger.info("Artifacts submitted for %s: %s", project_id, submitted,
                    extra={"project_id": project_id, "phase": current,
                           "event_type": "artifacts_submitted"})
        return SubmissionResult(
            project_id=project_id,
            phase=current,
            submitted=submitted,
            artifact_count=count,
        )

    # ── Gate & transition ────────────────────────────────────────────────

    def evaluate_gate(self, project_id: str) -> GateResult:
        """Evaluate the current phase's exit gate; read-only."""
        project = self.repository.get_project(project_id)
        snapshot = self.repository.get_snapshot(project_id)
        return evaluate_gate(project["current_phase"], snapshot, self.gate_policy)

    def advance_phase(self, project_id: str) -> PhaseAdvance:
        """Move to the immediate successor phase when the gate passes.

        The new phase, completion, quality score and risk level are written
        together through a compare-and-swap on the stored phase, or not at all.

        Raises:
            ProjectCompleted: project is already COMPLETED.
            GateNotSatisfied: unmet criteria (listed with recommendations).
            ConcurrentTransition: another advance won the race.
        """
        project = self._require_open(project_id)
        phase = project["current_phase"]
        snapshot = self.repository.get_snapshot(project_id)

        gate = evaluate_gate(phase, snapshot, self.gate_policy)
        if not gate.passed:
            logger.warning("Gate %s not satisfied for %s: %s", phase, project_id, gate.missing,
                           extra={"project_id": project_id, "phase": phase,
                                  "event_type": "gate_blocked"})
            raise GateNotSatisfied(phase, gate.missing, gate.recommendations, gate.criteria)

        new_phase = next_phase(phase)
        completion = max(
            completion_after(DMAIC_PHASES.index(phase)),
            float(project.get("phase_completion") or 0),
        )
        metrics = self._metrics(new_phase, completion, snapshot)
        changes = {
            "current_phase": new_phase,
            "phase_completion": completion,
            **metrics,
        }
        if not self.repository.compare_and_swap_phase(project_id, phase, changes):
            logger.warning("Concurrent transition on %s from %s", project_id, phase,
                           extra={"project_id": project_id, "phase": phase,
                                  "event_type": "transition_conflict"})
            raise ConcurrentTransition(project_id, phase)

        logger.info("Project %s advanced %s → %s (completion=%.0f, quality=%.1f, risk=%s)",
                    project_id, phase, new_phase, completion,
                    metrics["quality_score"], metrics["risk_level"],
                    extra={"project_id": project_id, "phase": new_phase,
                           "event_type": "phase_advanced"})
        return PhaseAdvance(
            project_id=project_id,
            previous_phase=phase,
            phase=new_phase,
            completion=completion,
            quality=metrics["quality_score"],
            risk=metrics["risk_level"],
        )

    # ── Metrics ──────────────────────────────────────────────────────────

    def recompute_metrics(self, project_id: str) -> dict:
        """Refresh risk level and quality score without changing the phase.

        Raises:
            ProjectCompleted: project is already COMPLETED.
            ConcurrentTransition: the phase changed before the metrics were written.
        """
        project = self._require_open(project_id)
        phase = project["current_phase"]
        snapshot = self.repository.get_snapshot(project_id)
        metrics = self._metrics(phase, float(project.get("phase_completion") or 0), snapshot)
        updated = self.repository.update_metrics(
            project_id, phase, metrics["quality_score"], metrics["risk_level"],
        )
        if updated is None:
            logger.warning("Metric refresh on %s lost to a transition from %s", project_id, phase,
                           extra={"project_id": project_id, "phase": phase,
                                  "event_type": "transition_conflict"})
            raise ConcurrentTransition(project_id, phase)
        logger.info("Metrics recomputed for %s: quality=%.1f risk=%s", project_id,
                    metrics["quality_score"], metrics["risk_level"],
                    extra={"project_id": project_id, "phase": project["current_phase"],
                           "event_type": "metrics_recomputed"})
        return updated

    def process_capability(self, project_id: str) -> dict:
        self.repository.get_project(project_id)
        snapshot = self.repository.get_snapshot(project_id)
        return {"project_id": project_id, **process_capability(snapshot.kpis)}

    # ── Solutions ────────────────────────────────────────────────────────

    def rank_solutions(self, project_id: str) -> dict:
        """Rank the project's solutions; statuses are left as they are."""
        self.repository.get_project(project_id)
        snapshot = self.repository.get_snapshot(project_id)
        return {"project_id": project_id, **rank_solutions(snapshot.solutions, self.scoring)}

    def update_solution_status(self, solution_id: str, status: str) -> dict:
        """Caller-driven status change: proposed → approved → implemented."""
        solution = self.repository.get_solution(solution_id)
        self._require_open(solution["project_id"])

        new_status = str(status or "").strip().lower()
        if new_status not in SOLUTION_STATUSES:
            raise ValidationError(
                f"status must be one of {list(SOLUTION_STATUSES)}",
                details={"errors": [{"field": "status", "message": "unknown status", "value": status}]},
            )
        old = solution["status"]
        if new_status == old:
            return solution
        if not validate_solution_transition(old, new_status):
            raise WorkflowError(
                f"Invalid transition: {old} → {new_status}",
                details={"solution_id": solution_id, "from": old, "to": new_status},
            )

        updated = self.repository.update_solution_status(solution_id, new_status)
        logger.info("Solution %s status %s → %s", solution_id, old, new_status,
                    extra={"project_id": solution["project_id"], "event_type": "solution_status"})
        return updated
