"""
Artifact Repository — persistence boundary of the DMAIC workflow engine.

The engine only talks to the ``ArtifactRepository`` interface:

    get / list       project records and artifact snapshots
    put              project creation, artifact submission, metric refresh
    compare-and-swap phase transition guarded by the stored current phase

Two implementations:
    SqlAlchemyArtifactRepository   Flask-SQLAlchemy tables in app.models.dmaic
    InMemoryArtifactRepository     process-local dicts behind a lock (tests, scripts)

Transaction policy: every write method commits (or rolls back) itself.
Driver failures surface as RepositoryUnavailable; nothing is retried here.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    NotFoundError,
    PhaseMismatch,
    ProjectNotFound,
    RepositoryUnavailable,
)
from app.models import db
from app.models.dmaic import (
    ControlChecklist,
    CtqItem,
    DmaicProject,
    FmeaItem,
    Kpi,
    PhaseArtifact,
    ProjectConstraint,
    Requirement,
    Solution,
)
from app.services.quality_metrics import calculate_rpn, kpi_performance, rpn_label
from app.services.solution_scorer import linear_total_score

logger = logging.getLogger(__name__)


# Artifact kind → owning phase (phase_artifacts are tagged per record)
ARTIFACT_PHASES = {
    "requirements": "DEFINE",
    "ctq_items": "DEFINE",
    "constraints": "DEFINE",
    "kpis": "MEASURE",
    "risk_items": "ANALYZE",
    "solutions": "IMPROVE",
    "control_checklist": "CONTROL",
    "phase_artifacts": None,
}

ARTIFACT_KINDS = tuple(ARTIFACT_PHASES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ArtifactSnapshot:
    """In-memory copy of every artifact of one project.

    Gate evaluation and metric computation run on this, never on live rows.
    """
    requirements: list[dict] = field(default_factory=list)
    ctq_items: list[dict] = field(default_factory=list)
    constraints: list[dict] = field(default_factory=list)
    kpis: list[dict] = field(default_factory=list)
    risk_items: list[dict] = field(default_factory=list)
    solutions: list[dict] = field(default_factory=list)
    control_checklist: dict | None = None
    phase_artifacts: list[dict] = field(default_factory=list)

    def count(self) -> int:
        total = sum(
            len(getattr(self, kind))
            for kind in ARTIFACT_KINDS if kind != "control_checklist"
        )
        return total + (1 if self.control_checklist is not None else 0)

    def to_dict(self) -> dict:
        return {
            "requirements": list(self.requirements),
            "ctq_items": list(self.ctq_items),
            "constraints": list(self.constraints),
            "kpis": list(self.kpis),
            "risk_items": list(self.risk_items),
            "solutions": list(self.solutions),
            "control_checklist": self.control_checklist,
            "phase_artifacts": list(self.phase_artifacts),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Interface
# ═════════════════════════════════════════════════════════════════════════════

class ArtifactRepository(ABC):
    """Capability set the workflow engine depends on."""

    @abstractmethod
    def create_project(self, fields: dict) -> dict:
        """Insert a project record; returns its serialized form."""

    @abstractmethod
    def get_project(self, project_id: str) -> dict:
        """Raises ProjectNotFound for an unknown id."""

    @abstractmethod
    def list_projects(self) -> list[dict]:
        ...

    @abstractmethod
    def get_snapshot(self, project_id: str) -> ArtifactSnapshot:
        ...

    @abstractmethod
    def add_artifacts(self, project_id: str, phase: str, records: dict[str, list[dict]]) -> int:
        """Persist validated records while the stored phase equals ``phase``.

        Raises PhaseMismatch if the project moved on in the meantime.
        Returns the project's total artifact count afterwards.
        """

    @abstractmethod
    def compare_and_swap_phase(self, project_id: str, expected_phase: str, changes: dict) -> bool:
        """Apply ``changes`` only if current_phase still equals ``expected_phase``.

        ``changes`` holds current_phase, phase_completion, quality_score and
        risk_level; they are written together or not at all.
        """

    @abstractmethod
    def update_metrics(self, project_id: str, expected_phase: str,
                       quality_score: float, risk_level: str) -> dict | None:
        """Write quality score and risk level only while current_phase equals
        ``expected_phase``; returns the updated project, or None when it moved on.
        """

    @abstractmethod
    def get_solution(self, solution_id: str) -> dict:
        ...

    @abstractmethod
    def update_solution_status(self, solution_id: str, status: str) -> dict:
        ...


# ═════════════════════════════════════════════════════════════════════════════
# SQLAlchemy implementation
# ═════════════════════════════════════════════════════════════════════════════

_MODELS = {
    "requirements": Requirement,
    "ctq_items": CtqItem,
    "constraints": ProjectConstraint,
    "kpis": Kpi,
    "risk_items": FmeaItem,
    "solutions": Solution,
    "phase_artifacts": PhaseArtifact,
}


class SqlAlchemyArtifactRepository(ArtifactRepository):
    """Repository backed by the Flask-SQLAlchemy session (needs an app context)."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Repository failure during %s: %s", operation, exc,
                         extra={"event_type": "repository_error", "operation": operation})
            raise RepositoryUnavailable(operation, exc) from exc
        except Exception:
            self.session.rollback()
            raise

    def _load(self, project_id: str, *, for_update: bool = False) -> DmaicProject:
        stmt = select(DmaicProject).where(DmaicProject.id == project_id)
        if for_update:
            stmt = stmt.with_for_update()
        project = self.session.execute(stmt).scalar_one_or_none()
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    # ── Projects ─────────────────────────────────────────────────────────

    def create_project(self, fields: dict) -> dict:
        with self._guard("create_project"):
            project = DmaicProject(**fields)
            self.session.add(project)
            self.session.commit()
            return project.to_dict()

    def get_project(self, project_id: str) -> dict:
        with self._guard("get_project"):
            return self._load(project_id).to_dict()

    def list_projects(self) -> list[dict]:
        with self._guard("list_projects"):
            rows = self.session.execute(
                select(DmaicProject).order_by(DmaicProject.created_at.desc())
            ).scalars().all()
            return [p.to_dict() for p in rows]

    # ── Snapshot ─────────────────────────────────────────────────────────

    def get_snapshot(self, project_id: str) -> ArtifactSnapshot:
        with self._guard("get_snapshot"):
            project = self._load(project_id)
            checklist = project.control_checklist
            return ArtifactSnapshot(
                requirements=[r.to_dict() for r in project.requirements.order_by(Requirement.created_at)],
                ctq_items=[c.to_dict() for c in project.ctq_items.order_by(CtqItem.created_at)],
                constraints=[c.to_dict() for c in project.constraints.order_by(ProjectConstraint.created_at)],
                kpis=[k.to_dict() for k in project.kpis.order_by(Kpi.created_at)],
                risk_items=[f.to_dict() for f in project.fmea_items.order_by(FmeaItem.created_at)],
                solutions=[s.to_dict() for s in project.solutions.order_by(Solution.created_at)],
                control_checklist=checklist.to_dict() if checklist else None,
                phase_artifacts=[a.to_dict() for a in project.phase_artifacts.order_by(PhaseArtifact.created_at)],
            )

    def _count(self, project_id: str) -> int:
        total = 0
        for model in _MODELS.values():
            total += self.session.execute(
                select(func.count()).select_from(model).where(model.project_id == project_id)
            ).scalar() or 0
        total += self.session.execute(
            select(func.count()).select_from(ControlChecklist)
            .where(ControlChecklist.project_id == project_id)
        ).scalar() or 0
        return total

    # ── Writes ───────────────────────────────────────────────────────────

    def add_artifacts(self, project_id: str, phase: str, records: dict[str, list[dict]]) -> int:
        with self._guard("add_artifacts"):
            project = self._load(project_id, for_update=True)
            if project.current_phase != phase:
                raise PhaseMismatch(project_id, project.current_phase, phase)

            for kind, rows in records.items():
                if kind == "control_checklist":
                    self._upsert_checklist(project, rows)
                    continue
                model = _MODELS[kind]
                for row in rows:
                    self.session.add(model(project_id=project_id, **row))

            self.session.flush()
            count = self._count(project_id)
            self.session.commit()
            return count

    def _upsert_checklist(self, project: DmaicProject, rows: list[dict]) -> None:
        checklist = project.control_checklist
        if checklist is None:
            checklist = ControlChecklist(project_id=project.id)
            self.session.add(checklist)
        for row in rows:
            for flag, value in row.items():
                setattr(checklist, flag, value)

    def compare_and_swap_phase(self, project_id: str, expected_phase: str, changes: dict) -> bool:
        with self._guard("compare_and_swap_phase"):
            result = self.session.execute(
                update(DmaicProject)
                .where(
                    DmaicProject.id == project_id,
                    DmaicProject.current_phase == expected_phase,
                )
                .values(**changes, updated_at=_utcnow())
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                self.session.rollback()
                return False
            self.session.commit()
            return True

    def update_metrics(self, project_id: str, expected_phase: str,
                       quality_score: float, risk_level: str) -> dict | None:
        with self._guard("update_metrics"):
            result = self.session.execute(
                update(DmaicProject)
                .where(
                    DmaicProject.id == project_id,
                    DmaicProject.current_phase == expected_phase,
                )
                .values(quality_score=quality_score, risk_level=risk_level, updated_at=_utcnow())
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                self.session.rollback()
                return None
            self.session.commit()
            return self._load(project_id).to_dict()

    # ── Solutions ────────────────────────────────────────────────────────

    def _load_solution(self, solution_id: str) -> Solution:
        solution = self.session.get(Solution, solution_id)
        if solution is None:
            raise NotFoundError("Solution", solution_id)
        return solution

    def get_solution(self, solution_id: str) -> dict:
        with self._guard("get_solution"):
            return self._load_solution(solution_id).to_dict()

    def update_solution_status(self, solution_id: str, status: str) -> dict:
        with self._guard("update_solution_status"):
            solution = self._load_solution(solution_id)
            solution.status = status
            self.session.commit()
            return solution.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# In-memory implementation
# ═════════════════════════════════════════════════════════════════════════════

_PROJECT_DEFAULTS = {
    "deployment_target": "cloud",
    "budget_limit": 5000,
    "timeline_days": 90,
    "current_phase": "DEFINE",
    "phase_completion": 0.0,
    "quality_score": 0.0,
    "risk_level": "LOW",
}


def _derive(kind: str, row: dict) -> dict:
    """Attach the computed attributes the SQL models expose."""
    if kind == "risk_items":
        rpn = calculate_rpn(row["severity"], row["occurrence"], row["detection"])
        row["rpn"] = rpn
        row["rpn_label"] = rpn_label(rpn)
    elif kind == "solutions":
        row["total_score"] = linear_total_score(row)
    elif kind == "kpis":
        row["performance"] = kpi_performance(row.get("current_value"), row.get("target"))
    return row


class InMemoryArtifactRepository(ArtifactRepository):
    """Dict-backed repository; a single lock serializes every operation."""

    def __init__(self):
        self._lock = threading.RLock()
        self._projects: dict[str, dict] = {}
        self._artifacts: dict[str, dict[str, list[dict]]] = {}
        self._checklists: dict[str, dict] = {}

    def _require(self, project_id: str) -> dict:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def create_project(self, fields: dict) -> dict:
        with self._lock:
            now = _utcnow().isoformat()
            project = {**_PROJECT_DEFAULTS, **fields}
            project.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
            self._projects[project["id"]] = project
            self._artifacts[project["id"]] = {
                kind: [] for kind in ARTIFACT_KINDS if kind != "control_checklist"
            }
            return copy.deepcopy(project)

    def get_project(self, project_id: str) -> dict:
        with self._lock:
            return copy.deepcopy(self._require(project_id))

    def list_projects(self) -> list[dict]:
        with self._lock:
            rows = sorted(self._projects.values(), key=lambda p: p["created_at"], reverse=True)
            return copy.deepcopy(rows)

    def get_snapshot(self, project_id: str) -> ArtifactSnapshot:
        with self._lock:
            self._require(project_id)
            stored = copy.deepcopy(self._artifacts[project_id])
            checklist = self._checklists.get(project_id)
            return ArtifactSnapshot(
                control_checklist=copy.deepcopy(checklist),
                **stored,
            )

    def add_artifacts(self, project_id: str, phase: str, records: dict[str, list[dict]]) -> int:
        with self._lock:
            project = self._require(project_id)
            if project["current_phase"] != phase:
                raise PhaseMismatch(project_id, project["current_phase"], phase)

            now = _utcnow().isoformat()
            for kind, rows in records.items():
                if kind == "control_checklist":
                    checklist = self._checklists.setdefault(project_id, {
                        "id": str(uuid.uuid4()),
                        "project_id": project_id,
                        "monitoring": False,
                        "documentation": False,
                        "validation": False,
                        "training": False,
                    })
                    for row in rows:
                        checklist.update(row)
                    checklist["updated_at"] = now
                    continue
                for row in rows:
                    stored = {**copy.deepcopy(row), "id": str(uuid.uuid4()),
                              "project_id": project_id, "created_at": now}
                    self._artifacts[project_id][kind].append(_derive(kind, stored))

            return self.get_snapshot(project_id).count()

    def compare_and_swap_phase(self, project_id: str, expected_phase: str, changes: dict) -> bool:
        with self._lock:
            project = self._require(project_id)
            if project["current_phase"] != expected_phase:
                return False
            project.update(changes, updated_at=_utcnow().isoformat())
            return True

    def update_metrics(self, project_id: str, expected_phase: str,
                       quality_score: float, risk_level: str) -> dict | None:
        with self._lock:
            project = self._require(project_id)
            if project["current_phase"] != expected_phase:
                return None
            project.update(quality_score=quality_score, risk_level=risk_level,
                           updated_at=_utcnow().isoformat())
            return copy.deepcopy(project)

    def _find_solution(self, solution_id: str) -> dict:
        for artifacts in self._artifacts.values():
            for solution in artifacts["solutions"]:
                if solution["id"] == solution_id:
                    return solution
        raise NotFoundError("Solution", solution_id)

    def get_solution(self, solution_id: str) -> dict:
        with self._lock:
            return copy.deepcopy(self._find_solution(solution_id))

    def update_solution_status(self, solution_id: str, status: str) -> dict:
        with self._lock:
            solution = self._find_solution(solution_id)
            solution["status"] = status
            solution["updated_at"] = _utcnow().isoformat()
            return copy.deepcopy(solution)
