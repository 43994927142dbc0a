"""
DMAIC project and phase-artifact models.

One project row plus one child table per artifact kind, each foreign-keyed
to the project id.  Derived values (RPN, solution total score, KPI
performance) are computed from their inputs and never written directly.

Phase lifecycle:
    DEFINE → MEASURE → ANALYZE → IMPROVE → CONTROL → COMPLETED (terminal)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.ext.hybrid import hybrid_property

from app.models import db
from app.services.quality_metrics import kpi_performance, rpn_label


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Phase lifecycle ──────────────────────────────────────────────────────────

DMAIC_PHASES = ("DEFINE", "MEASURE", "ANALYZE", "IMPROVE", "CONTROL")
COMPLETED = "COMPLETED"
PROJECT_PHASES = DMAIC_PHASES + (COMPLETED,)

PHASE_TRANSITIONS = {
    "DEFINE": ["MEASURE"],
    "MEASURE": ["ANALYZE"],
    "ANALYZE": ["IMPROVE"],
    "IMPROVE": ["CONTROL"],
    "CONTROL": [COMPLETED],
    COMPLETED: [],
}

PRIORITY_LEVELS = ("HIGH", "MEDIUM", "LOW")
IMPACT_LEVELS = ("HIGH", "MEDIUM", "LOW")
REQUIREMENT_CATEGORIES = ("functional", "non-functional")
CONSTRAINT_TYPES = ("technical", "business", "regulatory", "resource")
SOLUTION_APPROACHES = ("incremental", "redesign", "innovative")
SOLUTION_STATUSES = ("proposed", "approved", "implemented")
CONTROL_FLAGS = ("monitoring", "documentation", "validation", "training")

SOLUTION_STATUS_TRANSITIONS = {
    "proposed": ["approved"],
    "approved": ["implemented", "proposed"],
    "implemented": [],
}


def next_phase(phase):
    """Return the immediate successor of ``phase`` or None when terminal."""
    successors = PHASE_TRANSITIONS.get(phase, [])
    return successors[0] if successors else None


def validate_solution_transition(old_status, new_status):
    """Check if a solution status transition is valid."""
    return new_status in SOLUTION_STATUS_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  PROJECT
# ═══════════════════════════════════════════════════════════════════════════

class DmaicProject(db.Model):
    """
    A quality-improvement project moving through the DMAIC phases.

    current_phase, phase_completion, quality_score and risk_level are owned
    by the workflow engine and only change through phase advance or metric
    recompute.
    """

    __tablename__ = "dmaic_projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    business_case = db.Column(db.Text, nullable=False)
    deployment_target = db.Column(db.String(50), default="cloud")
    budget_limit = db.Column(db.Float, default=5000)
    timeline_days = db.Column(db.Integer, default=90)

    current_phase = db.Column(db.String(20), nullable=False, default="DEFINE", index=True)
    phase_completion = db.Column(db.Float, nullable=False, default=0, comment="0-100")
    quality_score = db.Column(db.Float, nullable=False, default=0, comment="0-100")
    risk_level = db.Column(db.String(10), nullable=False, default="LOW", comment="LOW/MEDIUM/HIGH")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    requirements = db.relationship(
        "Requirement", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    ctq_items = db.relationship(
        "CtqItem", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    constraints = db.relationship(
        "ProjectConstraint", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    kpis = db.relationship(
        "Kpi", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    fmea_items = db.relationship(
        "FmeaItem", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    solutions = db.relationship(
        "Solution", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    control_checklist = db.relationship(
        "ControlChecklist", backref="project", uselist=False, cascade="all, delete-orphan",
    )
    phase_artifacts = db.relationship(
        "PhaseArtifact", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "business_case": self.business_case,
            "deployment_target": self.deployment_target,
            "budget_limit": self.budget_limit,
            "timeline_days": self.timeline_days,
            "current_phase": self.current_phase,
            "phase_completion": self.phase_completion,
            "quality_score": self.quality_score,
            "risk_level": self.risk_level,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<DmaicProject {self.id[:8]}: {self.name[:40]} [{self.current_phase}]>"


# ═══════════════════════════════════════════════════════════════════════════
#  DEFINE
# ═══════════════════════════════════════════════════════════════════════════

class Requirement(db.Model):
    """Voice-of-customer requirement captured during DEFINE."""

    __tablename__ = "dmaic_requirements"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requirement = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(20), default="functional")
    priority = db.Column(db.String(10), default="MEDIUM")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "requirement": self.requirement,
            "category": self.category,
            "priority": self.priority,
            "created_at": _iso(self.created_at),
        }


class CtqItem(db.Model):
    """Critical-to-quality characteristic with target and upper spec limit."""

    __tablename__ = "dmaic_ctq_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    need = db.Column(db.Text, nullable=False)
    driver = db.Column(db.Text, nullable=False)
    ctq = db.Column(db.Text, nullable=False)
    target = db.Column(db.Float, nullable=False)
    usl = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "need": self.need,
            "driver": self.driver,
            "ctq": self.ctq,
            "target": self.target,
            "usl": self.usl,
            "created_at": _iso(self.created_at),
        }


class ProjectConstraint(db.Model):
    """Technical / business / regulatory / resource constraint."""

    __tablename__ = "dmaic_constraints"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)
    impact = db.Column(db.String(10), default="MEDIUM")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "description": self.description,
            "impact": self.impact,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  MEASURE
# ═══════════════════════════════════════════════════════════════════════════

class Kpi(db.Model):
    """Key performance indicator with target and current measured value."""

    __tablename__ = "dmaic_kpis"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    target = db.Column(db.Float, nullable=False)
    current_value = db.Column(db.Float, default=0)
    unit = db.Column(db.String(50), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def performance(self):
        """current / target × 100, or None for a zero target."""
        return kpi_performance(self.current_value, self.target)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "target": self.target,
            "current_value": self.current_value,
            "unit": self.unit,
            "performance": self.performance,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYZE
# ═══════════════════════════════════════════════════════════════════════════

class FmeaItem(db.Model):
    """
    Failure Mode and Effects Analysis entry.

    rpn = severity × occurrence × detection (1-1000), always derived.
    """

    __tablename__ = "dmaic_fmea_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    failure_mode = db.Column(db.Text, nullable=False)
    effects = db.Column(db.Text, nullable=False)
    causes = db.Column(db.Text, nullable=False)
    severity = db.Column(db.Integer, nullable=False, comment="1-10")
    occurrence = db.Column(db.Integer, nullable=False, comment="1-10")
    detection = db.Column(db.Integer, nullable=False, comment="1-10")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint("severity BETWEEN 1 AND 10", name="ck_fmea_severity"),
        db.CheckConstraint("occurrence BETWEEN 1 AND 10", name="ck_fmea_occurrence"),
        db.CheckConstraint("detection BETWEEN 1 AND 10", name="ck_fmea_detection"),
    )

    @hybrid_property
    def rpn(self):
        return self.severity * self.occurrence * self.detection

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "failure_mode": self.failure_mode,
            "effects": self.effects,
            "causes": self.causes,
            "severity": self.severity,
            "occurrence": self.occurrence,
            "detection": self.detection,
            "rpn": self.rpn,
            "rpn_label": rpn_label(self.rpn),
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  IMPROVE
# ═══════════════════════════════════════════════════════════════════════════

class Solution(db.Model):
    """Candidate improvement solution scored on impact / effort / risk / cost."""

    __tablename__ = "dmaic_solutions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    approach = db.Column(db.String(20), default="incremental")
    impact_score = db.Column(db.Float, default=0, comment="0-10")
    effort_score = db.Column(db.Float, default=0, comment="0-10")
    risk_score = db.Column(db.Float, default=0, comment="0-10")
    cost_score = db.Column(db.Float, default=0, comment="0-10")
    status = db.Column(db.String(20), default="proposed", index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @hybrid_property
    def total_score(self):
        return self.impact_score * 2 - self.effort_score - self.risk_score - self.cost_score

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "approach": self.approach,
            "impact_score": self.impact_score,
            "effort_score": self.effort_score,
            "risk_score": self.risk_score,
            "cost_score": self.cost_score,
            "total_score": self.total_score,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  CONTROL
# ═══════════════════════════════════════════════════════════════════════════

class ControlChecklist(db.Model):
    """The four control-plan flags; one row per project, updated in place."""

    __tablename__ = "dmaic_control_checklists"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    monitoring = db.Column(db.Boolean, nullable=False, default=False)
    documentation = db.Column(db.Boolean, nullable=False, default=False)
    validation = db.Column(db.Boolean, nullable=False, default=False)
    training = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "monitoring": self.monitoring,
            "documentation": self.documentation,
            "validation": self.validation,
            "training": self.training,
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  FREE-FORM PHASE ARTIFACTS
# ═══════════════════════════════════════════════════════════════════════════

class PhaseArtifact(db.Model):
    """Phase-tagged JSON document (SIPOC, charter, process map, ...)."""

    __tablename__ = "dmaic_phase_artifacts"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase = db.Column(db.String(20), nullable=False)
    artifact_type = db.Column(db.String(100), nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase": self.phase,
            "artifact_type": self.artifact_type,
            "data": self.data,
            "created_at": _iso(self.created_at),
        }
