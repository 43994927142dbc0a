"""
Shared pytest fixtures for the DMAIC workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - memory_repo / memory_engine: engine over the in-memory repository
    - sql_repo / sql_engine: engine over the SQLAlchemy repository
    - define_artifacts ... control_artifacts: minimal gate-passing payloads
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services.artifact_repository import (
    InMemoryArtifactRepository,
    SqlAlchemyArtifactRepository,
)
from app.services.workflow_engine import PhaseWorkflowEngine


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def memory_repo():
    return InMemoryArtifactRepository()


@pytest.fixture()
def memory_engine(memory_repo):
    return PhaseWorkflowEngine(memory_repo)


@pytest.fixture()
def sql_repo():
    return SqlAlchemyArtifactRepository()


@pytest.fixture()
def sql_engine(sql_repo):
    return PhaseWorkflowEngine(sql_repo)


@pytest.fixture(params=["memory", "sql"])
def engine(request):
    """Run the test once per repository implementation."""
    repo = InMemoryArtifactRepository() if request.param == "memory" else SqlAlchemyArtifactRepository()
    return PhaseWorkflowEngine(repo)


# ── Artifact payloads ────────────────────────────────────────────────────


@pytest.fixture()
def define_artifacts():
    """3 requirements, 2 CTQ items with target + USL, 1 constraint."""
    return {
        "requirements": [
            {"requirement": "Checkout completes in under 3 seconds", "priority": "HIGH"},
            {"requirement": "Order confirmation email within 1 minute"},
            {"requirement": "Audit log for every refund", "category": "non-functional"},
        ],
        "ctq_items": [
            {"need": "Fast checkout", "driver": "Page latency", "ctq": "p95 latency (s)",
             "target": 2.0, "usl": 3.0},
            {"need": "Reliable orders", "driver": "Payment errors", "ctq": "Error rate (%)",
             "target": 0.5, "usl": 1.0},
        ],
        "constraints": [
            {"type": "business", "description": "Budget capped at 5000", "impact": "HIGH"},
        ],
    }


@pytest.fixture()
def measure_artifacts():
    return {
        "kpis": [
            {"name": "Checkout latency", "target": 100, "current_value": 95, "unit": "score"},
            {"name": "Order success", "target": 99, "current_value": 97, "unit": "%"},
            {"name": "Refund SLA", "target": 50, "current_value": 20, "unit": "%"},
        ],
    }


@pytest.fixture()
def analyze_artifacts():
    return {
        "risk_items": [
            {"failure_mode": "Payment timeout", "effects": "Lost order", "causes": "Gateway latency",
             "severity": 7, "occurrence": 4, "detection": 3},
            {"failure_mode": "Stale cache", "effects": "Wrong price", "causes": "TTL too long",
             "severity": 5, "occurrence": 3, "detection": 2},
        ],
    }


@pytest.fixture()
def improve_artifacts():
    return {
        "solutions": [
            {"title": "Async payment capture", "impact_score": 8, "effort_score": 4,
             "risk_score": 3, "cost_score": 3, "status": "approved"},
            {"title": "Rewrite checkout", "impact_score": 9, "effort_score": 9,
             "risk_score": 7, "cost_score": 8},
        ],
    }


@pytest.fixture()
def control_artifacts():
    return {
        "control_checklist": {
            "monitoring": True,
            "documentation": True,
            "validation": True,
            "training": True,
        },
    }


@pytest.fixture()
def phase_payloads(define_artifacts, measure_artifacts, analyze_artifacts,
                   improve_artifacts, control_artifacts):
    """Gate-passing artifacts keyed by phase."""
    return {
        "DEFINE": define_artifacts,
        "MEASURE": measure_artifacts,
        "ANALYZE": analyze_artifacts,
        "IMPROVE": improve_artifacts,
        "CONTROL": control_artifacts,
    }
