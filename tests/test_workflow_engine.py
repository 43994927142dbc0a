"""
DMAIC Phase Workflow Engine — service-layer tests.

Most tests run twice through the ``engine`` fixture: once over the
in-memory repository and once over the SQLAlchemy repository.

Covers:
  • Project creation + field validation
  • Artifact submission: phase rule, field ranges, derived RPN
  • Gate evaluation + phase advance (scenarios A-E)
  • Metric refresh, capability report, solution ranking + status changes
  • Compare-and-swap transitions and repository failures
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    ConcurrentTransition,
    GateNotSatisfied,
    InvalidFieldRange,
    NotFoundError,
    PhaseMismatch,
    ProjectCompleted,
    ProjectNotFound,
    RepositoryUnavailable,
    ValidationError,
    WorkflowError,
)
from app.models import db
from app.services.gate_evaluator import weighted_policy
from app.services.solution_scorer import WEIGHTED
from app.services.workflow_engine import PhaseWorkflowEngine

PHASE_ORDER = ["DEFINE", "MEASURE", "ANALYZE", "IMPROVE", "CONTROL"]


# ═════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════

def _project(engine, **kw):
    fields = {"name": "Checkout defects", "business_case": "Reduce failed checkouts by 50%"}
    fields.update(kw)
    return engine.create_project(**fields)


def _walk_to(engine, project_id, target, payloads):
    """Submit gate-passing artifacts and advance until ``target`` is current."""
    results = []
    for phase in PHASE_ORDER:
        if phase == target:
            return results
        engine.submit_artifacts(project_id, phase, payloads[phase])
        results.append(engine.advance_phase(project_id))
    return results


# ═════════════════════════════════════════════════════════════════════════
# Project creation
# ═════════════════════════════════════════════════════════════════════════

class TestCreateProject:
    def test_initial_state(self, engine):
        project = _project(engine)
        assert project["current_phase"] == "DEFINE"
        assert project["phase_completion"] == 0
        assert project["quality_score"] == 0
        assert project["risk_level"] == "LOW"
        assert project["deployment_target"] == "cloud"
        assert project["budget_limit"] == 5000
        assert project["timeline_days"] == 90

    def test_custom_fields(self, engine):
        project = _project(engine, deployment_target="AWS", budget_limit=12000, timeline_days=30)
        assert project["deployment_target"] == "AWS"
        assert project["budget_limit"] == 12000
        assert project["timeline_days"] == 30

    def test_name_required(self, engine):
        with pytest.raises(ValidationError) as exc:
            _project(engine, name="  ")
        assert exc.value.errors[0]["field"] == "name"

    def test_negative_budget_is_range_error(self, engine):
        with pytest.raises(InvalidFieldRange):
            _project(engine, budget_limit=-1)

    def test_non_finite_numbers_are_range_errors(self, engine):
        with pytest.raises(InvalidFieldRange) as exc:
            _project(engine, timeline_days=float("inf"))
        assert exc.value.errors[0]["field"] == "timeline_days"
        with pytest.raises(InvalidFieldRange) as exc:
            _project(engine, budget_limit=float("nan"))
        assert exc.value.errors[0]["field"] == "budget_limit"
        with pytest.raises(InvalidFieldRange):
            _project(engine, timeline_days=10**400)
        assert engine.list_projects() == []

    def test_listed(self, engine):
        _project(engine, name="A")
        _project(engine, name="B")
        assert {p["name"] for p in engine.list_projects()} == {"A", "B"}

    def test_unknown_project(self, engine):
        with pytest.raises(ProjectNotFound):
            engine.get_status("does-not-exist")
        with pytest.raises(ProjectNotFound):
            engine.advance_phase("does-not-exist")
        with pytest.raises(ProjectNotFound):
            engine.evaluate_gate("does-not-exist")


# ═════════════════════════════════════════════════════════════════════════
# Artifact submission
# ═════════════════════════════════════════════════════════════════════════

class TestSubmitArtifacts:
    def test_accepted(self, engine, define_artifacts):
        pid = _project(engine)["id"]
        result = engine.submit_artifacts(pid, "DEFINE", define_artifacts)
        assert result.to_dict()["accepted"] is True
        assert result.submitted == {"requirements": 3, "ctq_items": 2, "constraints": 1}
        assert result.artifact_count == 6

    def test_phase_is_case_insensitive(self, engine, define_artifacts):
        pid = _project(engine)["id"]
        assert engine.submit_artifacts(pid, "define", define_artifacts).phase == "DEFINE"

    def test_other_phase_rejected(self, engine, measure_artifacts):
        pid = _project(engine)["id"]
        with pytest.raises(PhaseMismatch) as exc:
            engine.submit_artifacts(pid, "MEASURE", measure_artifacts)
        assert exc.value.details["current_phase"] == "DEFINE"
        assert engine.get_status(pid)["artifact_count"] == 0

    def test_kind_owned_by_other_phase_rejected(self, engine, measure_artifacts):
        pid = _project(engine)["id"]
        with pytest.raises(PhaseMismatch) as exc:
            engine.submit_artifacts(pid, "DEFINE", measure_artifacts)
        assert exc.value.details["artifact_kind"] == "kpis"
        assert exc.value.details["submitted_phase"] == "MEASURE"

    def test_unknown_phase(self, engine, define_artifacts):
        pid = _project(engine)["id"]
        with pytest.raises(ValidationError):
            engine.submit_artifacts(pid, "DEPLOY", define_artifacts)

    def test_out_of_range_stores_nothing(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "ANALYZE", phase_payloads)
        before = engine.get_status(pid)["artifact_count"]
        bad = {"risk_items": [{"failure_mode": "f", "effects": "e", "causes": "c",
                               "severity": 11, "occurrence": 2, "detection": 2}]}
        with pytest.raises(InvalidFieldRange) as exc:
            engine.submit_artifacts(pid, "ANALYZE", bad)
        assert exc.value.errors[0]["field"] == "severity"
        assert engine.get_status(pid)["artifact_count"] == before

    def test_oversized_integer_is_range_error(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "ANALYZE", phase_payloads)
        before = engine.get_status(pid)["artifact_count"]
        bad = {"risk_items": [{"failure_mode": "f", "effects": "e", "causes": "c",
                               "severity": 10**400, "occurrence": 2, "detection": 2}]}
        with pytest.raises(InvalidFieldRange) as exc:
            engine.submit_artifacts(pid, "ANALYZE", bad)
        assert exc.value.errors[0]["field"] == "severity"
        assert exc.value.errors[0]["max"] == 10
        assert engine.get_status(pid)["artifact_count"] == before

    def test_rpn_is_derived(self, engine, phase_payloads):
        """Scenario B: 9 × 6 × 7 = 378, CRITICAL; a supplied rpn is ignored."""
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "ANALYZE", phase_payloads)
        engine.submit_artifacts(pid, "ANALYZE", {"risk_items": [
            {"failure_mode": "Double charge", "effects": "Refund", "causes": "Retry storm",
             "severity": 9, "occurrence": 6, "detection": 7, "rpn": 5},
        ]})
        item = engine.get_status(pid, include_artifacts=True)["artifacts"]["risk_items"][0]
        assert item["rpn"] == 378
        assert item["rpn_label"] == "CRITICAL"

    def test_phase_artifacts_tagged_with_current_phase(self, engine):
        pid = _project(engine)["id"]
        engine.submit_artifacts(pid, "DEFINE", {"phase_artifacts": [
            {"artifact_type": "charter", "data": {"sponsor": "Ops"}},
        ]})
        stored = engine.get_status(pid, include_artifacts=True)["artifacts"]["phase_artifacts"]
        assert stored[0]["phase"] == "DEFINE"
        assert stored[0]["data"] == {"sponsor": "Ops"}

    def test_phase_artifact_for_other_phase_rejected(self, engine):
        pid = _project(engine)["id"]
        with pytest.raises(PhaseMismatch):
            engine.submit_artifacts(pid, "DEFINE", {"phase_artifacts": [
                {"phase": "CONTROL", "artifact_type": "control_plan", "data": {}},
            ]})

    def test_checklist_updated_in_place(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "CONTROL", phase_payloads)
        engine.submit_artifacts(pid, "CONTROL", {"control_checklist": {"monitoring": True}})
        engine.submit_artifacts(pid, "CONTROL", {"control_checklist": {"training": True}})
        status = engine.get_status(pid, include_artifacts=True)
        checklist = status["artifacts"]["control_checklist"]
        assert checklist["monitoring"] is True
        assert checklist["training"] is True
        assert checklist["documentation"] is False
        assert status["artifact_counts"]["control_checklist"] == 1


# ═════════════════════════════════════════════════════════════════════════
# Gate + advance
# ═════════════════════════════════════════════════════════════════════════

class TestAdvancePhase:
    def test_scenario_a(self, engine, define_artifacts):
        pid = _project(engine)["id"]
        engine.submit_artifacts(pid, "DEFINE", define_artifacts)
        assert engine.evaluate_gate(pid).passed is True

        result = engine.advance_phase(pid)
        assert result.previous_phase == "DEFINE"
        assert result.phase == "MEASURE"
        assert result.completion == 20
        # 0.4 × 20 + 0.3 × (3 of 4 criteria) + 0.3 × 30
        assert result.quality == 39.5
        assert result.risk == "LOW"

        project = engine.get_status(pid)["project"]
        assert project["current_phase"] == "MEASURE"
        assert project["phase_completion"] == 20
        assert project["quality_score"] == 39.5

    def test_blocked_gate_changes_nothing(self, engine):
        pid = _project(engine)["id"]
        with pytest.raises(GateNotSatisfied) as exc:
            engine.advance_phase(pid)
        assert exc.value.missing == [
            "requirements_documented", "ctq_targets_defined", "constraints_documented",
        ]
        assert len(exc.value.recommendations) == 3
        project = engine.get_status(pid)["project"]
        assert project["current_phase"] == "DEFINE"
        assert project["phase_completion"] == 0
        assert project["quality_score"] == 0

    def test_full_walk(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        results = _walk_to(engine, pid, None, phase_payloads)
        assert [r.phase for r in results] == PHASE_ORDER[1:] + ["COMPLETED"]
        assert [r.completion for r in results] == [20, 40, 60, 80, 100]
        # every criterion met, low risk
        assert results[-1].quality == 79.0

    def test_scenario_d_control_gate(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "CONTROL", phase_payloads)
        engine.submit_artifacts(pid, "CONTROL", {"control_checklist": {
            "monitoring": True, "documentation": True, "validation": True, "training": False,
        }})
        gate = engine.evaluate_gate(pid)
        assert gate.passed is False
        assert gate.missing == ["training"]
        with pytest.raises(GateNotSatisfied) as exc:
            engine.advance_phase(pid)
        assert exc.value.missing == ["training"]
        assert engine.get_status(pid)["project"]["current_phase"] == "CONTROL"

    def test_scenario_e_completed_is_frozen(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, None, phase_payloads)
        before = engine.get_status(pid)["project"]
        assert before["current_phase"] == "COMPLETED"

        with pytest.raises(ProjectCompleted):
            engine.advance_phase(pid)
        with pytest.raises(ProjectCompleted):
            engine.submit_artifacts(pid, "CONTROL", phase_payloads["CONTROL"])
        with pytest.raises(ProjectCompleted):
            engine.recompute_metrics(pid)

        assert engine.get_status(pid)["project"] == before

    def test_completed_gate_reports_not_passed(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, None, phase_payloads)
        gate = engine.evaluate_gate(pid)
        assert gate.passed is False
        assert gate.phase == "COMPLETED"

    def test_gate_evaluation_idempotent(self, engine, define_artifacts):
        pid = _project(engine)["id"]
        engine.submit_artifacts(pid, "DEFINE", {"requirements": define_artifacts["requirements"]})
        assert engine.evaluate_gate(pid) == engine.evaluate_gate(pid)

    def test_weighted_policy_engine(self, memory_repo, define_artifacts):
        engine = PhaseWorkflowEngine(memory_repo, gate_policy=weighted_policy(60))
        pid = _project(engine)["id"]
        engine.submit_artifacts(pid, "DEFINE", {
            "requirements": define_artifacts["requirements"],
            "ctq_items": define_artifacts["ctq_items"],
        })
        assert engine.advance_phase(pid).phase == "MEASURE"

    def test_from_config(self, memory_repo):
        engine = PhaseWorkflowEngine.from_config(
            {"DMAIC_GATE_POLICY": "weighted", "DMAIC_WEIGHTED_GATE_THRESHOLD": 70,
             "DMAIC_SOLUTION_SCORING": "weighted"},
            memory_repo,
        )
        assert engine.gate_policy.name == "weighted"
        assert engine.scoring is WEIGHTED


# ═════════════════════════════════════════════════════════════════════════
# Metrics
# ═════════════════════════════════════════════════════════════════════════

class TestMetrics:
    def test_scenario_b_risk_high(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "ANALYZE", phase_payloads)
        engine.submit_artifacts(pid, "ANALYZE", {"risk_items": [
            {"failure_mode": "Double charge", "effects": "Refund", "causes": "Retry storm",
             "severity": 9, "occurrence": 6, "detection": 7},
        ]})
        project = engine.recompute_metrics(pid)
        assert project["risk_level"] == "HIGH"
        assert project["current_phase"] == "ANALYZE"

    def test_recompute_keeps_phase_and_completion(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "MEASURE", phase_payloads)
        engine.submit_artifacts(pid, "MEASURE", phase_payloads["MEASURE"])
        project = engine.recompute_metrics(pid)
        assert project["phase_completion"] == 20
        # 0.4 × 20 + 0.3 × (4 of 4) + 0.3 × 30
        assert project["quality_score"] == 47.0

    def test_process_capability(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "MEASURE", phase_payloads)
        engine.submit_artifacts(pid, "MEASURE", phase_payloads["MEASURE"])
        report = engine.process_capability(pid)
        assert report["project_id"] == pid
        assert report["opportunities"] == 3
        assert report["defects"] == 1
        assert report["sigma_level"] == 2

    def test_kpi_performance_serialized(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "MEASURE", phase_payloads)
        engine.submit_artifacts(pid, "MEASURE", phase_payloads["MEASURE"])
        kpis = engine.get_status(pid, include_artifacts=True)["artifacts"]["kpis"]
        assert [k["performance"] for k in kpis] == [95.0, 98.0, 40.0]

    def test_quality_always_in_bounds(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        for result in _walk_to(engine, pid, None, phase_payloads):
            assert 0 <= result.quality <= 100


# ═════════════════════════════════════════════════════════════════════════
# Solutions
# ═════════════════════════════════════════════════════════════════════════

class TestSolutions:
    def _in_improve(self, engine, phase_payloads):
        pid = _project(engine)["id"]
        _walk_to(engine, pid, "IMPROVE", phase_payloads)
        engine.submit_artifacts(pid, "IMPROVE", {"solutions": [
            {"title": "Async payment capture", "impact_score": 8, "effort_score": 4,
             "risk_score": 3, "cost_score": 3},
            {"title": "Rewrite checkout", "impact_score": 9, "effort_score": 9,
             "risk_score": 7, "cost_score": 8},
        ]})
        return pid

    def test_scenario_c_ranking(self, engine, phase_payloads):
        pid = self._in_improve(engine, phase_payloads)
        ranking = engine.rank_solutions(pid)
        assert ranking["recommended"]["title"] == "Async payment capture"
        assert ranking["recommended"]["score"] == 6
        assert ranking["recommended"]["total_score"] == 6
        assert all(s["status"] == "proposed" for s in ranking["ranking"])

    def test_ranking_does_not_pass_gate(self, engine, phase_payloads):
        pid = self._in_improve(engine, phase_payloads)
        engine.rank_solutions(pid)
        assert engine.evaluate_gate(pid).missing == ["solution_selected"]

    def test_approve_then_advance(self, engine, phase_payloads):
        pid = self._in_improve(engine, phase_payloads)
        top = engine.rank_solutions(pid)["recommended"]
        updated = engine.update_solution_status(top["id"], "approved")
        assert updated["status"] == "approved"
        assert engine.advance_phase(pid).phase == "CONTROL"

    def test_invalid_transition(self, engine, phase_payloads):
        pid = self._in_improve(engine, phase_payloads)
        sid = engine.rank_solutions(pid)["recommended"]["id"]
        with pytest.raises(WorkflowError):
            engine.update_solution_status(sid, "implemented")
        with pytest.raises(ValidationError):
            engine.update_solution_status(sid, "shelved")

    def test_unknown_solution(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_solution_status("missing", "approved")


# ═════════════════════════════════════════════════════════════════════════
# Concurrency + repository failures
# ═════════════════════════════════════════════════════════════════════════

class TestConcurrency:
    def test_lost_race_raises(self, memory_repo, memory_engine, define_artifacts, monkeypatch):
        """A competing advance lands between gate check and phase write."""
        pid = _project(memory_engine)["id"]
        memory_engine.submit_artifacts(pid, "DEFINE", define_artifacts)

        original = memory_repo.compare_and_swap_phase

        def racing(project_id, expected_phase, changes):
            original(project_id, expected_phase, changes)
            return original(project_id, expected_phase, changes)

        monkeypatch.setattr(memory_repo, "compare_and_swap_phase", racing)
        with pytest.raises(ConcurrentTransition):
            memory_engine.advance_phase(pid)
        assert memory_repo.get_project(pid)["current_phase"] == "MEASURE"

    def test_metric_refresh_loses_to_advance(self, memory_repo, memory_engine, define_artifacts,
                                             monkeypatch):
        """An advance lands between the metric computation and its write."""
        pid = _project(memory_engine)["id"]
        memory_engine.submit_artifacts(pid, "DEFINE", define_artifacts)

        original = memory_repo.update_metrics
        advanced = {}

        def after_advance(project_id, expected_phase, quality_score, risk_level):
            memory_engine.advance_phase(project_id)
            advanced.update(memory_repo.get_project(project_id))
            return original(project_id, expected_phase, quality_score, risk_level)

        monkeypatch.setattr(memory_repo, "update_metrics", after_advance)
        with pytest.raises(ConcurrentTransition):
            memory_engine.recompute_metrics(pid)
        project = memory_repo.get_project(pid)
        assert project["current_phase"] == "MEASURE"
        assert project["phase_completion"] == 20
        assert project["quality_score"] == advanced["quality_score"]

    def test_parallel_advances_move_one_step(self, memory_engine, define_artifacts):
        pid = _project(memory_engine)["id"]
        memory_engine.submit_artifacts(pid, "DEFINE", define_artifacts)
        barrier = threading.Barrier(4)
        outcomes = []

        def advance():
            barrier.wait()
            try:
                outcomes.append(memory_engine.advance_phase(pid).phase)
            except (ConcurrentTransition, GateNotSatisfied) as exc:
                outcomes.append(type(exc).__name__)

        threads = [threading.Thread(target=advance) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("MEASURE") == 1
        assert memory_engine.get_status(pid)["project"]["current_phase"] == "MEASURE"

    def test_cas_rejects_stale_phase(self, engine):
        pid = _project(engine)["id"]
        repo = engine.repository
        assert repo.compare_and_swap_phase(pid, "MEASURE", {"current_phase": "ANALYZE"}) is False
        assert repo.get_project(pid)["current_phase"] == "DEFINE"


class TestRepositoryUnavailable:
    def test_sql_failure_surfaces(self, sql_engine, monkeypatch):
        pid = _project(sql_engine)["id"]

        def _boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(db.session, "execute", _boom)
        with pytest.raises(RepositoryUnavailable) as exc:
            sql_engine.advance_phase(pid)
        assert exc.value.details["operation"] == "get_project"

    def test_memory_failure_propagates_verbatim(self, memory_repo, memory_engine, monkeypatch):
        pid = _project(memory_engine)["id"]
        error = RepositoryUnavailable("get_snapshot")

        def _boom(project_id):
            raise error

        monkeypatch.setattr(memory_repo, "get_snapshot", _boom)
        with pytest.raises(RepositoryUnavailable) as exc:
            memory_engine.evaluate_gate(pid)
        assert exc.value is error
