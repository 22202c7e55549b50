"""Tests for phaseflow/workflow/commands.py — task loading and the Orchestrator."""

import json

import pytest

from phaseflow.core.exceptions import DependencyViolation, PersistenceFailure, RunAborted, SetupError
from phaseflow.core.models import EscalationChoice, ExternalSignals, PhaseStatus, Task, TaskType
from phaseflow.orchestrator.templates import get_template
from phaseflow.workflow.commands import Orchestrator, build_phase_instances, load_tasks
from tests.conftest import FAILING_TEXT, ScriptedWorker, make_registry


@pytest.fixture
def orchestrator(app_config, clock):
    return Orchestrator(config=app_config, registry=make_registry(), clock=clock)


def _refactor_tasks():
    return [Task(id="r1", title="Refactor report exporter", declared_type=TaskType.API)]


class TestLoadTasks:
    def test_yaml_list(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text(
            "- id: ui-1\n  title: Build login form\n  declared_type: ui\n"
            "- id: api-1\n  title: Create POST /api/login\n  declared_type: api\n  estimated_minutes: 60\n"
        )
        tasks = load_tasks(path)
        assert [t.id for t in tasks] == ["ui-1", "api-1"]
        assert tasks[1].declared_type == TaskType.API
        assert tasks[1].estimated_minutes == 60

    def test_json_mapping(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({"tasks": [{"id": "s1", "title": "Nightly export", "declared_type": "script"}]}))
        assert load_tasks(path)[0].declared_type == TaskType.SCRIPT

    def test_missing_file(self, tmp_path):
        with pytest.raises(SetupError, match="Cannot read tasks"):
            load_tasks(tmp_path / "nope.yaml")

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("tasks: [\n")
        with pytest.raises(SetupError, match="Cannot read tasks"):
            load_tasks(path)

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("title: lonely\n")
        with pytest.raises(SetupError, match="must contain a list"):
            load_tasks(path)

    def test_item_not_mapping(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("- just a string\n")
        with pytest.raises(SetupError, match="Task #1 .* is not a mapping"):
            load_tasks(path)

    def test_invalid_task(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("- id: x\n  declared_type: api\n")
        with pytest.raises(SetupError, match="Task #1 .* is invalid"):
            load_tasks(path)


class TestBuildPhaseInstances:
    def test_numbering_and_fields(self):
        phases = build_phase_instances(get_template("backend-only"))
        assert list(phases)[0] == "requirements-analysis"
        assert [p.phase_number for p in phases.values()] == list(range(1, 11))
        assert phases["database"].depends_on_prior_phase is False
        assert phases["database"].worker_role == "schema-builder"
        assert all(p.status == PhaseStatus.PENDING for p in phases.values())


class TestSetup:
    def test_full_stack(self, orchestrator, login_tasks):
        state = orchestrator.setup("chg-1", login_tasks)
        assert state.selected_template == "full-stack"
        assert len(state.phases) == 19
        assert set(state.classifications) == {"ui-1", "api-1"}
        assert state.classifications["ui-1"].dependencies.blocked_by == ["api-1"]
        assert orchestrator.store.exists("chg-1")

    def test_pre_approved_persisted(self, orchestrator, login_tasks):
        orchestrator.setup("chg-1", login_tasks, pre_approved=True)
        assert orchestrator.load_state("chg-1").pre_approved is True

    def test_signals_reach_classifier(self, orchestrator):
        tasks = [Task(id="u1", title="Design onboarding wizard", declared_type=TaskType.UI)]
        with_plan = orchestrator.setup("a", tasks, signals=ExternalSignals(ux_plan_exists=True))
        without_plan = orchestrator.setup("b", tasks)
        assert with_plan.classifications["u1"].research is None
        assert without_plan.classifications["u1"].research is not None

    @pytest.mark.parametrize("change_id", ["", "bad id", "../escape", "-lead"])
    def test_invalid_change_id(self, orchestrator, login_tasks, change_id):
        with pytest.raises(SetupError, match="Invalid change id"):
            orchestrator.setup(change_id, login_tasks)

    def test_no_tasks(self, orchestrator):
        with pytest.raises(SetupError, match="at least one task"):
            orchestrator.setup("chg-1", [])

    def test_cycle_rejected_before_write(self, orchestrator):
        tasks = [
            Task(id="a", title="Integrate billing API", declared_type=TaskType.API),
            Task(id="b", title="Link profile page", declared_type=TaskType.UI),
        ]
        with pytest.raises(DependencyViolation):
            orchestrator.setup("chg-1", tasks)
        assert not orchestrator.store.exists("chg-1")

    def test_existing_state_kept(self, orchestrator, login_tasks):
        orchestrator.setup("chg-1", login_tasks)
        with pytest.raises(PersistenceFailure, match="already exists"):
            orchestrator.setup("chg-1", _refactor_tasks())

    def test_overwrite(self, orchestrator, login_tasks):
        orchestrator.setup("chg-1", login_tasks)
        state = orchestrator.setup("chg-1", _refactor_tasks(), overwrite=True)
        assert state.selected_template == "refactor"


class TestAdvance:
    def test_runs_to_archive(self, orchestrator, login_tasks):
        orchestrator.setup("chg-1", login_tasks)

        result = orchestrator.advance("chg-1")

        assert result.archived is True
        assert result.progress_percentage == 100
        assert len(result.outcomes) == 19
        assert not orchestrator.store.exists("chg-1")

    def test_archived_state_still_readable(self, orchestrator):
        orchestrator.setup("chg-1", _refactor_tasks())
        orchestrator.advance("chg-1")
        assert orchestrator.load_state("chg-1").meta.progress_percentage == 100
        assert orchestrator.quick_status("chg-1") == "chg-1 [refactor] 4/4 phases (100%) current: done"

    def test_pre_approved_override(self, app_config, clock):
        tester = ScriptedWorker("tester")
        orchestrator = Orchestrator(config=app_config, registry=make_registry({"tester": tester}), clock=clock)
        orchestrator.setup("chg-1", _refactor_tasks())
        orchestrator.advance("chg-1", pre_approved=True)
        assert tester.requests[0].auto_proceed is True

    def test_escalation_then_skip(self, app_config, clock):
        tester = ScriptedWorker("tester", [FAILING_TEXT])
        orchestrator = Orchestrator(config=app_config, registry=make_registry({"tester": tester}), clock=clock)
        orchestrator.setup("chg-1", _refactor_tasks())

        result = orchestrator.advance("chg-1")
        assert result.escalation.phase_name == "baseline-tests"
        assert len(tester.requests) == 3

        state = orchestrator.resolve_escalation("chg-1", "skip")
        assert state.phases["baseline-tests"].status == PhaseStatus.SKIPPED
        assert state.current_phase == "refactor-implementation"

    def test_abort_and_reset(self, app_config, clock):
        tester = ScriptedWorker("tester", [FAILING_TEXT])
        orchestrator = Orchestrator(config=app_config, registry=make_registry({"tester": tester}), clock=clock)
        orchestrator.setup("chg-1", _refactor_tasks())
        orchestrator.advance("chg-1")

        state = orchestrator.resolve_escalation("chg-1", EscalationChoice.ABORT)
        assert state.aborted is True
        with pytest.raises(RunAborted):
            orchestrator.advance("chg-1")

        state = orchestrator.reset_phase("chg-1", "baseline-tests", reason="fixture repaired")
        assert state.aborted is False
        assert state.current_phase == "baseline-tests"

    def test_abort_without_escalation(self, orchestrator):
        orchestrator.setup("chg-1", _refactor_tasks())
        assert orchestrator.abort("chg-1", "change withdrawn").aborted is True


class TestStatus:
    def test_missing_workflow(self, orchestrator):
        with pytest.raises(PersistenceFailure):
            orchestrator.load_state("nope")

    def test_quick_and_detailed(self, orchestrator):
        orchestrator.setup("chg-1", _refactor_tasks())
        assert orchestrator.quick_status("chg-1") == "chg-1 [refactor] 0/4 phases (0%) current: baseline-tests"
        text = orchestrator.detailed_status("chg-1")
        assert "Template: refactor" in text
        assert "r1: Refactor report exporter" in text
