"""Tests for phaseflow/orchestrator/classifier.py — cached task classification."""

import pytest

from phaseflow.core.exceptions import DependencyViolation, SetupError
from phaseflow.core.models import ExternalSignals, PriorityLabel, Task, TaskType
from phaseflow.orchestrator import rules
from phaseflow.orchestrator.classifier import TaskClassifier, rank_tasks, task_fingerprint


@pytest.fixture
def classifier():
    return TaskClassifier()


class TestClassify:
    def test_login_endpoint(self, classifier):
        task = Task(id="a", title="Implement POST /api/auth/login", declared_type=TaskType.API)
        result = classifier.classify(task)
        assert result.task_id == "a"
        assert result.complexity.score >= 7
        assert result.risk.level.value == "HIGH"
        assert result.tdd_required is True
        assert result.rules_version == rules.RULES_VERSION
        assert result.priority is None

    def test_subtasks_attached(self, classifier):
        task = Task(id="g", title="Tune search ranking", declared_type=TaskType.API, estimated_minutes=120)
        assert len(classifier.classify(task).subtasks) == 3


class TestCache:
    def test_identical_task_hits_cache(self, classifier):
        task = Task(id="t", title="Build login form", declared_type=TaskType.UI)
        first = classifier.classify(task)
        second = classifier.classify(task)
        assert first == second
        assert classifier.cache_misses == 1
        assert classifier.cache_hits == 1

    def test_returned_copy_is_independent(self, classifier):
        task = Task(id="t", title="Build login form", declared_type=TaskType.UI)
        first = classifier.classify(task)
        first.tdd_required = not first.tdd_required
        assert classifier.classify(task).tdd_required != first.tdd_required

    def test_signals_are_part_of_the_key(self, classifier):
        task = Task(id="t", title="Design onboarding wizard", declared_type=TaskType.UI)
        assert classifier.classify(task).research is not None
        assert classifier.classify(task, ExternalSignals(ux_plan_exists=True)).research is None
        assert classifier.cache_misses == 2

    def test_lru_eviction(self):
        classifier = TaskClassifier(cache_size=1)
        a = Task(id="a", title="Build login form", declared_type=TaskType.UI)
        b = Task(id="b", title="Build signup form", declared_type=TaskType.UI)
        classifier.classify(a)
        classifier.classify(b)
        classifier.classify(a)
        assert classifier.cache_misses == 3
        assert classifier.cache_hits == 0

    def test_cache_disabled(self):
        classifier = TaskClassifier(cache_size=0)
        task = Task(id="a", title="Build login form", declared_type=TaskType.UI)
        classifier.classify(task)
        classifier.classify(task)
        assert classifier.cache_hits == 0

    def test_fingerprint_includes_id(self):
        a = Task(id="a", title="Build login form", declared_type=TaskType.UI)
        b = Task(id="b", title="Build login form", declared_type=TaskType.UI)
        signals = ExternalSignals()
        assert task_fingerprint(a, signals) != task_fingerprint(b, signals)
        assert task_fingerprint(a, signals) == task_fingerprint(a, ExternalSignals())


class TestClassifyTasks:
    def test_dependencies_and_priority(self, classifier, login_tasks):
        result = classifier.classify_tasks(login_tasks)
        assert result["ui-1"].dependencies.blocked_by == ["api-1"]
        assert result["api-1"].dependencies.blocks == ["ui-1"]
        assert result["api-1"].priority.score == 100
        assert result["ui-1"].priority.score == 90
        assert result["ui-1"].priority.label == PriorityLabel.CRITICAL

    def test_rank_tasks(self, classifier, login_tasks):
        assert rank_tasks(classifier.classify_tasks(login_tasks)) == ["api-1", "ui-1"]

    def test_duplicate_ids_rejected(self, classifier):
        tasks = [
            Task(id="x", title="Build login form", declared_type=TaskType.UI),
            Task(id="x", title="Create POST /api/login", declared_type=TaskType.API),
        ]
        with pytest.raises(SetupError, match="Duplicate task ids: x"):
            classifier.classify_tasks(tasks)

    def test_cycle_propagates(self, classifier):
        tasks = [
            Task(id="a", title="Integrate billing API", declared_type=TaskType.API),
            Task(id="b", title="Link profile page", declared_type=TaskType.UI),
        ]
        with pytest.raises(DependencyViolation):
            classifier.classify_tasks(tasks)
