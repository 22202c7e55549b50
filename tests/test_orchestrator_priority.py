"""Tests for phaseflow/orchestrator/priority.py — priority ranking."""

import pytest

from phaseflow.core.models import (
    Complexity,
    ComplexityLevel,
    Dependencies,
    PriorityLabel,
    Risk,
    RiskLevel,
    Task,
    TaskType,
)
from phaseflow.orchestrator.priority import priority_label, rank_priority

SIMPLE = Complexity(score=3, level=ComplexityLevel.SIMPLE)
MODERATE = Complexity(score=5, level=ComplexityLevel.MODERATE)
LOW_RISK = Risk(level=RiskLevel.LOW, score=0)


class TestRankPriority:
    def test_unblocked_quick_ui_win(self):
        task = Task(id="t", title="Fix typo in footer", declared_type=TaskType.UI)
        priority = rank_priority(task, SIMPLE, LOW_RISK, Dependencies())
        assert priority.score == 90
        assert priority.label == PriorityLabel.CRITICAL

    def test_blocked_task_gets_base_only(self):
        task = Task(id="t", title="Refactor report exporter", declared_type=TaskType.API)
        priority = rank_priority(task, MODERATE, LOW_RISK, Dependencies(blocked_by=["x"]))
        assert priority.score == 50
        assert priority.label == PriorityLabel.MEDIUM

    def test_each_blocked_task_adds_ten(self):
        task = Task(id="t", title="Refactor report exporter", declared_type=TaskType.API)
        priority = rank_priority(task, MODERATE, LOW_RISK, Dependencies(blocks=["a", "b"], blocked_by=["x"]))
        assert priority.score == 70
        assert priority.label == PriorityLabel.HIGH

    def test_risk_weight(self):
        task = Task(id="t", title="Refactor report exporter", declared_type=TaskType.API)
        risk = Risk(level=RiskLevel.HIGH, score=7)
        assert rank_priority(task, MODERATE, risk, Dependencies(blocked_by=["x"])).score == 65

    def test_business_critical_and_clamped(self):
        task = Task(id="t", title="Build checkout page", declared_type=TaskType.UI)
        priority = rank_priority(task, SIMPLE, Risk(level=RiskLevel.HIGH, score=8), Dependencies(blocks=["a"]))
        assert priority.score == 100


class TestLabels:
    @pytest.mark.parametrize("score,label", [
        (100, PriorityLabel.CRITICAL),
        (80, PriorityLabel.CRITICAL),
        (79, PriorityLabel.HIGH),
        (60, PriorityLabel.HIGH),
        (59, PriorityLabel.MEDIUM),
        (40, PriorityLabel.MEDIUM),
        (39, PriorityLabel.LOW),
        (0, PriorityLabel.LOW),
    ])
    def test_label_bands(self, score, label):
        assert priority_label(score) == label
