"""Priority ranker.

Combines classifier and dependency outputs into a single 0-100 score.
"""

from __future__ import annotations

from phaseflow.core.models import Complexity, Dependencies, Priority, PriorityLabel, Risk, Task, TaskType
from phaseflow.orchestrator import rules


def priority_label(score: int) -> PriorityLabel:
    for threshold, label in rules.PRIORITY_LABELS:
        if score >= threshold:
            return PriorityLabel(label)
    return PriorityLabel.LOW


def rank_priority(task: Task, complexity: Complexity, risk: Risk, dependencies: Dependencies) -> Priority:
    score = rules.PRIORITY_BASE
    if rules.BUSINESS_CRITICAL_RULE.matches(task.text):
        score += rules.BUSINESS_CRITICAL_RULE.weight
    score += rules.PRIORITY_PER_BLOCKED * len(dependencies.blocks)
    if not dependencies.blocked_by:
        score += rules.PRIORITY_UNBLOCKED
    score += rules.PRIORITY_RISK_WEIGHTS[risk.level.value]
    if complexity.score <= rules.PRIORITY_QUICK_WIN_MAX_COMPLEXITY:
        score += rules.PRIORITY_QUICK_WIN
    if task.declared_type == TaskType.UI:
        score += rules.PRIORITY_UI_BONUS

    clamped = max(0, min(100, score))
    return Priority(score=clamped, label=priority_label(clamped))
