"""Task classifier facade.

Runs the per-task scorers (complexity, risk, TDD, research, subtasks),
caches their results by a fingerprint of the task text, and combines them
with the dependency graph and priority ranking for a whole task set.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from typing import Optional

from phaseflow.core.exceptions import SetupError
from phaseflow.core.models import Classification, ExternalSignals, Task
from phaseflow.orchestrator import rules
from phaseflow.orchestrator.complexity import assess_risk, requires_tdd, score_complexity
from phaseflow.orchestrator.dependencies import resolve_dependencies
from phaseflow.orchestrator.priority import rank_priority
from phaseflow.orchestrator.research import assess_research
from phaseflow.orchestrator.subtasks import expand_subtasks

logger = logging.getLogger("phaseflow.orchestrator.classifier")


def task_fingerprint(task: Task, signals: ExternalSignals) -> str:
    """Stable hash of everything a text classification depends on."""
    payload = "\x1f".join([
        rules.RULES_VERSION,
        task.id,
        task.title,
        task.description,
        task.declared_type.value,
        str(task.estimated_minutes),
        str(signals.ux_plan_exists),
        str(signals.component_library_known),
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TaskClassifier:
    """Deterministic classifier with an LRU cache of text classifications."""

    def __init__(self, subtask_max_depth: int = 2, cache_size: int = 512):
        self.subtask_max_depth = subtask_max_depth
        self.cache_size = cache_size
        self._cache: OrderedDict[str, Classification] = OrderedDict()
        self.cache_hits = 0
        self.cache_misses = 0

    def classify(self, task: Task, signals: Optional[ExternalSignals] = None) -> Classification:
        """Classify a single task from its text alone (no dependency or priority data)."""
        signals = signals or ExternalSignals()
        key = task_fingerprint(task, signals)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.cache_hits += 1
            return cached.model_copy(deep=True)

        self.cache_misses += 1
        complexity = score_complexity(task)
        risk = assess_risk(task, complexity)
        classification = Classification(
            task_id=task.id,
            complexity=complexity,
            risk=risk,
            research=assess_research(task, signals),
            tdd_required=requires_tdd(task, complexity, risk),
            subtasks=expand_subtasks(task, complexity.score, max_depth=self.subtask_max_depth),
            rules_version=rules.RULES_VERSION,
        )

        if self.cache_size > 0:
            self._cache[key] = classification
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return classification.model_copy(deep=True)

    def classify_tasks(
        self,
        tasks: list[Task],
        signals: Optional[ExternalSignals] = None,
    ) -> dict[str, Classification]:
        """Classify a task set, attaching dependencies and priority.

        Raises:
            SetupError: If task ids are duplicated.
            DependencyViolation: If the dependency graph has a cycle.
        """
        ids = [task.id for task in tasks]
        duplicates = sorted({task_id for task_id in ids if ids.count(task_id) > 1})
        if duplicates:
            raise SetupError(f"Duplicate task ids: {', '.join(duplicates)}")

        graph = resolve_dependencies(tasks)
        result: dict[str, Classification] = {}
        for task in tasks:
            classification = self.classify(task, signals)
            classification.dependencies = graph[task.id]
            classification.priority = rank_priority(
                task, classification.complexity, classification.risk, graph[task.id],
            )
            result[task.id] = classification

        logger.info("Classified %d tasks", len(tasks))
        return result


def rank_tasks(classifications: dict[str, Classification]) -> list[str]:
    """Task ids ordered by priority score (highest first), ties by id."""
    return sorted(
        classifications,
        key=lambda task_id: (-(classifications[task_id].priority.score if classifications[task_id].priority else 0), task_id),
    )
