"""Dependency resolver for a task set.

Infers blocking relationships between tasks of different declared types,
computes the inverse ``blocks`` closure and the ``parallelizable`` pairs,
and rejects cyclic graphs. Rules, evaluated per task against the set:

1. ui / integration tasks are blocked by api tasks mentioning an api or endpoint
2. api tasks are blocked by data-schema tasks sharing an entity noun
3. test tasks are blocked by non-test tasks whose leading entity they mention
4. tasks that connect / integrate / link are blocked by every ui and api task

Two tasks are parallelizable iff they share no entity noun and neither
(transitively) blocks the other.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Iterable, Optional

from phaseflow.core.exceptions import DependencyViolation
from phaseflow.core.models import Dependencies, Task, TaskType
from phaseflow.orchestrator import rules

logger = logging.getLogger("phaseflow.orchestrator.dependencies")

_WORD = re.compile(r"[a-z][a-z0-9]+")


def _singular(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith(("ss", "us", "is")):
        if word.endswith("ies"):
            return word[:-3] + "y"
        return word[:-1]
    return word


def extract_entities(text: str) -> list[str]:
    """Domain nouns of a text, lowercased and singularized, in order of appearance."""
    entities: list[str] = []
    for raw in _WORD.findall(text.lower()):
        if len(raw) < 3 or raw in rules.STOPWORDS:
            continue
        word = _singular(raw)
        if word in rules.GENERIC_NOUNS or raw in rules.GENERIC_NOUNS:
            continue
        if word in rules.ACTION_VERBS or raw in rules.ACTION_VERBS:
            continue
        if word not in entities:
            entities.append(word)
    return entities


def leading_entity(task: Task) -> Optional[str]:
    entities = extract_entities(task.title) or extract_entities(task.text)
    return entities[0] if entities else None


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def infer_blocked_by(tasks: list[Task]) -> dict[str, list[str]]:
    """Apply the per-task rules and return task_id -> blocked_by ids."""
    entities = {task.id: set(extract_entities(task.text)) for task in tasks}
    leads = {task.id: leading_entity(task) for task in tasks}
    blocked_by: dict[str, list[str]] = {task.id: [] for task in tasks}

    for task in tasks:
        found: list[str] = []
        others = [other for other in tasks if other.id != task.id]

        if task.declared_type in (TaskType.UI, TaskType.INTEGRATION):
            found.extend(
                other.id for other in others
                if other.declared_type == TaskType.API and rules.API_REFERENCE_RULE.matches(other.text)
            )

        if task.declared_type == TaskType.API:
            found.extend(
                other.id for other in others
                if other.declared_type == TaskType.DATA_SCHEMA and entities[task.id] & entities[other.id]
            )

        if task.declared_type == TaskType.TEST:
            found.extend(
                other.id for other in others
                if other.declared_type != TaskType.TEST
                and leads[other.id] is not None
                and leads[other.id] in entities[task.id]
            )

        if rules.CONNECT_RULE.matches(task.text):
            found.extend(
                other.id for other in others
                if other.declared_type in (TaskType.UI, TaskType.API)
            )

        blocked_by[task.id] = _dedupe(found)

    return blocked_by


def find_cycle(blocked_by: dict[str, list[str]]) -> Optional[list[str]]:
    """Return one cycle as a closed path of task ids, or None if the graph is acyclic."""
    white, grey, black = 0, 1, 2
    color = {node: white for node in blocked_by}
    stack: list[str] = []

    def visit(node: str) -> Optional[list[str]]:
        color[node] = grey
        stack.append(node)
        for dep in blocked_by.get(node, []):
            if dep not in color:
                continue
            if color[dep] == grey:
                start = stack.index(dep)
                return stack[start:] + [dep]
            if color[dep] == white:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        color[node] = black
        return None

    for node in blocked_by:
        if color[node] == white:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def _reachable(start: str, edges: dict[str, list[str]]) -> set[str]:
    seen: set[str] = set()
    queue = deque(edges.get(start, []))
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(edges.get(node, []))
    return seen


def resolve_dependencies(tasks: list[Task]) -> dict[str, Dependencies]:
    """Build the full dependency graph for a task set.

    Raises:
        DependencyViolation: If the inferred graph contains a cycle.
    """
    blocked_by = infer_blocked_by(tasks)

    cycle = find_cycle(blocked_by)
    if cycle:
        path = " -> ".join(cycle)
        logger.error("Dependency cycle detected: %s", path)
        raise DependencyViolation(
            f"Dependency cycle detected between tasks: {path}",
            remedy="reword or split the tasks so the connect/integrate and schema rules no longer "
                   "point at each other, then re-run setup",
            cycle=cycle,
        )

    blocks: dict[str, list[str]] = {task.id: [] for task in tasks}
    for task_id, deps in blocked_by.items():
        for dep in deps:
            blocks[dep].append(task_id)

    upstream = {task.id: _reachable(task.id, blocked_by) for task in tasks}
    entities = {task.id: set(extract_entities(task.text)) for task in tasks}

    graph: dict[str, Dependencies] = {}
    for task in tasks:
        parallel = [
            other.id for other in tasks
            if other.id != task.id
            and not (entities[task.id] & entities[other.id])
            and other.id not in upstream[task.id]
            and task.id not in upstream[other.id]
        ]
        graph[task.id] = Dependencies(
            blocks=blocks[task.id],
            blocked_by=blocked_by[task.id],
            parallelizable=parallel,
        )

    logger.info(
        "Resolved dependencies for %d tasks (%d blocking edges)",
        len(tasks), sum(len(v) for v in blocked_by.values()),
    )
    return graph


def execution_waves(graph: dict[str, Dependencies]) -> list[list[str]]:
    """Group task ids into waves; every task's blockers sit in earlier waves."""
    remaining = {task_id: set(deps.blocked_by) & set(graph) for task_id, deps in graph.items()}
    waves: list[list[str]] = []
    while remaining:
        ready = sorted(task_id for task_id, deps in remaining.items() if not deps)
        if not ready:
            cycle = find_cycle({k: sorted(v) for k, v in remaining.items()}) or sorted(remaining)
            raise DependencyViolation(
                "Dependency cycle prevents ordering tasks: " + " -> ".join(cycle),
                remedy="re-run setup after removing the cycle",
                cycle=cycle,
            )
        waves.append(ready)
        for task_id in ready:
            del remaining[task_id]
        for deps in remaining.values():
            deps.difference_update(ready)
    return waves
