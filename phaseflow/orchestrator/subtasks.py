"""Subtask expander.

Splits high-complexity or multi-step tasks into ordered subtasks. A split
is triggered by complexity, the number of distinct action verbs, the
estimate, or "and" connectors. Patterns are tried in order and the first
that applies produces the subtasks:

  (a) ui-api split   — both a UI-ish and an API-ish noun appear
  (b) crud           — "CRUD", or create/read/update/delete verbs all appear
  (c) per-entity     — more than one distinct capitalized entity
  fallback           — design / implement / verify

Subtask ids are ``parent_id.index`` (1-based) and expansion recurses up to
``max_depth`` levels; a pattern is never re-applied beneath itself.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from phaseflow.core.models import Subtask, Task, TaskType
from phaseflow.orchestrator import rules
from phaseflow.orchestrator.complexity import score_complexity

logger = logging.getLogger("phaseflow.orchestrator.subtasks")

_WORD = re.compile(r"[A-Za-z][A-Za-z0-9]*")
_SENTENCE_SPLIT = re.compile(r"[.!?;:]\s+|\n+")


def extract_capitalized_entities(text: str) -> list[str]:
    """Distinct capitalized nouns (``User``, ``Invoice``) in order of appearance.

    Sentence-initial words, acronyms and known verbs are ignored.
    """
    entities: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(text):
        words = _WORD.findall(sentence)
        for word in words[1:]:
            if not word[0].isupper() or word.isupper():
                continue
            if word in rules.NON_ENTITY_WORDS:
                continue
            if word not in entities:
                entities.append(word)
    return entities


def count_action_verbs(text: str) -> int:
    words = {w.lower() for w in _WORD.findall(text)}
    return len(words & rules.ACTION_VERBS)


def should_expand(task: Task, complexity_score: int) -> bool:
    if complexity_score >= rules.SUBTASK_COMPLEXITY_THRESHOLD:
        return True
    if count_action_verbs(task.text) > rules.SUBTASK_VERB_THRESHOLD:
        return True
    if task.estimated_minutes > rules.SUBTASK_MINUTES_THRESHOLD:
        return True
    return rules.AND_CONNECTOR_RULE.count(task.description) > rules.SUBTASK_AND_THRESHOLD


def _is_crud(text: str) -> bool:
    if rules.CRUD_RULE.matches(text):
        return True
    return all(rule.matches(text) for rule in rules.CRUD_VERB_RULES)


def _split_minutes(total: int, parts: int) -> int:
    if total <= 0 or parts <= 0:
        return 0
    return max(1, total // parts)


def _ui_api_split(task: Task) -> list[tuple[str, str, TaskType]]:
    scope = task.description or task.title
    return [
        (f"{task.title} - API", f"Backend endpoints for: {scope}", TaskType.API),
        (f"{task.title} - UI", f"User interface for: {scope}", TaskType.UI),
        (f"{task.title} - wire UI to API", f"Connect the UI to the API for: {scope}", TaskType.INTEGRATION),
    ]


def _crud_split(task: Task) -> list[tuple[str, str, TaskType]]:
    entities = extract_capitalized_entities(task.text)
    entity = entities[0] if entities else task.title
    return [
        (f"{verb} {entity}", f"{verb} operation for {entity}. {task.description}".strip(), task.declared_type)
        for verb in ("Create", "Read", "Update", "Delete")
    ]


def _entity_split(task: Task, entities: list[str]) -> list[tuple[str, str, TaskType]]:
    return [
        (f"{task.title} - {entity}", f"{task.description} (scope: {entity})".strip(), task.declared_type)
        for entity in entities
    ]


def _generic_split(task: Task) -> list[tuple[str, str, TaskType]]:
    scope = task.description or task.title
    return [
        (f"Design {task.title}", f"Plan the approach for: {scope}", task.declared_type),
        (f"Implement {task.title}", scope, task.declared_type),
        (f"Verify {task.title}", f"Tests covering: {scope}", TaskType.TEST),
    ]


def choose_pattern(task: Task, excluded: frozenset[str] = frozenset()) -> Optional[tuple[str, list[tuple[str, str, TaskType]]]]:
    """Pick the first applicable split pattern for a task."""
    text = task.text
    if "ui-api" not in excluded and rules.UI_NOUN_RULE.matches(text) and rules.API_NOUN_RULE.matches(text):
        return "ui-api", _ui_api_split(task)
    if "crud" not in excluded and _is_crud(text):
        return "crud", _crud_split(task)
    entities = extract_capitalized_entities(text)
    if "per-entity" not in excluded and len(entities) > 1:
        return "per-entity", _entity_split(task, entities)
    if "generic" not in excluded:
        return "generic", _generic_split(task)
    return None


def expand_subtasks(
    task: Task,
    complexity_score: int,
    max_depth: int = 2,
    _depth: int = 1,
    _excluded: frozenset[str] = frozenset(),
) -> list[Subtask]:
    """Expand a task into ordered subtasks, or [] if no split is triggered."""
    if _depth > max_depth or not should_expand(task, complexity_score):
        return []

    chosen = choose_pattern(task, _excluded)
    if chosen is None:
        return []
    pattern, parts = chosen

    minutes = _split_minutes(task.estimated_minutes, len(parts))
    subtasks: list[Subtask] = []
    for index, (title, description, declared_type) in enumerate(parts, start=1):
        child_id = f"{task.id}.{index}"
        child = Task(
            id=child_id,
            title=title,
            description=description,
            declared_type=declared_type,
            estimated_minutes=minutes,
        )
        nested = expand_subtasks(
            child,
            score_complexity(child).score,
            max_depth=max_depth,
            _depth=_depth + 1,
            _excluded=_excluded | {pattern},
        )
        subtasks.append(
            Subtask(
                id=child_id,
                title=title,
                description=description,
                declared_type=declared_type,
                estimated_minutes=minutes,
                pattern=pattern,
                subtasks=nested,
            )
        )

    logger.debug("Task '%s' expanded via %s into %d subtasks", task.title[:40], pattern, len(subtasks))
    return subtasks
