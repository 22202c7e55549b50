"""Research requirement decision table.

Walks ``rules.RESEARCH_RULES`` in order; the first applicable category
wins. UX-pattern and accessibility research are skipped when an external
page/UX plan already exists for the workflow, so design work is not
researched twice.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from phaseflow.core.models import ExternalSignals, ResearchRequirement, Task, TaskType
from phaseflow.orchestrator import rules

logger = logging.getLogger("phaseflow.orchestrator.research")

_WORD = re.compile(r"[A-Za-z][A-Za-z0-9-]*")


def extract_subject_nouns(text: str) -> list[str]:
    """Extract page/component nouns ("login form", "settings page") from text.

    Falls back to capitalized words when no page/component noun is present.
    """
    words = _WORD.findall(text)
    lowered = [w.lower() for w in words]
    subjects: list[str] = []
    for index, word in enumerate(lowered):
        if word.rstrip("s") not in rules.PAGE_COMPONENT_NOUNS:
            continue
        if index > 0 and lowered[index - 1] not in rules.STOPWORDS and lowered[index - 1] not in rules.ACTION_VERBS:
            phrase = f"{lowered[index - 1]} {word}"
        else:
            phrase = word
        if phrase not in subjects:
            subjects.append(phrase)

    if subjects:
        return subjects

    for word in words[1:]:
        if word[0].isupper() and word not in rules.NON_ENTITY_WORDS and word.lower() not in subjects:
            subjects.append(word.lower())
    return subjects


def _subject(task: Task) -> str:
    nouns = extract_subject_nouns(task.text)
    if nouns:
        return " ".join(nouns[:2])
    return task.title.strip().lower()


def _applies(entry: rules.ResearchRule, task: Task, signals: ExternalSignals) -> bool:
    if entry.skip_when_ux_plan and signals.ux_plan_exists:
        return False
    if entry.ui_only and task.declared_type != TaskType.UI:
        return False
    if entry.needs_missing_library and signals.component_library_known:
        return False
    return entry.rule.matches(task.text)


def assess_research(task: Task, signals: Optional[ExternalSignals] = None) -> Optional[ResearchRequirement]:
    """Return the research requirement for a task, or None if none applies."""
    signals = signals or ExternalSignals()
    for entry in rules.RESEARCH_RULES:
        if not _applies(entry, task, signals):
            continue
        subject = _subject(task)
        queries = [template.format(subject=subject) for template in entry.query_templates]
        logger.debug("Task '%s' needs %s research", task.title[:40], entry.category)
        return ResearchRequirement(
            required=True,
            category=entry.category,
            queries=queries,
            estimated_minutes=entry.estimated_minutes,
        )
    return None
