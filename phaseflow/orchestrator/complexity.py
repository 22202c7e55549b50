"""Task complexity, risk and TDD scoring.

Estimates task complexity from the task text using the weighted rules in
``phaseflow.orchestrator.rules``. Does NOT call any worker: this is a fast,
deterministic classifier, so identical text always yields identical scores.

The scores feed into:
- Subtask expansion (complex tasks are split)
- Risk mitigations and the TDD decision
- Priority ranking
"""

from __future__ import annotations

import logging

from phaseflow.core.models import Complexity, ComplexityLevel, Risk, RiskLevel, Task, TaskType
from phaseflow.orchestrator import rules

logger = logging.getLogger("phaseflow.orchestrator.complexity")


def complexity_level(score: int) -> ComplexityLevel:
    for upper, name in rules.COMPLEXITY_LEVELS:
        if score <= upper:
            return ComplexityLevel(name)
    return ComplexityLevel.CRITICAL


def duration_weight(estimated_minutes: int) -> int:
    for threshold, weight in rules.DURATION_BANDS:
        if estimated_minutes > threshold:
            return weight
    return 0


def score_complexity(task: Task) -> Complexity:
    """Score task complexity on a 1-10 scale.

    Base score plus duration band, one point per high-complexity keyword,
    HTTP mutation, connector counts and external references.
    """
    text = task.text
    score = rules.COMPLEXITY_BASE
    factors: list[str] = []

    band = duration_weight(task.estimated_minutes)
    if band:
        score += band
        factors.append(f"duration:{task.estimated_minutes}min(+{band})")

    for rule in rules.match_rules(text, rules.HIGH_COMPLEXITY_RULES):
        score += rule.weight
        factors.append(f"keyword:{rule.tag}(+{rule.weight})")

    if rules.MUTATION_RULE.matches(text):
        score += rules.MUTATION_RULE.weight
        factors.append(f"mutation(+{rules.MUTATION_RULE.weight})")

    if rules.AND_CONNECTOR_RULE.count(task.description) > rules.AND_THRESHOLD:
        score += 1
        factors.append("many-and-connectors(+1)")

    if rules.THEN_CONNECTOR_RULE.count(task.description) > rules.THEN_THRESHOLD:
        score += 1
        factors.append("sequential-steps(+1)")

    if rules.EXTERNAL_REFERENCE_RULE.matches(text):
        score += 1
        factors.append("external-reference(+1)")

    clamped = max(1, min(10, score))
    level = complexity_level(clamped)

    logger.debug(
        "Task '%s' complexity: %s (score=%d, raw=%d, factors=%s)",
        task.title[:40], level.value, clamped, score, factors,
    )
    return Complexity(score=clamped, level=level, factors=factors)


def risk_level(score: int) -> RiskLevel:
    if score >= rules.RISK_HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score >= rules.RISK_MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess_risk(task: Task, complexity: Complexity) -> Risk:
    """Accumulate a risk score and derive deterministic mitigations."""
    text = task.text
    score = rules.RISK_TIER_WEIGHTS[complexity.level.value]
    categories: list[str] = []

    for rule in rules.match_rules(text, rules.RISK_KEYWORD_RULES):
        score += rule.weight
        categories.append(rule.category)

    if task.declared_type == TaskType.UI and rules.SENSITIVE_UI_RULE.matches(text):
        score += rules.SENSITIVE_UI_RULE.weight
        categories.append(rules.SENSITIVE_UI_RULE.category)

    level = risk_level(score)
    mitigations = list(rules.LEVEL_MITIGATIONS[level.value])
    for category in categories:
        hint = rules.CATEGORY_MITIGATIONS.get(category)
        if hint and hint not in mitigations:
            mitigations.append(hint)

    logger.debug("Task '%s' risk: %s (score=%d)", task.title[:40], level.value, score)
    return Risk(level=level, score=score, mitigations=mitigations)


def requires_tdd(task: Task, complexity: Complexity, risk: Risk) -> bool:
    """Test-first is required for risky, complex, mutating or security-sensitive work."""
    if risk.level == RiskLevel.HIGH:
        return True
    if complexity.score >= rules.TDD_COMPLEXITY_THRESHOLD:
        return True
    if rules.MUTATION_RULE.matches(task.text):
        return True
    return rules.RISK_KEYWORD_RULES[0].matches(task.text)
