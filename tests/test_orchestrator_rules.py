"""Tests for phaseflow/orchestrator/rules.py — the versioned rule table."""

import dataclasses
import re

import pytest

from phaseflow.orchestrator import rules
from phaseflow.orchestrator.rules import Rule, match_rules, total_weight


class TestRule:
    def test_case_insensitive_by_default(self):
        assert Rule(r"\bauth\b", "auth").matches("Add AUTH header")

    def test_case_sensitive_when_flags_cleared(self):
        assert not rules.MUTATION_RULE.matches("post /x")
        assert rules.MUTATION_RULE.matches("POST /x")

    def test_count(self):
        assert rules.AND_CONNECTOR_RULE.count("a and b and c, android") == 2

    def test_rules_are_frozen(self):
        rule = Rule("x", "x")
        with pytest.raises(dataclasses.FrozenInstanceError):
            rule.tag = "y"
        assert rule == Rule("x", "x")


class TestTable:
    def test_match_rules_keeps_table_order(self):
        matched = match_rules("secure payment with oauth", rules.HIGH_COMPLEXITY_RULES)
        assert [rule.tag for rule in matched] == ["security", "payment", "oauth"]

    def test_total_weight(self):
        assert total_weight([Rule("a", "a", weight=2), Rule("b", "b", weight=3)]) == 5

    def test_all_patterns_compile(self):
        for value in vars(rules).values():
            if isinstance(value, Rule):
                assert isinstance(value._compiled, re.Pattern)

    def test_research_categories_unique(self):
        categories = [entry.category for entry in rules.RESEARCH_RULES]
        assert len(categories) == len(set(categories))

    def test_version_is_set(self):
        assert rules.RULES_VERSION

    def test_complexity_levels_cover_range(self):
        assert rules.COMPLEXITY_LEVELS[-1][0] == 10
