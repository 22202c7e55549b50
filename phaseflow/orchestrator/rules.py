"""Versioned rule table for task classification.

Every free-text signal the classifier, resolver and template selector use
is declared here as a ``pattern -> tag -> weight`` rule, so scoring can be
audited and tested independently of the code that sums it. Bump
RULES_VERSION whenever a pattern or weight changes; classifications record
the version that produced them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

RULES_VERSION = "2024.1"


@dataclass(frozen=True)
class Rule:
    """A single ``pattern -> tag -> weight`` entry."""
    pattern: str
    tag: str
    weight: int = 1
    category: str = ""
    flags: int = re.IGNORECASE
    _compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern, self.flags))

    def matches(self, text: str) -> bool:
        return self._compiled.search(text) is not None

    def count(self, text: str) -> int:
        return len(self._compiled.findall(text))


def match_rules(text: str, rules: Iterable[Rule]) -> list[Rule]:
    """Return the rules whose pattern occurs in text, in table order."""
    return [rule for rule in rules if rule.matches(text)]


def total_weight(rules: Iterable[Rule]) -> int:
    return sum(rule.weight for rule in rules)


# ---------------------------------------------------------------------------
# Complexity
# ---------------------------------------------------------------------------

COMPLEXITY_BASE = 3

# (threshold_minutes, weight): first band exceeded from the top wins
DURATION_BANDS: tuple[tuple[int, int], ...] = ((120, 3), (60, 2), (30, 1))

HIGH_COMPLEXITY_RULES: tuple[Rule, ...] = (
    Rule(r"\bauth\b|\bauthenticat\w*|\bauthoriz\w*", "auth"),
    Rule(r"\bsecurity\b|\bsecure\b", "security"),
    Rule(r"\bpayments?\b", "payment"),
    Rule(r"\breal[- ]?time\b", "real-time"),
    Rule(r"\bwebsockets?\b", "websocket"),
    Rule(r"\boauth\d?\b", "oauth"),
    Rule(r"\bencrypt\w*", "encryption"),
    Rule(r"\bmigrations?\b", "migration"),
    Rule(r"\brefactor\w*", "refactor"),
    Rule(r"\boptimi[sz]ation\b", "optimization"),
    Rule(r"\bperformance\b", "performance"),
)

# HTTP verb followed by a path, e.g. "POST /api/auth/login"
MUTATION_RULE = Rule(r"\b(?:POST|PUT|PATCH|DELETE)\s+/", "mutation", weight=2, flags=0)

EXTERNAL_REFERENCE_RULE = Rule(
    r"\b(?:api|apis|library|libraries|service|services|integration|sdk|third[- ]party)\b",
    "external-reference",
)

AND_CONNECTOR_RULE = Rule(r"\band\b", "and-connector")
THEN_CONNECTOR_RULE = Rule(r"\bthen\b", "then-connector")
AND_THRESHOLD = 2
THEN_THRESHOLD = 1

# score -> level upper bounds
COMPLEXITY_LEVELS: tuple[tuple[int, str], ...] = (
    (3, "Simple"),
    (6, "Moderate"),
    (8, "Complex"),
    (10, "Critical"),
)


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------

RISK_TIER_WEIGHTS: dict[str, int] = {
    "Simple": 0,
    "Moderate": 1,
    "Complex": 2,
    "Critical": 3,
}

RISK_KEYWORD_RULES: tuple[Rule, ...] = (
    Rule(
        r"\bauth\b|\bauthenticat\w*|\bauthoriz\w*|\boauth\d?\b|\bsecurity\b|\bpasswords?\b"
        r"|\bcredentials?\b|\bencrypt\w*|\bpayments?\b|\bbilling\b|\bcredit card\b",
        "security-payment", weight=3, category="security",
    ),
    Rule(
        r"\b(?:api|apis|library|service|sdk|third[- ]party|webhooks?|external)\b",
        "external-dependency", weight=1, category="external",
    ),
    Rule(
        r"\bmigrat\w*|\btransform\w*|\bconvert\w*",
        "migration-transform", weight=2, category="migration",
    ),
)

SENSITIVE_UI_RULE = Rule(
    r"\b(?:checkout|payments?|profile|login|log in|sign[- ]?in)\b",
    "sensitive-ui", weight=1, category="sensitive-ui",
)

RISK_HIGH_THRESHOLD = 6
RISK_MEDIUM_THRESHOLD = 3

LEVEL_MITIGATIONS: dict[str, tuple[str, ...]] = {
    "HIGH": (
        "Require test-first workflow",
        "Add 50% time buffer",
        "Request peer review before merge",
    ),
    "MEDIUM": (
        "Add 25% time buffer",
        "Cover edge cases with tests",
    ),
    "LOW": (),
}

CATEGORY_MITIGATIONS: dict[str, str] = {
    "security": "Review authentication and payment paths for security issues",
    "external": "Mock external dependencies and handle their failures",
    "migration": "Prepare a rollback plan and back up data before migrating",
    "sensitive-ui": "Verify the sensitive user flow end-to-end",
}


# ---------------------------------------------------------------------------
# TDD
# ---------------------------------------------------------------------------

TDD_COMPLEXITY_THRESHOLD = 7


# ---------------------------------------------------------------------------
# Research decision table (first match wins)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResearchRule:
    category: str
    rule: Rule
    estimated_minutes: int
    query_templates: tuple[str, ...]
    skip_when_ux_plan: bool = False
    ui_only: bool = False
    needs_missing_library: bool = False


RESEARCH_RULES: tuple[ResearchRule, ...] = (
    ResearchRule(
        "new-technology",
        Rule(r"\b(?:new|unfamiliar|latest|experimental)\s+(?:library|framework|technology|sdk|tool)\b", "new-technology"),
        20,
        ("{subject} getting started guide", "{subject} common pitfalls"),
    ),
    ResearchRule(
        "best-practice",
        Rule(r"\bbest[- ]practices?\b|\brecommended (?:way|approach|pattern)\b|\bconventions?\b", "best-practice"),
        10,
        ("{subject} best practices", "{subject} recommended patterns"),
    ),
    ResearchRule(
        "integration",
        Rule(r"\bintegrat\w*|\bthird[- ]party\b|\bwebhooks?\b|\boauth\d?\b|\bsdk\b|\bstripe\b|\bpaypal\b", "integration"),
        15,
        ("{subject} integration guide", "{subject} API reference"),
    ),
    ResearchRule(
        "performance",
        Rule(r"\bperformance\b|\boptimi[sz]\w*|\blatency\b|\bcach(?:e|ing)\b|\bscal(?:e|ing|ability)\b", "performance"),
        15,
        ("{subject} performance optimization", "{subject} profiling techniques"),
    ),
    ResearchRule(
        "migration",
        Rule(r"\bmigrat\w*|\bupgrade\w*|\bport(?:ing)? to\b", "migration"),
        20,
        ("{subject} migration guide", "{subject} breaking changes"),
    ),
    ResearchRule(
        "ux-pattern",
        Rule(r"\bux\b|\buser experience\b|\bonboarding\b|\bwizard\b|\bdashboard\b|\bnavigation\b|\buser flow\b", "ux-pattern"),
        10,
        ("{subject} UX patterns", "{subject} user flow examples"),
        skip_when_ux_plan=True,
    ),
    ResearchRule(
        "accessibility",
        Rule(r"\baccessib\w*|\ba11y\b|\bwcag\b|\bscreen reader\b|\baria\b", "accessibility"),
        10,
        ("{subject} accessibility guidelines", "{subject} WCAG checklist"),
        skip_when_ux_plan=True,
    ),
    ResearchRule(
        "missing-component-library",
        Rule(r"\b(?:components?|widgets?|modals?|forms?|tables?|date ?pickers?)\b", "missing-component-library"),
        10,
        ("{subject} component library options", "{subject} accessible component examples"),
        ui_only=True,
        needs_missing_library=True,
    ),
    ResearchRule(
        "design-guidelines",
        Rule(r"\bdesign (?:guidelines?|system)\b|\bstyle ?guide\b|\bbrand\w*|\blook and feel\b|\btheme\w*", "design-guidelines"),
        10,
        ("{subject} design guidelines", "{subject} visual design examples"),
    ),
)

# Nouns that name a page or component; the word before them is the subject
PAGE_COMPONENT_NOUNS = (
    "page", "form", "screen", "component", "modal", "view", "dashboard",
    "widget", "dialog", "panel", "table", "list", "card", "menu", "flow",
)


# ---------------------------------------------------------------------------
# Subtask expansion
# ---------------------------------------------------------------------------

SUBTASK_COMPLEXITY_THRESHOLD = 7
SUBTASK_VERB_THRESHOLD = 2
SUBTASK_MINUTES_THRESHOLD = 90
SUBTASK_AND_THRESHOLD = 2

ACTION_VERBS = frozenset({
    "create", "build", "implement", "add", "update", "delete", "remove",
    "integrate", "validate", "test", "deploy", "configure", "refactor",
    "migrate", "connect", "design", "fetch", "display", "send", "store",
    "render", "edit", "list", "write",
})

UI_NOUN_RULE = Rule(
    r"\b(?:ui|form|page|screen|button|modal|component|view|dashboard|frontend|layout)s?\b",
    "ui-noun",
)
API_NOUN_RULE = Rule(
    r"\b(?:api|endpoint|route|server|backend|request|rest|graphql)s?\b",
    "api-noun",
)
CRUD_RULE = Rule(r"\bcrud\b", "crud")
CRUD_VERB_RULES: tuple[Rule, ...] = (
    Rule(r"\bcreate\w*|\badd\b", "crud-create"),
    Rule(r"\bread\b|\blist\w*|\bview\w*|\bget\b|\bfetch\w*", "crud-read"),
    Rule(r"\bupdate\w*|\bedit\w*|\bmodif\w*", "crud-update"),
    Rule(r"\bdelete\w*|\bremove\w*", "crud-delete"),
)

# Capitalized words that are never domain entities
NON_ENTITY_WORDS = frozenset({
    "API", "UI", "UX", "CRUD", "REST", "HTTP", "JSON", "SQL", "CLI", "URL", "CSS", "HTML",
    "POST", "PUT", "PATCH", "DELETE", "GET", "TDD", "E2E", "The", "A", "An", "And",
    "Then", "With", "For", "To", "Of", "In", "On", "Add", "Build", "Create", "Implement",
    "Update", "Fix", "Write", "Make", "Set", "Use", "Allow", "Let", "Ensure", "Connect",
    "Integrate", "Refactor", "Remove", "Delete", "Test", "Design", "Display", "Show",
    "Edit", "List", "Migrate",
})


# ---------------------------------------------------------------------------
# Priority
# ---------------------------------------------------------------------------

PRIORITY_BASE = 50
BUSINESS_CRITICAL_RULE = Rule(r"\b(?:login|checkout|payments?|core|critical)\b", "business-critical", weight=30)
PRIORITY_PER_BLOCKED = 10
PRIORITY_UNBLOCKED = 20
PRIORITY_RISK_WEIGHTS: dict[str, int] = {"HIGH": 15, "MEDIUM": 5, "LOW": 0}
PRIORITY_QUICK_WIN = 10
PRIORITY_QUICK_WIN_MAX_COMPLEXITY = 3
PRIORITY_UI_BONUS = 10

PRIORITY_LABELS: tuple[tuple[int, str], ...] = (
    (80, "CRITICAL"),
    (60, "HIGH"),
    (40, "MEDIUM"),
    (0, "LOW"),
)


# ---------------------------------------------------------------------------
# Dependency resolution
# ---------------------------------------------------------------------------

API_REFERENCE_RULE = Rule(r"\bapi\b|\bendpoints?\b|/api/", "api-reference")
CONNECT_RULE = Rule(r"\bconnect\w*|\bintegrat\w*|\blink\w*", "connect")

STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "onto", "then",
    "when", "where", "which", "will", "should", "must", "can", "each", "all",
    "new", "its", "our", "their", "your", "using", "via", "per", "has", "have",
    "are", "was", "were", "been", "being", "not", "but", "only", "also", "any",
    "some", "more", "most", "other", "such", "than", "too", "very", "just",
})

# Generic technical words that never identify a shared domain entity
GENERIC_NOUNS = frozenset({
    "api", "apis", "endpoint", "endpoints", "route", "routes", "form", "forms",
    "page", "pages", "screen", "screens", "component", "components", "view",
    "views", "ui", "ux", "test", "tests", "testing", "schema", "schemas",
    "table", "tables", "data", "model", "models", "database", "db", "backend",
    "frontend", "server", "client", "request", "requests", "response",
    "responses", "service", "services", "script", "scripts", "cli", "tool",
    "tools", "post", "put", "patch", "delete", "get", "http", "rest", "json",
    "crud", "feature", "features", "support", "logic", "flow", "layer",
    "field", "fields", "button", "buttons", "modal", "dashboard", "e2e", "unit",
    "integration", "suite", "coverage", "spec", "specs",
})


# ---------------------------------------------------------------------------
# Template selection
# ---------------------------------------------------------------------------

BUG_FIX_RULE = Rule(r"\b(?:fix|bug|issue|error|crash)(?:es|ed|ing|s)?\b", "bug-fix")
REFACTOR_RULE = Rule(r"\b(?:refactor|extract|improve|optimi[sz]e)(?:s|d|ing|ment|ments)?\b", "refactor")
SCRIPT_RULE = Rule(r"\b(?:script|cli|command|tool|migrate)(?:s|d)?\b", "script")
