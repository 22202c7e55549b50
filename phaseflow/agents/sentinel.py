"""Response sentinel — quality gate for worker responses.

Checks every worker response in two passes:

1. Pre-work validation — role-specific markers (e.g. a readiness report for
   content-producing roles) must be present. Missing → ValidationFailure.
2. Quality validation — a completion marker; created/modified files for
   content-producing roles; code blocks for code-producing roles; pass/fail
   counts for the tester; no unresolved error without a fixed/resolved
   token. Any miss → QualityFailure.

The structured result contract is preferred when the worker supplies it
(either as ``WorkerResponse.structured`` or a JSON payload in the text);
the text heuristics remain as the fallback for plain-text workers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from phaseflow.core.exceptions import QualityFailure, ValidationFailure
from phaseflow.core.models import ResponseVerdict, StructuredResult, WorkerResponse
from phaseflow.llm.response_parser import extract_code_blocks, extract_test_counts, parse_structured_result

logger = logging.getLogger("phaseflow.agent.sentinel")


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------

READINESS_MARKER = r"\b(?:readiness|pre-work)\s+(?:report|check(?:list)?)\b"
ROOT_CAUSE_MARKER = r"\broot[- ]cause\b"
TEST_PLAN_MARKER = r"\btest\s+plan\b"

COMPLETION_PATTERN = re.compile(
    r"\b(?:phase|task|work)\s+complete(?:d)?\b|\bstatus:\s*(?:complete(?:d)?|done)\b|\ball done\b|✅",
    re.IGNORECASE,
)
FILE_REFERENCE_PATTERN = re.compile(
    r"\b(?:created|modified|updated|wrote|added|changed|edited)\b[^\n]*?[\w./-]+\.[A-Za-z0-9]{1,6}\b",
    re.IGNORECASE,
)
UNRESOLVED_ERROR_PATTERN = re.compile(
    r"\b(?:Error|Exception):|Traceback \(most recent call last\)|\bunresolved errors?\b|\bfailed to \w+",
    re.IGNORECASE,
)
RESOLVED_PATTERN = re.compile(r"\b(?:fixed|resolved)\b", re.IGNORECASE)


@dataclass(frozen=True)
class RoleRequirements:
    required_markers: tuple[tuple[str, str], ...] = ()  # (label, regex)
    produces_files: bool = False
    produces_code: bool = False
    reports_tests: bool = False


_BUILDER = RoleRequirements(
    required_markers=(("readiness report", READINESS_MARKER),),
    produces_files=True,
    produces_code=True,
)

ROLE_REQUIREMENTS: dict[str, RoleRequirements] = {
    "ui-builder": _BUILDER,
    "api-builder": _BUILDER,
    "schema-builder": _BUILDER,
    "script-builder": _BUILDER,
    "refactorer": _BUILDER,
    "debugger": RoleRequirements(
        required_markers=(("root cause", ROOT_CAUSE_MARKER),),
        produces_files=True,
        produces_code=True,
    ),
    "tester": RoleRequirements(
        required_markers=(("test plan", TEST_PLAN_MARKER),),
        reports_tests=True,
    ),
    "integrator": RoleRequirements(),
    "reviewer": RoleRequirements(),
}

DEFAULT_REQUIREMENTS = RoleRequirements()


def requirements_for(role: str) -> RoleRequirements:
    return ROLE_REQUIREMENTS.get(role, DEFAULT_REQUIREMENTS)


class ResponseSentinel:
    """Audits worker responses against role requirements."""

    def __init__(self, role_requirements: Optional[dict[str, RoleRequirements]] = None):
        self.role_requirements = dict(role_requirements or ROLE_REQUIREMENTS)

    def _requirements(self, role: str) -> RoleRequirements:
        return self.role_requirements.get(role, DEFAULT_REQUIREMENTS)

    @staticmethod
    def structured_of(response: WorkerResponse) -> Optional[StructuredResult]:
        if response.structured is not None:
            return response.structured
        return parse_structured_result(response.content)

    def check_prework(self, response: WorkerResponse, role: str) -> list[str]:
        """Return the missing pre-work markers (empty when valid)."""
        reqs = self._requirements(role)
        structured = self.structured_of(response)
        if structured is not None and structured.readiness_reported:
            return []
        missing: list[str] = []
        for label, pattern in reqs.required_markers:
            if not re.search(pattern, response.content, re.IGNORECASE):
                missing.append(f"missing required pre-work marker: {label}")
        return missing

    def check_quality(self, response: WorkerResponse, role: str) -> list[str]:
        """Return the quality problems of a response (empty when it passes)."""
        reqs = self._requirements(role)
        structured = self.structured_of(response)
        text = response.content
        problems: list[str] = []

        if structured is not None:
            if not structured.completed:
                problems.append("response does not report the phase as completed")
            if reqs.produces_files and not structured.files_touched:
                problems.append("no created or modified files reported")
            if reqs.reports_tests:
                if structured.test_results is None:
                    problems.append("no test pass/fail counts reported")
                elif structured.test_results.failed > 0:
                    problems.append(f"{structured.test_results.failed} tests failing")
        else:
            if not COMPLETION_PATTERN.search(text):
                problems.append("missing completion marker")
            if reqs.produces_files and not FILE_REFERENCE_PATTERN.search(text):
                problems.append("no created or modified files mentioned")
            if reqs.produces_code and not extract_code_blocks(text):
                problems.append("no code blocks in response")
            if reqs.reports_tests:
                counts = extract_test_counts(text)
                if counts is None:
                    problems.append("no test pass/fail counts reported")
                elif counts[1] > 0:
                    problems.append(f"{counts[1]} tests failing")

        if UNRESOLVED_ERROR_PATTERN.search(text) and not RESOLVED_PATTERN.search(text):
            problems.append("unresolved error reported without a fix")
        return problems

    def enforce(self, response: WorkerResponse, role: str) -> None:
        """Raise on the first failing pass.

        Raises:
            ValidationFailure: Required pre-work markers are missing.
            QualityFailure: The response fails the quality checks.
        """
        if response.error:
            raise QualityFailure([f"worker invocation failed: {response.error}"])
        missing = self.check_prework(response, role)
        if missing:
            raise ValidationFailure(missing)
        problems = self.check_quality(response, role)
        if problems:
            raise QualityFailure(problems)

    def audit(self, response: WorkerResponse, role: str) -> ResponseVerdict:
        structured = self.structured_of(response) is not None
        try:
            self.enforce(response, role)
        except ValidationFailure as e:
            logger.info("Pre-work validation failed for %s: %s", role, e)
            return ResponseVerdict(approved=False, failure_kind="validation", reasons=e.reasons, structured=structured)
        except QualityFailure as e:
            logger.info("Quality validation failed for %s: %s", role, e)
            return ResponseVerdict(approved=False, failure_kind="quality", reasons=e.reasons, structured=structured)
        return ResponseVerdict(approved=True, structured=structured)
