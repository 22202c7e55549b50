"""Response parsing utilities for worker output.

Extracts code blocks, JSON, test counts and the structured result
contract from raw worker responses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import ValidationError

from phaseflow.core.models import StructuredResult

_STRUCTURED_KEYS = {"completed", "files_touched", "test_results", "readiness_reported"}
_PASSED_PATTERN = re.compile(r"(\d+)\s+(?:tests?\s+)?passed", re.IGNORECASE)
_FAILED_PATTERN = re.compile(r"(\d+)\s+(?:tests?\s+)?failed", re.IGNORECASE)
_FILE_VERB_PATTERN = re.compile(r"\b(?:created|modified|updated|wrote|added|changed|edited)\b", re.IGNORECASE)
_FILE_PATH_PATTERN = re.compile(r"(?<![\w/.-])((?:[\w-]+/)*[\w-]+\.[A-Za-z][A-Za-z0-9]{0,5})\b")


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from worker output.

    Args:
        text: Raw worker response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}\s*\n(.*?)```"
    else:
        pattern = r"```(?:[\w+-]+)?\s*\n(.*?)```"

    matches = re.findall(pattern, text, re.DOTALL)
    return [m.strip() for m in matches]


def extract_json_block(text: str) -> Optional[dict[str, Any]]:
    """Extract and parse the first JSON object from worker output."""
    blocks = extract_code_blocks(text, "json")
    if blocks:
        try:
            parsed = json.loads(blocks[0])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    # Try parsing the whole response as JSON
    try:
        parsed = json.loads(text.strip())
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_structured_result(text: str) -> Optional[StructuredResult]:
    """Parse the structured result contract out of a text response, if present."""
    payload = extract_json_block(text)
    if not payload or not (_STRUCTURED_KEYS & payload.keys()):
        return None
    try:
        return StructuredResult(**{k: v for k, v in payload.items() if k in StructuredResult.model_fields})
    except ValidationError:
        return None


def extract_file_paths(text: str) -> list[str]:
    """File paths named on 'created/modified/...' lines, in first-seen order."""
    paths: list[str] = []
    for line in text.splitlines():
        if not _FILE_VERB_PATTERN.search(line):
            continue
        for path in _FILE_PATH_PATTERN.findall(line):
            if path not in paths:
                paths.append(path)
    return paths


def extract_test_counts(text: str) -> Optional[tuple[int, int]]:
    """Return (passed, failed) counts reported in text, or None if none are reported."""
    passed = _PASSED_PATTERN.findall(text)
    failed = _FAILED_PATTERN.findall(text)
    if not passed and not failed:
        return None
    return (
        sum(int(n) for n in passed),
        sum(int(n) for n in failed),
    )


def normalize_error_signature(error_text: str) -> str:
    """Normalize a failure message for deduplication.

    Strips file paths, line numbers, and timestamps so that
    the same logical failure produces the same signature.
    """
    sig = error_text.strip()

    # Remove timestamps (before line numbers, since :HH:MM:SS overlaps with :N:N)
    sig = re.sub(r'\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}[.\d]*\w*', '<TIMESTAMP>', sig)

    # Remove file paths (Unix and Windows)
    sig = re.sub(r'(/[\w./-]+|\w:\\[\w.\\-]+)', '<PATH>', sig)

    # Remove line numbers
    sig = re.sub(r'line \d+', 'line <N>', sig, flags=re.IGNORECASE)
    sig = re.sub(r':\d+:\d+', ':<N>:<N>', sig)

    # Collapse whitespace
    sig = re.sub(r'\s+', ' ', sig).strip()

    return sig
