"""Repair request template and reply parser.

``build_correction_prompt`` is a pure function of (record, errors): the
same inputs always produce the same text, so it is unit-testable without
a repair service.  ``parse_correction_response`` only recovers a JSON
object from the reply; whether that object is a valid record is the
validator's call.
"""
from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping

from question_validator.schema.contract import CONTRACT_DEFINITION
from question_validator.schema.errors import ValidationError

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are a data correction specialist for coding-question records.  "
    "You ONLY output valid JSON.  No prose, no markdown fences, no commentary."
)

# ---------------------------------------------------------------------------
# CORRECTION_REQUEST
# ---------------------------------------------------------------------------

CORRECTION_REQUEST = (
    "You are a data correction specialist. Your task is to fix a coding question "
    "document that has validation errors.\n"
    "\n"
    "## CRITICAL REQUIREMENTS:\n"
    "1. Return ONLY valid JSON - no markdown, no explanations, no code blocks\n"
    "2. PRESERVE the _id field exactly as provided\n"
    "3. PRESERVE the question_id field exactly as provided\n"
    "4. Fix ALL validation errors listed below\n"
    "5. Ensure test cases use stdin/stdout format (NOT variable assignment format)\n"
    "6. All 5 programming languages (c, cpp, java, javascript, python) must have non-empty code\n"
    "7. difficulty must be EXACTLY one of: \"Easy\", \"Medium\", or \"Hard\"\n"
    "8. slug must be lowercase-with-hyphens\n"
    "\n"
    "## VALIDATION ERRORS TO FIX:\n"
    "{error_lines}\n"
    "\n"
    "## SCHEMA DEFINITION:\n"
    "{contract}\n"
    "\n"
    "## TEST CASE FORMAT REQUIREMENTS:\n"
    "- Input must be in stdin format (line-by-line input as user would type)\n"
    "- Expected output must be in stdout format (what program prints to console)\n"
    "- WRONG: \"input\": \"nums = [3,5]\", \"expectedOutput\": \"[3,5]\"\n"
    "- CORRECT: \"input\": \"2\\n3 5\", \"expectedOutput\": \"8\"\n"
    "\n"
    "## ORIGINAL DOCUMENT:\n"
    "{document}\n"
    "\n"
    "## YOUR TASK:\n"
    "Fix all validation errors in the document above. Return the corrected document "
    "as pure JSON (no markdown, no explanations).\n"
    "\n"
    "RESPOND WITH ONLY THE CORRECTED JSON DOCUMENT:"
)

_LEADING_FENCE = re.compile(r"^```[\w-]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```$")


class ResponseParseError(ValueError):
    """The repair reply could not be turned into a JSON object."""


def format_error_lines(errors: Iterable[ValidationError]) -> str:
    return "\n".join(
        f'{index}. Field: "{error.field}" - {error.message}'
        for index, error in enumerate(errors, start=1)
    )


def serialize_record(record: Mapping[str, Any]) -> str:
    return json.dumps(dict(record), indent=2, ensure_ascii=False, default=str)


def build_correction_prompt(record: Mapping[str, Any], errors: Iterable[ValidationError]) -> str:
    """Render the repair request for one record and its validation errors."""
    return CORRECTION_REQUEST.format(
        error_lines=format_error_lines(errors),
        contract=CONTRACT_DEFINITION,
        document=serialize_record(record),
    )


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", cleaned, count=1), count=1)
    return cleaned


def parse_correction_response(text: str) -> dict[str, Any]:
    """Recover the candidate record from a repair reply.

    Raises
    ------
    ResponseParseError
        If the unwrapped text is not JSON, or is JSON but not an object.
    """
    try:
        parsed = json.loads(strip_code_fence(text))
    except (TypeError, ValueError) as exc:
        raise ResponseParseError(f"Failed to parse repair response: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ResponseParseError(
            f"Failed to parse repair response: expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed
