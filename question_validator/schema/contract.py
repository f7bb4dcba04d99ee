"""Canonical contract for a coding-question record.

The pydantic models below are the single source of truth for the record
shape.  They run in strict mode (no coercion: ``"5"`` is not an integer)
and forbid unknown keys at every level, so a record is either exactly
this shape or it is reported as invalid.

Top-level keys
--------------
_id            : storage-assigned identifier (optional, preserved verbatim)
question_id    : non-empty string
title          : non-empty string
difficulty     : exactly "Easy", "Medium" or "Hard"
slug           : lowercase words joined by single hyphens
topic_tags     : non-empty list of strings
content        : non-empty string
constraints    : non-empty list of strings
testCases      : non-empty list of TestCase
starterCode    : LanguageBundle
solutionCode   : LanguageBundle
inputFormat    : non-empty string (must contain a ``` code fence)
outputFormat   : non-empty string
"""
from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DIFFICULTIES: tuple[str, ...] = ("Easy", "Medium", "Hard")
LANGUAGES: tuple[str, ...] = ("c", "cpp", "java", "javascript", "python")
SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"
SLUG_RE = re.compile(SLUG_PATTERN)
CODE_FENCE = "```"

STORAGE_ID_FIELD = "_id"
QUESTION_ID_FIELD = "question_id"


class _StrictModel(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")


class TestCase(_StrictModel):
    id: int = Field(gt=0)
    input: str = Field(min_length=1)
    expectedOutput: str = Field(min_length=1)
    description: str = Field(min_length=1)
    original_input: str
    original_output: str


class LanguageBundle(_StrictModel):
    c: str = Field(min_length=1)
    cpp: str = Field(min_length=1)
    java: str = Field(min_length=1)
    javascript: str = Field(min_length=1)
    python: str = Field(min_length=1)


class CodingQuestion(_StrictModel):
    storage_id: Any = Field(default=None, alias=STORAGE_ID_FIELD)
    question_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    difficulty: Literal["Easy", "Medium", "Hard"]
    slug: str = Field(pattern=SLUG_PATTERN)
    topic_tags: list[str] = Field(min_length=1)
    content: str = Field(min_length=1)
    constraints: list[str] = Field(min_length=1)
    testCases: list[TestCase] = Field(min_length=1)
    starterCode: LanguageBundle
    solutionCode: LanguageBundle
    inputFormat: str = Field(min_length=1)
    outputFormat: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Human-readable contract, embedded verbatim in repair requests
# ---------------------------------------------------------------------------

CONTRACT_DEFINITION = """{
  "_id": "storage identifier (PRESERVE EXACTLY)",
  "question_id": "string (PRESERVE EXACTLY)",
  "title": "string (required)",
  "difficulty": "Easy" | "Medium" | "Hard" (literal type, case-sensitive),
  "slug": "lowercase-with-hyphens",
  "topic_tags": ["string"] (array, min 1 item),
  "content": "string (plain text, no markdown)",
  "constraints": ["string"] (array, min 1 item),
  "testCases": [
    {
      "id": number (positive integer),
      "input": "string (stdin format: e.g., '5\\n1 2 3 4 5')",
      "expectedOutput": "string (stdout format: e.g., '15')",
      "description": "string",
      "original_input": "string",
      "original_output": "string"
    }
  ] (array, min 1 item),
  "starterCode": {
    "c": "string (non-empty)",
    "cpp": "string (non-empty)",
    "java": "string (non-empty)",
    "javascript": "string (non-empty)",
    "python": "string (non-empty)"
  },
  "solutionCode": {
    "c": "string (non-empty)",
    "cpp": "string (non-empty)",
    "java": "string (non-empty)",
    "javascript": "string (non-empty)",
    "python": "string (non-empty)"
  },
  "inputFormat": "string (should contain code blocks with ```)",
  "outputFormat": "string (descriptive text)"
}"""
