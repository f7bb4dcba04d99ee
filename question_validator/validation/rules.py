"""Semantic rules applied after the structural pass succeeds.

These checks assume the record already matches the contract (every key
present with the right type), so they index straight into it.

stdin/stdout heuristic
----------------------
Test case input and expected output must read like console I/O, not like
source-code literals.  Evidence of a violation:

- input           : contains ``=``, or contains both ``[`` and ``]``
- expectedOutput  : contains ``=``, or contains ``[``, ``]`` and ``,``

So ``"nums = [3,5]"`` is rejected while ``"2\\n3 5"`` / ``"8"`` passes.
"""
from __future__ import annotations

from typing import Any, Mapping

from question_validator.schema.contract import CODE_FENCE
from question_validator.schema.errors import ValidationError


def input_looks_structured(text: str) -> bool:
    return "=" in text or ("[" in text and "]" in text)


def output_looks_structured(text: str) -> bool:
    return "=" in text or ("[" in text and "]" in text and "," in text)


def check_test_case_format(index: int, test_case: Mapping[str, Any]) -> list[ValidationError]:
    errors: list[ValidationError] = []
    case_id = test_case.get("id")

    if input_looks_structured(test_case["input"]):
        errors.append(
            ValidationError.invalid_format(
                f"testCases.{index}.input",
                f"Test case {case_id}: Input should be in stdin format, not variable assignment format",
                test_case["input"],
            )
        )

    if output_looks_structured(test_case["expectedOutput"]):
        errors.append(
            ValidationError.invalid_format(
                f"testCases.{index}.expectedOutput",
                f"Test case {case_id}: Expected output should be in stdout format, not data structure format",
                test_case["expectedOutput"],
            )
        )

    return errors


def check_input_format(input_format: str) -> list[ValidationError]:
    if CODE_FENCE in input_format:
        return []
    return [
        ValidationError.invalid_format(
            "inputFormat",
            f"inputFormat should contain code blocks with {CODE_FENCE} markers",
        )
    ]


def run_semantic_checks(record: Mapping[str, Any]) -> list[ValidationError]:
    """Run every semantic rule against a structurally valid record."""
    errors: list[ValidationError] = []
    for index, test_case in enumerate(record["testCases"]):
        errors.extend(check_test_case_format(index, test_case))
    errors.extend(check_input_format(record["inputFormat"]))
    return errors
