"""Schema validator for coding-question records.

``SchemaValidator.validate()`` never raises.  It runs two passes:

1. Structural: the strict pydantic contract.  Every pydantic error is
   mapped onto the closed :class:`ErrorKind` taxonomy.
2. Semantic: only when the structural pass is clean, the rules in
   :mod:`question_validator.validation.rules`.  Skipping them on a broken
   record avoids cascading noise.

Any unexpected failure inside either pass becomes a single synthetic
``INVALID_VALUE`` error on the ``document`` field.
"""
from __future__ import annotations

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from question_validator.schema.contract import DIFFICULTIES, CodingQuestion
from question_validator.schema.errors import ValidationError
from question_validator.schema.records import ValidatedRecord, storage_id_of
from question_validator.validation.rules import run_semantic_checks

DOCUMENT_FIELD = "document"

_EXPECTED_TYPE_NAMES: dict[str, str] = {
    "string_type": "string",
    "int_type": "integer",
    "float_type": "number",
    "bool_type": "boolean",
    "list_type": "array",
    "dict_type": "object",
    "model_type": "object",
    "model_attributes_type": "object",
}


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[ValidationError, ...] = ()
    document_id: str | None = None
    record: ValidatedRecord | None = field(default=None, compare=False)


@dataclass
class BatchSummary:
    total: int
    valid: int
    invalid: int
    errors_by_field: dict[str, int]


class SchemaValidator:
    """Validate records against the contract plus the semantic rules."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.log = logger or logging.getLogger(__name__)

    def validate(self, candidate: Any) -> ValidationResult:
        document_id: str | None = None
        try:
            document_id = storage_id_of(candidate)

            errors = self._structural_errors(candidate)
            if not errors:
                errors = run_semantic_checks(candidate)

            if errors:
                self.log.debug(
                    "Validation failed for document %s (%d errors)", document_id, len(errors)
                )
                return ValidationResult(False, tuple(errors), document_id)

            return ValidationResult(
                True,
                (),
                document_id,
                ValidatedRecord(copy.deepcopy(dict(candidate))),
            )
        except Exception as exc:  # noqa: BLE001 - validate() must never raise
            self.log.error("Validation error for document %s: %s", document_id, exc)
            return ValidationResult(
                False,
                (
                    ValidationError.invalid_value(
                        DOCUMENT_FIELD, f"Critical validation error: {exc}"
                    ),
                ),
                document_id,
            )

    def validate_batch(self, candidates: Iterable[Any]) -> list[ValidationResult]:
        return [self.validate(candidate) for candidate in candidates]

    @staticmethod
    def batch_summary(results: Iterable[ValidationResult]) -> BatchSummary:
        results = list(results)
        counts: Counter[str] = Counter()
        for result in results:
            counts.update(error.field for error in result.errors)
        valid = sum(1 for result in results if result.is_valid)
        return BatchSummary(
            total=len(results),
            valid=valid,
            invalid=len(results) - valid,
            errors_by_field=dict(counts),
        )

    # -- structural pass ----------------------------------------------------

    def _structural_errors(self, candidate: Any) -> list[ValidationError]:
        if not isinstance(candidate, Mapping):
            return [ValidationError.invalid_type(DOCUMENT_FIELD, "object", candidate)]

        try:
            CodingQuestion.model_validate(dict(candidate))
        except PydanticValidationError as exc:
            return [self._convert(error) for error in exc.errors()]
        return []

    @staticmethod
    def _convert(error: Mapping[str, Any]) -> ValidationError:
        path = ".".join(str(part) for part in error.get("loc", ())) or DOCUMENT_FIELD
        error_type = error.get("type", "")
        message = error.get("msg", "invalid value")
        value = error.get("input")

        if error_type == "missing":
            return ValidationError.missing_field(path)
        if error_type == "extra_forbidden":
            return ValidationError.extra_field(path)
        if error_type in _EXPECTED_TYPE_NAMES:
            return ValidationError.invalid_type(path, _EXPECTED_TYPE_NAMES[error_type], value)
        if error_type in ("literal_error", "enum"):
            allowed = ", ".join(DIFFICULTIES) if path == "difficulty" else error.get("ctx", {}).get("expected", "")
            return ValidationError.invalid_value(path, f"Must be one of: {allowed}", value)
        if error_type == "too_short" and isinstance(value, (list, tuple)):
            return ValidationError.empty_array(path)
        if error_type == "string_too_short":
            return ValidationError.invalid_value(path, "must not be empty", value)
        if error_type == "string_pattern_mismatch":
            if path == "slug":
                message = 'Slug must be lowercase with hyphens (e.g., "two-sum")'
            return ValidationError.invalid_format(path, message, value)
        return ValidationError.invalid_value(path, message, value)
