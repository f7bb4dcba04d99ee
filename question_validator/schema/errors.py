"""Validation error taxonomy shared by the validator, queue payloads and reports."""
from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_FORMAT = "INVALID_FORMAT"
    EMPTY_ARRAY = "EMPTY_ARRAY"
    EXTRA_FIELD = "EXTRA_FIELD"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"


_MISSING = object()


@dataclass(frozen=True)
class ValidationError:
    """One violation of the record contract.

    ``value`` carries the offending value for diagnostics only; it is
    omitted from ``to_dict()`` when absent.
    """

    field: str
    message: str
    kind: ErrorKind
    value: Any = dataclass_field(default=_MISSING, compare=False)

    @property
    def has_value(self) -> bool:
        return self.value is not _MISSING

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "message": self.message,
            "code": self.kind.value,
        }
        if self.has_value:
            data["value"] = self.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationError:
        kind_raw = data.get("code") or data.get("kind") or ErrorKind.INVALID_VALUE.value
        try:
            kind = ErrorKind(kind_raw)
        except ValueError:
            kind = ErrorKind.INVALID_VALUE
        return cls(
            field=str(data.get("field", "unknown")),
            message=str(data.get("message", "No message")),
            kind=kind,
            value=data["value"] if "value" in data else _MISSING,
        )

    # -- factories ----------------------------------------------------------

    @classmethod
    def missing_field(cls, field_path: str) -> ValidationError:
        return cls(field_path, f'Required field "{field_path}" is missing', ErrorKind.MISSING_FIELD)

    @classmethod
    def invalid_type(cls, field_path: str, expected: str, actual: Any) -> ValidationError:
        return cls(
            field_path,
            f'Field "{field_path}" has invalid type. Expected {expected}, got {_type_name(actual)}',
            ErrorKind.INVALID_TYPE,
            actual,
        )

    @classmethod
    def invalid_value(cls, field_path: str, message: str, value: Any = _MISSING) -> ValidationError:
        return cls(field_path, f'Field "{field_path}": {message}', ErrorKind.INVALID_VALUE, value)

    @classmethod
    def invalid_format(cls, field_path: str, message: str, value: Any = _MISSING) -> ValidationError:
        return cls(field_path, f'Field "{field_path}": {message}', ErrorKind.INVALID_FORMAT, value)

    @classmethod
    def empty_array(cls, field_path: str) -> ValidationError:
        return cls(field_path, f'Array field "{field_path}" must not be empty', ErrorKind.EMPTY_ARRAY)

    @classmethod
    def extra_field(cls, field_path: str) -> ValidationError:
        return cls(field_path, f'Extra field "{field_path}" not allowed in schema', ErrorKind.EXTRA_FIELD)

    @classmethod
    def constraint_violation(cls, field_path: str, message: str) -> ValidationError:
        return cls(
            field_path,
            f'Constraint violation in "{field_path}": {message}',
            ErrorKind.CONSTRAINT_VIOLATION,
        )


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def errors_to_dicts(errors: list[ValidationError] | tuple[ValidationError, ...]) -> list[dict[str, Any]]:
    return [error.to_dict() for error in errors]


def errors_from_dicts(items: list[dict[str, Any]] | None) -> list[ValidationError]:
    return [ValidationError.from_dict(item) for item in items or []]
