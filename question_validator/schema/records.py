"""Raw versus validated record representations.

``RawRecord`` is whatever mapping came out of the store or the repair
service; nothing about its shape is trusted.  ``ValidatedRecord`` is only
ever built by :class:`~question_validator.validation.validator.SchemaValidator`
after a clean validation pass, and it is the only type the store's replace
operation accepts.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Mapping

from question_validator.schema.contract import QUESTION_ID_FIELD, STORAGE_ID_FIELD

RawRecord = Mapping[str, Any]


def storage_id_of(record: Any) -> str | None:
    """Return the storage identifier as a string, or ``None`` when absent."""
    if not isinstance(record, Mapping):
        return None
    value = record.get(STORAGE_ID_FIELD)
    if value is None or value == "":
        return None
    return str(value)


def field_of(record: Any, key: str) -> Any:
    if not isinstance(record, Mapping):
        return None
    return record.get(key)


@dataclass(frozen=True)
class ValidatedRecord:
    data: Mapping[str, Any]

    @property
    def storage_id(self) -> str | None:
        return storage_id_of(self.data)

    @property
    def question_id(self) -> str:
        return self.data[QUESTION_ID_FIELD]

    @property
    def slug(self) -> str:
        return self.data["slug"]

    @property
    def title(self) -> str:
        return self.data["title"]

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.data))

    def without_storage_id(self) -> dict[str, Any]:
        """The replacement payload: every field except the storage identifier."""
        payload = self.to_dict()
        payload.pop(STORAGE_ID_FIELD, None)
        return payload
