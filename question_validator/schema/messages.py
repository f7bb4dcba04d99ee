"""Queue payload exchanged between the scanner and the correction worker."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from question_validator.schema.errors import ValidationError, errors_from_dicts, errors_to_dicts


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class WorkItem:
    """One invalid record waiting for repair.

    ``retry_count`` mirrors the queue's persisted attempt counter; the
    queue rewrites it after every failed attempt.
    """

    document_id: str
    failed_document: dict[str, Any]
    validation_errors: tuple[ValidationError, ...]
    timestamp: str = field(default_factory=utc_timestamp)
    retry_count: int = 0

    @classmethod
    def create(
        cls,
        document_id: str,
        failed_document: Mapping[str, Any],
        validation_errors: list[ValidationError] | tuple[ValidationError, ...],
    ) -> WorkItem:
        return cls(
            document_id=str(document_id),
            failed_document=copy.deepcopy(dict(failed_document)),
            validation_errors=tuple(validation_errors),
        )

    def with_retry_count(self, retry_count: int) -> WorkItem:
        return replace(self, retry_count=retry_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "failedDocument": self.failed_document,
            "validationErrors": errors_to_dicts(self.validation_errors),
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkItem:
        return cls(
            document_id=str(data["documentId"]),
            failed_document=dict(data.get("failedDocument") or {}),
            validation_errors=tuple(errors_from_dicts(data.get("validationErrors") or [])),
            timestamp=data.get("timestamp") or utc_timestamp(),
            retry_count=int(data.get("retryCount", 0)),
        )
