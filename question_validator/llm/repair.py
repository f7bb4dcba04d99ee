from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

from question_validator.llm.prompts import build_correction_prompt, parse_correction_response
from question_validator.schema.contract import QUESTION_ID_FIELD, STORAGE_ID_FIELD
from question_validator.schema.errors import ValidationError


class TextCompleter(Protocol):
    async def complete(self, prompt: str) -> str: ...


class CorrectionService:
    """Round trip one invalid record through the repair service.

    The returned candidate always carries the input's ``_id`` and
    ``question_id``, whatever the service sent back for them.
    """

    def __init__(self, client: TextCompleter, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.log = logger or logging.getLogger(__name__)

    async def correct(
        self, record: Mapping[str, Any], errors: Sequence[ValidationError]
    ) -> dict[str, Any]:
        document_id = record.get(STORAGE_ID_FIELD)
        self.log.info(
            "Requesting correction for document %s (question_id=%s, %d errors)",
            document_id,
            record.get(QUESTION_ID_FIELD),
            len(errors),
        )

        prompt = build_correction_prompt(record, errors)
        response = await self.client.complete(prompt)
        candidate = parse_correction_response(response)

        return preserve_identifiers(record, candidate)


def preserve_identifiers(original: Mapping[str, Any], candidate: dict[str, Any]) -> dict[str, Any]:
    if STORAGE_ID_FIELD in original:
        candidate[STORAGE_ID_FIELD] = original[STORAGE_ID_FIELD]
    else:
        candidate.pop(STORAGE_ID_FIELD, None)
    if QUESTION_ID_FIELD in original:
        candidate[QUESTION_ID_FIELD] = original[QUESTION_ID_FIELD]
    return candidate
