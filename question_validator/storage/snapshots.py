"""Pre-change snapshots of invalid records and the corrected-record archive.

Both stores are flat directories of JSON files named
``<slug>_<storage id>.json`` (``unknown-slug`` / ``no-id`` when a part is
missing).  A snapshot wraps the original record::

    {
      "metadata": {"backupTime": ..., "documentId": ..., "validationErrors": [...]},
      "originalDocument": {...}
    }

while the archive holds the corrected record as-is.  Writing the same
record twice overwrites the earlier file.

All methods are synchronous file I/O; async callers run them through
``asyncio.to_thread``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from question_validator.schema.contract import STORAGE_ID_FIELD
from question_validator.schema.errors import ValidationError, errors_to_dicts

UNKNOWN_SLUG = "unknown-slug"
NO_ID = "no-id"

_UNSAFE_NAME_CHARS = re.compile(r"[^\w.-]+")


@dataclass
class SnapshotStats:
    total_failed_backups: int = 0
    total_corrected_documents: int = 0
    failed_size: int = 0
    corrected_size: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _name_part(value: Any, fallback: str) -> str:
    if value is None or value == "":
        return fallback
    return _UNSAFE_NAME_CHARS.sub("-", str(value)).strip("-.") or fallback


def snapshot_name(record: Mapping[str, Any]) -> str:
    """``<slug>_<storage id>.json`` with path-unsafe characters replaced."""
    slug = _name_part(record.get("slug") if isinstance(record, Mapping) else None, UNKNOWN_SLUG)
    document_id = _name_part(record.get(STORAGE_ID_FIELD) if isinstance(record, Mapping) else None, NO_ID)
    return f"{slug}_{document_id}.json"


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    tmp.replace(path)


class SnapshotStore:
    """Directory-backed snapshot store plus corrected-record archive."""

    def __init__(
        self,
        failed_dir: Path | str,
        corrected_dir: Path | str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.failed_dir = Path(failed_dir)
        self.corrected_dir = Path(corrected_dir)
        self.log = logger or logging.getLogger(__name__)

    def initialize(self) -> None:
        self.failed_dir.mkdir(parents=True, exist_ok=True)
        self.corrected_dir.mkdir(parents=True, exist_ok=True)
        self.log.info(
            "Snapshot directories initialized (failed=%s, corrected=%s)",
            self.failed_dir,
            self.corrected_dir,
        )

    # -- snapshots ----------------------------------------------------------

    def snapshot_path(self, record: Mapping[str, Any]) -> Path:
        return self.failed_dir / snapshot_name(record)

    def save_snapshot(self, record: Mapping[str, Any], errors: Iterable[ValidationError]) -> Path:
        errors = list(errors)
        document_id = _name_part(record.get(STORAGE_ID_FIELD), NO_ID)
        path = self.snapshot_path(record)
        self.failed_dir.mkdir(parents=True, exist_ok=True)
        _write_json(
            path,
            {
                "metadata": {
                    "backupTime": datetime.now(timezone.utc).isoformat(),
                    "documentId": document_id,
                    "validationErrors": errors_to_dicts(errors),
                },
                "originalDocument": dict(record),
            },
        )
        self.log.info("Snapshot saved to %s (%d errors)", path, len(errors))
        return path

    def load_snapshot(self, filename: str) -> dict[str, Any]:
        return json.loads((self.failed_dir / filename).read_text(encoding="utf-8"))

    def list_snapshots(self) -> list[str]:
        return _list_json(self.failed_dir)

    def delete_snapshot(self, filename: str) -> None:
        (self.failed_dir / filename).unlink()
        self.log.info("Snapshot deleted: %s", filename)

    # -- corrected archive --------------------------------------------------

    def corrected_path(self, record: Mapping[str, Any]) -> Path:
        return self.corrected_dir / snapshot_name(record)

    def save_corrected(self, record: Mapping[str, Any]) -> Path:
        path = self.corrected_path(record)
        self.corrected_dir.mkdir(parents=True, exist_ok=True)
        _write_json(path, dict(record))
        self.log.info("Corrected document archived to %s", path)
        return path

    def load_corrected(self, filename: str) -> dict[str, Any]:
        return json.loads((self.corrected_dir / filename).read_text(encoding="utf-8"))

    def list_corrected(self) -> list[str]:
        return _list_json(self.corrected_dir)

    def delete_corrected(self, filename: str) -> None:
        (self.corrected_dir / filename).unlink()
        self.log.info("Corrected document deleted: %s", filename)

    # -- stats --------------------------------------------------------------

    def stats(self) -> SnapshotStats:
        failed = self.list_snapshots()
        corrected = self.list_corrected()
        return SnapshotStats(
            total_failed_backups=len(failed),
            total_corrected_documents=len(corrected),
            failed_size=sum((self.failed_dir / name).stat().st_size for name in failed),
            corrected_size=sum((self.corrected_dir / name).stat().st_size for name in corrected),
        )


def _list_json(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(path.name for path in directory.iterdir() if path.suffix == ".json" and path.is_file())
