from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from question_validator.api.deps import get_failure_report, get_queue, get_snapshots
from question_validator.queue.correction_queue import CorrectionQueue
from question_validator.storage.failure_report import FailureReport
from question_validator.storage.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", summary="Queue, snapshot and failure-report counters")
async def pipeline_stats(
    queue: CorrectionQueue = Depends(get_queue),
    snapshots: SnapshotStore = Depends(get_snapshots),
    report: FailureReport = Depends(get_failure_report),
) -> dict[str, Any]:
    try:
        queue_stats: dict[str, int] | None = (await queue.stats()).to_dict()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Queue stats unavailable: %s", exc)
        queue_stats = None

    failures = await asyncio.to_thread(report.stats)
    snapshot_stats = await asyncio.to_thread(snapshots.stats)
    return {
        "queue": queue_stats,
        "snapshots": snapshot_stats.to_dict(),
        "failures": asdict(failures),
    }
