"""Typer-based CLI with Rich output.

Commands
--------
scan        validate every record and queue the invalid ones
consume     run the correction worker until SIGINT/SIGTERM
check       spot-check one record (exit 0 valid, 2 invalid or missing)
report      failure-report, snapshot and queue counters
init-db     create the tables
import      load records from a JSON file into the store
clean       delete finished queue jobs older than a grace period
serve       run the health/stats HTTP API

Startup configuration or connectivity failures exit with code 1.
"""
from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from question_validator.core.logging import setup_logging, shutdown_logging
from question_validator.core.retry import RetryPolicy
from question_validator.core.settings import (
    ConfigurationError,
    Settings,
    load_settings,
    require_repair_settings,
)
from question_validator.db.repositories import QuestionRepository
from question_validator.db.session import Database, StoreConnectionError
from question_validator.llm.client import RepairClient, RepairConnectionError
from question_validator.llm.prompts import SYSTEM_PROMPT
from question_validator.llm.repair import CorrectionService
from question_validator.queue.correction_queue import DEFAULT_CLEAN_GRACE_S, CorrectionQueue, QueueStats
from question_validator.storage.failure_report import FailureReport
from question_validator.storage.snapshots import SnapshotStore
from question_validator.tasks.corrector import CorrectionWorker
from question_validator.tasks.scanner import BANNER, ScannerService, ScanStats
from question_validator.tasks.updater import STORE_WRITE_ERRORS, SafeUpdater
from question_validator.validation.validator import SchemaValidator

EXIT_STARTUP_FAILURE = 1
EXIT_INVALID = 2

app = typer.Typer(
    name="qvalidator",
    help="Validate coding-question records and repair invalid ones",
    add_completion=False,
)
console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _startup() -> tuple[Settings, logging.Logger]:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_STARTUP_FAILURE)
    return settings, setup_logging(settings)


def _snapshot_store(settings: Settings, logger: logging.Logger) -> SnapshotStore:
    return SnapshotStore(
        settings.failed_questions_dir,
        settings.corrected_questions_dir,
        logger=logger.getChild("snapshots"),
    )


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except (ConfigurationError, StoreConnectionError, RepairConnectionError) as exc:
        logging.getLogger("question_validator").error("Fatal startup error: %s", exc)
        console.print(f"[red]Fatal error:[/red] {exc}")
        raise typer.Exit(code=EXIT_STARTUP_FAILURE)
    finally:
        shutdown_logging()


def _title(text: str) -> None:
    console.print(BANNER)
    console.print(f"[bold]{text}[/bold]")
    console.print(BANNER)


def _scan_table(stats: ScanStats) -> Table:
    table = Table(title="Scan Statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for label, value in (
        ("Total scanned", stats.total_scanned),
        ("Valid", stats.valid_documents),
        ("Invalid", stats.invalid_documents),
        ("Backed up", stats.backed_up),
        ("Queued", stats.queued),
        ("Errors", stats.errors),
        ("Duration (s)", f"{stats.duration_seconds:.2f}"),
        ("Docs / second", f"{stats.docs_per_second:.2f}"),
    ):
        table.add_row(label, str(value))
    return table


def _queue_table(stats: QueueStats, title: str = "Queue") -> Table:
    table = Table(title=title)
    for column in ("Waiting", "Active", "Completed", "Failed", "Delayed"):
        table.add_column(column, justify="right")
    table.add_row(
        str(stats.waiting), str(stats.active), str(stats.completed), str(stats.failed), str(stats.delayed)
    )
    return table


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


async def _scan(settings: Settings, logger: logging.Logger) -> ScanStats | None:
    snapshots = _snapshot_store(settings, logger)
    await asyncio.to_thread(snapshots.initialize)

    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        await database.create_schema()
        repository = QuestionRepository(database, logger=logger.getChild("repository"))
        if await repository.is_empty():
            logger.warning("Collection is empty. Nothing to scan.")
            return None

        queue = CorrectionQueue.from_settings(database, settings, logger=logger.getChild("queue"))
        logger.info("Queue status before scan: %s", (await queue.stats()).to_dict())

        scanner = ScannerService(
            repository,
            queue,
            snapshots,
            batch_size=settings.batch_size,
            logger=logger.getChild("scanner"),
        )
        stats = await scanner.scan_and_enqueue()
        console.print(_queue_table(await queue.stats(), title="Queue after scan"))
        return stats
    finally:
        await database.disconnect()


@app.command()
def scan() -> None:
    """Scan every record, snapshot and queue the invalid ones."""
    _title("CODING QUESTION VALIDATOR - SCANNER")
    settings, logger = _startup()
    stats = _run(_scan(settings, logger))
    if stats is not None:
        console.print(_scan_table(stats))


# ---------------------------------------------------------------------------
# consume
# ---------------------------------------------------------------------------


def _install_signal_handlers(stop_event: asyncio.Event, logger: logging.Logger) -> None:
    loop = asyncio.get_running_loop()

    def _request_stop(signame: str) -> None:
        if not stop_event.is_set():
            logger.info("Received %s. Shutting down gracefully...", signame)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig.name)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(_request_stop, "signal"))


async def _log_stats_periodically(
    worker: CorrectionWorker, queue: CorrectionQueue, interval_s: float, logger: logging.Logger
) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            queue_stats = (await queue.stats()).to_dict()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Queue stats unavailable: %s", exc)
            queue_stats = None
        counters = worker.counters
        logger.info(
            "Worker statistics: processed=%d successful=%d failed=%d escalated=%d queue=%s",
            counters.processed,
            counters.successful,
            counters.failed,
            counters.escalated,
            queue_stats,
        )


async def _consume(settings: Settings, logger: logging.Logger) -> None:
    require_repair_settings(settings)

    snapshots = _snapshot_store(settings, logger)
    report = FailureReport(settings.failure_report_path, logger=logger.getChild("report"))
    await asyncio.to_thread(snapshots.initialize)
    await asyncio.to_thread(report.initialize)

    database = Database(settings.database_url, logger=logger.getChild("db"))
    client = RepairClient.from_settings(settings, system=SYSTEM_PROMPT, logger=logger.getChild("repair"))
    try:
        await database.connect()
        await database.create_schema()

        queue = CorrectionQueue.from_settings(database, settings, logger=logger.getChild("queue"))
        logger.info("Initial queue status: %s", (await queue.stats()).to_dict())

        if not await client.is_available():
            raise RepairConnectionError(
                f"Repair service at {settings.ai_base_url} is not reachable with the configured AI_API_KEY"
            )
        logger.info("Repair service connection verified")

        repository = QuestionRepository(database, logger=logger.getChild("repository"))
        validator = SchemaValidator(logger=logger.getChild("validator"))
        updater = SafeUpdater(
            repository,
            validator,
            RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay_s=settings.retry_delay_s,
                retry_on=STORE_WRITE_ERRORS,
            ),
            logger=logger.getChild("updater"),
        )
        corrector = CorrectionWorker(
            CorrectionService(client, logger=logger.getChild("repair")),
            updater,
            snapshots,
            report,
            validator=validator,
            logger=logger.getChild("worker"),
        )
        worker = queue.create_worker(
            corrector.process,
            concurrency=settings.queue_concurrency,
            on_failed=corrector.escalate,
        )

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event, logger)
        stats_task = asyncio.create_task(
            _log_stats_periodically(corrector, queue, settings.stats_interval_s, logger)
        )
        logger.info("Worker is running (concurrency %d). Press Ctrl+C to stop.", settings.queue_concurrency)
        try:
            await worker.run_until(stop_event, grace_s=settings.shutdown_grace_s)
            await corrector.drain_archives()
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)
        logger.info("Shutdown complete")
    finally:
        await client.aclose()
        await database.disconnect()


@app.command()
def consume() -> None:
    """Run the correction worker until interrupted."""
    _title("CODING QUESTION VALIDATOR - CONSUMER")
    settings, logger = _startup()
    _run(_consume(settings, logger))


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


async def _check(settings: Settings, logger: logging.Logger, document_id: str) -> bool:
    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        repository = QuestionRepository(database, logger=logger.getChild("repository"))
        record = await repository.find_by_id(document_id)
        if record is None:
            logger.error("Document %s not found", document_id)
            return False

        result = SchemaValidator(logger=logger.getChild("validator")).validate(record)
        if result.is_valid:
            return True

        table = Table(title=f"Validation errors for {document_id}")
        table.add_column("#", justify="right")
        table.add_column("Field")
        table.add_column("Kind")
        table.add_column("Message")
        for index, error in enumerate(result.errors, start=1):
            table.add_row(str(index), error.field, error.kind.value, error.message)
        console.print(table)
        return False
    finally:
        await database.disconnect()


@app.command()
def check(document_id: str = typer.Argument(..., help="Storage id of the record")) -> None:
    """Validate a single record without side effects."""
    settings, logger = _startup()
    if _run(_check(settings, logger, document_id)):
        console.print(f"[green]Document {document_id} is valid[/green]")
        return
    console.print(f"[red]Document {document_id} is invalid or missing[/red]")
    raise typer.Exit(code=EXIT_INVALID)


# ---------------------------------------------------------------------------
# report
# ---------------------------------------------------------------------------


async def _queue_stats(settings: Settings, logger: logging.Logger) -> QueueStats | None:
    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        return await CorrectionQueue.from_settings(database, settings).stats()
    except StoreConnectionError:
        return None
    finally:
        await database.disconnect()


@app.command()
def report() -> None:
    """Show failure-report, snapshot and queue counters."""
    settings, logger = _startup()
    failures = FailureReport(settings.failure_report_path, logger=logger.getChild("report")).stats()
    snapshot_stats = _snapshot_store(settings, logger).stats()

    table = Table(title="Correction Pipeline")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Escalated failures", str(failures.total_failures))
    table.add_row("Report last updated", failures.last_updated)
    table.add_row("Snapshots", str(snapshot_stats.total_failed_backups))
    table.add_row("Snapshot bytes", str(snapshot_stats.failed_size))
    table.add_row("Corrected archive", str(snapshot_stats.total_corrected_documents))
    table.add_row("Corrected bytes", str(snapshot_stats.corrected_size))
    console.print(table)

    queue_stats = _run(_queue_stats(settings, logger))
    if queue_stats is None:
        console.print("[yellow]Queue statistics unavailable (store not reachable)[/yellow]")
    else:
        console.print(_queue_table(queue_stats))


# ---------------------------------------------------------------------------
# init-db / import / clean
# ---------------------------------------------------------------------------


async def _init_db(settings: Settings, logger: logging.Logger) -> None:
    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        await database.create_schema()
    finally:
        await database.disconnect()


@app.command("init-db")
def init_db() -> None:
    """Create the record and queue tables."""
    settings, logger = _startup()
    _run(_init_db(settings, logger))
    console.print("[green]Tables created[/green]")


async def _import(settings: Settings, logger: logging.Logger, records: list[dict[str, Any]]) -> int:
    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        await database.create_schema()
        repository = QuestionRepository(database, logger=logger.getChild("repository"))
        for record in records:
            await repository.insert(record)
        return len(records)
    finally:
        await database.disconnect()


@app.command("import")
def import_records(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file")) -> None:
    """Load records (a JSON object or array of objects) into the store as-is."""
    settings, logger = _startup()
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data if isinstance(data, list) else [data]
    if not all(isinstance(record, dict) for record in records):
        console.print("[red]Expected a JSON object or an array of objects[/red]")
        raise typer.Exit(code=EXIT_STARTUP_FAILURE)
    count = _run(_import(settings, logger, records))
    console.print(f"[green]Imported {count} records[/green]")


async def _clean(settings: Settings, logger: logging.Logger, grace_s: float) -> int:
    database = Database(settings.database_url, logger=logger.getChild("db"))
    try:
        await database.connect()
        queue = CorrectionQueue.from_settings(database, settings, logger=logger.getChild("queue"))
        return await queue.clean(grace_s)
    finally:
        await database.disconnect()


@app.command()
def clean(
    grace_hours: float = typer.Option(DEFAULT_CLEAN_GRACE_S / 3600, "--grace-hours", help="Keep jobs newer than this"),
) -> None:
    """Delete completed and failed queue jobs older than the grace period."""
    settings, logger = _startup()
    removed = _run(_clean(settings, logger, grace_hours * 3600))
    console.print(f"Removed {removed} finished jobs")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: Optional[bool] = typer.Option(False, "--reload"),
) -> None:
    """Run the health/stats API with uvicorn."""
    import uvicorn

    uvicorn.run("question_validator.main:app", host=host, port=port, reload=bool(reload))


def main() -> None:
    """Entry point for the ``qvalidator`` console script."""
    app()


if __name__ == "__main__":
    main()
