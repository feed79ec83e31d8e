"""CLI entrypoint for nfs-usage."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from loguru import logger

from nfs_usage.settings import CONFIG_ENV_VAR, ErrorPolicy

if TYPE_CHECKING:
    from nfs_usage.settings import UsageSettings

app = typer.Typer(
    name="nfs-usage",
    help="nfs-usage — measure shared-filesystem disk usage per directory and index it in Elasticsearch.",
    no_args_is_help=True,
)

_LOG_LEVELS = {0: "INFO", 1: "DEBUG"}


@app.callback()
def main(
    config: Path | None = typer.Option(
        None, "--config", "-f", help="TOML config file (default: nfs-usage.toml in cwd or a parent)."
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for debug output, -vv for trace."),
) -> None:
    """Configure logging and the config file for every subcommand."""
    logger.remove()
    logger.add(sys.stderr, level=_LOG_LEVELS.get(verbose, "TRACE"))

    if config is not None:
        os.environ[CONFIG_ENV_VAR] = str(config.resolve())


@app.command()
def run(
    day: str | None = typer.Option(None, "--day", help="Weekday whose jobs to run (default: today)."),
    on_error: ErrorPolicy | None = typer.Option(
        None, "--on-error", help="After a job with indexing errors: 'abort' or 'continue' (default from config)."
    ),
) -> None:
    """Run the scheduled jobs for a day: walk, measure, and index."""
    from datetime import date

    from nfs_usage.bulk import BulkIndexer
    from nfs_usage.errors import IndexingFailedError, SerializationError
    from nfs_usage.jobs import WEEKDAYS, JobRunner, select_targets, weekday_name
    from nfs_usage.measure import DucMeasurer
    from nfs_usage.store import IndexStoreClient
    from nfs_usage.telemetry import init_telemetry, shutdown_telemetry

    settings = _load_settings()
    day_name = (day or weekday_name(date.today())).capitalize()
    if day_name not in WEEKDAYS:
        logger.error("Unknown weekday '{}' — expected one of {}", day, ", ".join(WEEKDAYS))
        raise typer.Exit(code=1)

    init_telemetry(settings.observability)
    client = IndexStoreClient(settings.elasticsearch)
    try:
        if select_targets(settings, day_name) and not client.ping():
            logger.error("Cannot reach Elasticsearch at {}", client.url)
            raise typer.Exit(code=1)

        indexer = BulkIndexer(client, batch_size=settings.index.batch_size)
        measurer = DucMeasurer(settings.measure, settings.output_dir)
        runner = JobRunner(settings, indexer, measurer, on_error=on_error)
        try:
            report = runner.run(day_name)
        except IndexingFailedError as exc:
            logger.error("{} — remaining jobs not started", exc)
            raise typer.Exit(code=1) from exc
        except SerializationError as exc:
            logger.error("Fatal: {}", exc)
            raise typer.Exit(code=1) from exc
    finally:
        client.close()
        shutdown_telemetry()

    if not report.ok:
        logger.error("Run for {} finished: {} indexed, {} errored", day_name, report.indexed, report.errored)
        raise typer.Exit(code=1)
    logger.info("Run for {} finished: {} indexed", day_name, report.indexed)


@app.command()
def walk(
    location: str = typer.Argument(..., help="Directory to walk, relative to the mount dir."),
    depth: int = typer.Option(..., "--depth", "-d", min=0, help="Depth below the mount dir to list."),
    skip: list[str] | None = typer.Option(None, "--skip", help="Subtree to exclude, relative to LOCATION (repeatable)."),
) -> None:
    """List the directories a job would measure, without measuring them."""
    from nfs_usage.jobs import build_walk_target
    from nfs_usage.walker import iter_target_dirs

    settings = _load_settings()
    target = build_walk_target(settings.mount_dir, location, depth, skip or [])
    count = 0
    for path in iter_target_dirs(target):
        typer.echo(path)
        count += 1
    logger.info("{} director{} at depth {} under {}", count, "y" if count == 1 else "ies", depth, location)


@app.command()
def check() -> None:
    """Check Elasticsearch, the index, the mount, and the duc toolchain."""
    from nfs_usage.health import CheckStatus, run_health_checks

    settings = _load_settings()
    report = run_health_checks(settings)
    for result in report.checks:
        log = logger.error if result.status == CheckStatus.FAIL else logger.info
        log("[{}] {}: {}", result.status, result.name, result.message)
        if result.detail:
            log("    {}", result.detail)
        if result.suggestion:
            log("    hint: {}", result.suggestion)
    logger.info("Checks finished in {:.0f}ms", report.elapsed_ms)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("create-index")
def create_index() -> None:
    """Create the usage index with its field mapping, if it does not exist."""
    from nfs_usage.errors import IndexStoreError
    from nfs_usage.store import IndexStoreClient

    settings = _load_settings()
    with IndexStoreClient(settings.elasticsearch) as client:
        try:
            if client.index_exists():
                logger.info("Index {} already exists", client.index_name)
                return
            client.create_index()
        except IndexStoreError as exc:
            logger.error("{}", exc)
            raise typer.Exit(code=1) from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> UsageSettings:
    from pydantic import ValidationError

    from nfs_usage.errors import ConfigError
    from nfs_usage.settings import UsageSettings

    try:
        return UsageSettings()
    except ConfigError as exc:
        logger.error("{}", exc)
        raise typer.Exit(code=1) from exc
    except ValidationError as exc:
        logger.error("Invalid configuration: {}", exc)
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":
    app()
