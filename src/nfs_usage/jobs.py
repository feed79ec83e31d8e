"""Job selection and orchestration — drives walk → measure → index for a day.

Jobs run one at a time.  Each job owns the list of records it measured and
hands it to the :class:`~nfs_usage.bulk.BulkIndexer` once the walk is done.
What happens after a job with indexing errors is decided by
:class:`~nfs_usage.settings.ErrorPolicy`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from nfs_usage.errors import IndexingFailedError, MeasurementError
from nfs_usage.records import UsageRecord, build_record
from nfs_usage.settings import EVERY_DAY, ErrorPolicy, JobType
from nfs_usage.telemetry import get_metrics, get_tracer
from nfs_usage.walker import ExclusionSet, WalkTarget, normalise_rel_path, walk

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from datetime import date
    from pathlib import Path

    from nfs_usage.bulk import BulkIndexer, IndexingStats
    from nfs_usage.measure import Measurement
    from nfs_usage.settings import TargetSettings, UsageSettings

_tracer = get_tracer(__name__)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Measurer(Protocol):
    def measure(self, path: str) -> Measurement | None: ...


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def weekday_name(day: date) -> str:
    """English weekday name, independent of the process locale."""
    return WEEKDAYS[day.weekday()]


def select_targets(settings: UsageSettings, day_name: str) -> list[TargetSettings]:
    """Targets scheduled for *day_name*, in configuration order.

    Nothing runs on a day listed in ``skip_days``.  Otherwise every schedule
    entry for that day or for ``Everyday`` contributes its targets.
    """
    wanted = day_name.casefold()
    if any(d.casefold() == wanted for d in settings.skip_days):
        return []
    targets: list[TargetSettings] = []
    for schedule in settings.jobs:
        if schedule.day.casefold() in (wanted, EVERY_DAY.casefold()):
            targets.extend(schedule.targets)
    return targets


def build_walk_target(mount_dir: Path, location: str, depth: int, skip_dirs: Iterable[str] = ()) -> WalkTarget:
    """Walk of *location* under *mount_dir*; *skip_dirs* are relative to *location*."""
    location = normalise_rel_path(location)
    exclusions = ExclusionSet(f"{location}/{d}" if location else d for d in skip_dirs)
    return WalkTarget(root=mount_dir, relative_root=location, target_depth=depth, exclusions=exclusions)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class JobResult:
    """Outcome of processing one target."""

    target: TargetSettings
    directories: int = 0  # directories found at the target depth
    measured: int = 0
    missing: int = 0  # vanished before measurement
    failed: int = 0  # measurement errors
    walk_errors: int = 0
    stats: IndexingStats | None = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.stats is None or self.stats.ok


@dataclass
class RunReport:
    """Outcome of one day's run."""

    day: str
    results: list[JobResult] = field(default_factory=list)
    skipped_day: bool = False

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def indexed(self) -> int:
        return sum(r.stats.indexed for r in self.results if r.stats is not None)

    @property
    def errored(self) -> int:
        return sum(r.stats.errored for r in self.results if r.stats is not None)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class JobRunner:
    """Runs the scheduled targets for a day against one measurer and one indexer."""

    def __init__(
        self,
        settings: UsageSettings,
        indexer: BulkIndexer,
        measurer: Measurer,
        *,
        on_error: ErrorPolicy | None = None,
    ) -> None:
        self._settings = settings
        self._indexer = indexer
        self._measurer = measurer
        self.on_error = on_error or settings.index.on_error

    def run(self, day_name: str) -> RunReport:
        """Process every target scheduled for *day_name*.

        Raises :class:`IndexingFailedError` when a job ends with indexing
        errors and the policy is ``abort``; remaining jobs are not started.
        """
        report = RunReport(day=day_name)
        logger.info("NFS disk check job for {} started", day_name)

        if any(d.casefold() == day_name.casefold() for d in self._settings.skip_days):
            logger.info("{} is a skip day, no jobs run", day_name)
            report.skipped_day = True
            return report

        targets = select_targets(self._settings, day_name)
        if not targets:
            logger.info("No job configuration for {}, nothing to do", day_name)
            return report

        logger.info("Configured job count: {}", len(targets))
        for i, target in enumerate(targets, 1):
            logger.info(
                "Job[{}]: {}, {}, {}", i, target.job_type, target.type, self._settings.mount_dir / target.location
            )
            result = self.process_target(target)
            report.results.append(result)
            if result.ok:
                continue
            if self.on_error is ErrorPolicy.ABORT:
                assert result.stats is not None
                raise IndexingFailedError(target.location, result.stats)
            logger.warning("Job[{}] finished with {} indexing error(s), continuing", i, result.stats.errored)

        logger.info("NFS disk check job for {} finished", day_name)
        return report

    def process_target(self, target: TargetSettings) -> JobResult:
        """Walk, measure, and index one target."""
        result = JobResult(target=target)
        start = time.perf_counter()

        with _tracer.start_as_current_span(
            "job.process", attributes={"location": target.location, "volume_type": str(target.type)}
        ):
            records: list[UsageRecord] = []
            with _tracer.start_as_current_span("job.walk", attributes={"target_depth": target.target_depth}):
                for path in self._candidate_dirs(target, result):
                    record = self._measure(path, target, result)
                    if record is not None:
                        records.append(record)

            if records:
                logger.info("{} record(s) from {} go to the index", len(records), target.location)
                result.stats = self._indexer.submit(records)
            else:
                logger.info("No records measured under {}", target.location)

        result.duration_s = time.perf_counter() - start
        get_metrics().job_duration.record(result.duration_s, {"volume_type": str(target.type)})
        logger.info(
            "Job {} done: {} dir(s), {} measured, {} missing, {} failed, {} walk error(s) in {:.1f}s",
            target.location,
            result.directories,
            result.measured,
            result.missing,
            result.failed,
            result.walk_errors,
            result.duration_s,
        )
        return result

    def walk_target(self, target: TargetSettings) -> WalkTarget:
        return build_walk_target(self._settings.mount_dir, target.location, target.target_depth, target.skip_dirs)

    # -- private helpers -----------------------------------------------------

    def _candidate_dirs(self, target: TargetSettings, result: JobResult) -> Iterator[str]:
        if target.job_type is JobType.SINGLE_DIR:
            result.directories += 1
            yield str(self._settings.mount_dir / target.location)
            return

        for entry in walk(self.walk_target(target)):
            if entry.error is not None:
                result.walk_errors += 1
                logger.warning("Cannot read {}: {}", entry.absolute_path, entry.error)
                continue
            if not entry.is_dir:
                continue
            result.directories += 1
            yield entry.absolute_path

    def _measure(self, path: str, target: TargetSettings, result: JobResult) -> UsageRecord | None:
        logger.debug("Start measuring '{}'", path)
        try:
            measurement = self._measurer.measure(path)
        except MeasurementError as exc:
            result.failed += 1
            logger.warning("Process for {} failed: {}", path, exc.reason)
            return None
        except (OSError, ValueError):
            result.failed += 1
            logger.exception("Measuring {} failed", path)
            return None
        if measurement is None:
            result.missing += 1
            return None

        result.measured += 1
        return build_record(
            target.type,
            self._strip_mount_dir(measurement.root),
            measurement.size,
            cluster=self._settings.cluster_name,
        )

    def _strip_mount_dir(self, root: str) -> str:
        """``/mnt/global/vol1`` → ``/global/vol1`` for a mount dir of ``/mnt``."""
        mount = str(self._settings.mount_dir).rstrip("/")
        if mount and (root == mount or root.startswith(mount + "/")):
            return root[len(mount) :] or "/"
        return root
