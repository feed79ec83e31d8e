"""Health check and diagnostics for nfs-usage infrastructure."""

from __future__ import annotations

import os
import shutil
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from nfs_usage.store import IndexStoreClient

if TYPE_CHECKING:
    from nfs_usage.settings import MeasureSettings, UsageSettings

# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


class CheckStatus(StrEnum):
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckResult:
    """Result of a single health check."""

    name: str
    status: CheckStatus
    message: str
    detail: str = ""
    suggestion: str = ""


@dataclass(frozen=True)
class HealthReport:
    """Aggregated results from all health checks."""

    checks: list[CheckResult]
    elapsed_ms: float

    @property
    def ok(self) -> bool:
        """True when no check has FAIL status (WARN is treated as passing)."""
        return all(c.status != CheckStatus.FAIL for c in self.checks)


# ---------------------------------------------------------------------------
# Individual check functions
# ---------------------------------------------------------------------------


def check_store(client: IndexStoreClient) -> CheckResult:
    """Verify Elasticsearch connectivity."""
    name = "elasticsearch"
    try:
        if client.ping():
            return CheckResult(name, CheckStatus.OK, f"Connected ({client.url})")
        return CheckResult(name, CheckStatus.FAIL, f"Ping failed ({client.url})", suggestion="Check host and port.")
    except Exception as exc:
        return CheckResult(
            name,
            CheckStatus.FAIL,
            f"Unreachable ({client.url})",
            detail=str(exc),
            suggestion="Check host, port, and credentials in nfs-usage.toml.",
        )


def check_index(client: IndexStoreClient) -> CheckResult:
    """Verify the usage index exists."""
    name = "index"
    try:
        exists = client.index_exists()
    except Exception as exc:
        return CheckResult(name, CheckStatus.FAIL, "Cannot check index", detail=str(exc))
    if exists:
        return CheckResult(name, CheckStatus.OK, f"Index {client.index_name} exists")
    return CheckResult(
        name,
        CheckStatus.WARN,
        f"Index {client.index_name} does not exist",
        detail="Bulk writes will create it with dynamic mappings.",
        suggestion="Run 'nfs-usage create-index' first.",
    )


def check_mount(settings: UsageSettings) -> CheckResult:
    """Verify the mount dir is a readable directory."""
    name = "mount"
    mount = settings.mount_dir
    if not mount.is_dir():
        return CheckResult(name, CheckStatus.FAIL, f"Not a directory: {mount}", suggestion="Set mount_dir.")
    if not os.access(mount, os.R_OK | os.X_OK):
        return CheckResult(name, CheckStatus.FAIL, f"Not readable: {mount}")
    return CheckResult(name, CheckStatus.OK, f"Readable: {mount}")


def check_duc(measure_settings: MeasureSettings) -> CheckResult:
    """Verify the duc binary (and the low-priority wrappers, when used) are on PATH."""
    name = "duc"
    wanted = [measure_settings.duc_binary]
    if measure_settings.low_priority:
        wanted += ["nice", "ionice"]
    missing = [cmd for cmd in wanted if shutil.which(cmd) is None]
    if missing:
        return CheckResult(
            name,
            CheckStatus.FAIL,
            f"Not found on PATH: {', '.join(missing)}",
            suggestion="Install duc, or set measure.low_priority = false where ionice is unavailable.",
        )
    return CheckResult(name, CheckStatus.OK, f"Found {shutil.which(measure_settings.duc_binary)}")


def check_output_dir(settings: UsageSettings) -> CheckResult:
    """Verify duc database files can be written."""
    name = "output_dir"
    out = settings.output_dir
    probe = out if out.exists() else out.parent
    if not probe.is_dir() or not os.access(probe, os.W_OK):
        return CheckResult(name, CheckStatus.FAIL, f"Not writable: {out}", suggestion="Set output_dir.")
    if not out.exists():
        return CheckResult(name, CheckStatus.OK, f"Will be created: {out}")
    return CheckResult(name, CheckStatus.OK, f"Writable: {out}")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

_SKIPPED_DETAIL = "Skipped — Elasticsearch unreachable"


def run_health_checks(settings: UsageSettings, *, client: IndexStoreClient | None = None) -> HealthReport:
    """Run all health checks and return an aggregated report.

    The index check only runs if Elasticsearch is reachable.  When *client* is
    ``None`` a temporary one is created and closed.
    """
    t0 = time.monotonic()

    own_client = client is None
    if client is None:
        client = IndexStoreClient(settings.elasticsearch)

    try:
        results = [check_mount(settings), check_output_dir(settings), check_duc(settings.measure)]
        store_res = check_store(client)
        results.append(store_res)
        if store_res.status == CheckStatus.FAIL:
            results.append(CheckResult("index", CheckStatus.FAIL, _SKIPPED_DETAIL))
        else:
            results.append(check_index(client))
    finally:
        if own_client:
            client.close()

    elapsed = (time.monotonic() - t0) * 1000
    return HealthReport(checks=results, elapsed_ms=elapsed)
