"""Disk-usage measurement with ``duc``.

For each directory the measurer runs ``duc index`` (at idle I/O priority by
default) into a fresh database file under the output dir, then ``duc xml``
against that database and reads the root path and size off the top-level
``<duc>`` element.

A missing directory is "no data" (``None``); anything else that goes wrong is
a :class:`~nfs_usage.errors.MeasurementError`.
"""

from __future__ import annotations

import os
import subprocess
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from nfs_usage.errors import MeasurementError
from nfs_usage.telemetry import get_metrics

if TYPE_CHECKING:
    from nfs_usage.settings import MeasureSettings

_LOW_PRIORITY_PREFIX = ["nice", "-n", "19", "ionice", "-c", "3"]

# Attribute names carrying the total size, newest duc releases first.
_SIZE_ATTRS = ("size_actual", "size", "size_apparent")


@dataclass(frozen=True)
class Measurement:
    """Result of measuring one directory."""

    root: str  # canonical path as reported by duc
    size: str  # bytes, decimal string


def parse_duc_xml(xml_text: str, path: str) -> Measurement:
    """Extract root and size from ``duc xml`` output.

    *xml_text* is already decoded, with undecodable bytes as U+FFFD.
    """
    try:
        element = ET.fromstring(xml_text)
    except (ET.ParseError, ValueError) as exc:
        raise MeasurementError(path, f"malformed duc xml output: {exc}") from exc

    if element.tag != "duc":
        raise MeasurementError(path, f"unexpected root element <{element.tag}>")
    root = element.get("root")
    if not root:
        raise MeasurementError(path, "duc xml output has no root attribute")
    for attr in _SIZE_ATTRS:
        size = element.get(attr)
        if size is not None:
            return Measurement(root=root, size=size)
    raise MeasurementError(path, "duc xml output has no size attribute")


class DucMeasurer:
    """Measures directories with the external ``duc`` tool."""

    def __init__(self, settings: MeasureSettings, output_dir: str | Path) -> None:
        self._settings = settings
        self._output_dir = Path(output_dir)

    def database_path(self, path: str) -> Path:
        """Snapshot database for *path*: ``<output_dir>/<dotted path>.<unix ts>.db``."""
        dotted = path.strip("/").replace("/", ".") or "root"
        return self._output_dir / f"{dotted}.{int(time.time())}.db"

    def index_command(self, path: str, database: Path) -> list[str]:
        cmd = [self._settings.duc_binary, "index", path, "-d", str(database), "-m", str(self._settings.max_depth)]
        return [*_LOW_PRIORITY_PREFIX, *cmd] if self._settings.low_priority else cmd

    def xml_command(self, path: str, database: Path) -> list[str]:
        return [self._settings.duc_binary, "xml", path, "-d", str(database)]

    def measure(self, path: str) -> Measurement | None:
        """Measure *path*.  Returns ``None`` if the directory does not exist."""
        if not os.path.exists(path):
            logger.info("Target dir '{}' does not exist, skipping", path)
            return None

        t0 = time.perf_counter()
        self._output_dir.mkdir(parents=True, exist_ok=True)
        database = self.database_path(path)

        self._run(self.index_command(path, database), path)
        if not database.exists():
            raise MeasurementError(path, f"database file {database} was not created")
        logger.debug("Database file {} generated for {}", database, path)

        measurement = parse_duc_xml(self._run(self.xml_command(path, database), path), path)

        get_metrics().measure_latency.record(time.perf_counter() - t0)
        logger.debug("Measured {}: {} bytes", measurement.root, measurement.size)
        return measurement

    def _run(self, cmd: list[str], path: str) -> str:
        """Run *cmd* and return its stdout.

        Output is read as bytes and decoded as UTF-8 with undecodable bytes
        replaced: ``duc xml`` lists every entry name below *path*, and names
        on shared filesystems need not be UTF-8.
        """
        logger.trace("Running {}", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self._settings.timeout_s,
                check=False,
            )
        except FileNotFoundError as exc:
            raise MeasurementError(path, f"command not found: {cmd[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise MeasurementError(path, f"'{cmd[0]} {cmd[1]}' timed out after {exc.timeout}s") from exc

        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if result.returncode != 0:
            raise MeasurementError(path, f"'{' '.join(cmd[:2])}' exited {result.returncode}: {stderr}")
        if stderr:
            logger.debug("{} stderr: {}", cmd[0], stderr)
        return result.stdout.decode("utf-8", errors="replace")
