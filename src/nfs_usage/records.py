"""Usage records — the documents written to the index store.

One variant per volume type, all sharing the base field set.  The variant is
picked by :class:`~nfs_usage.settings.VolumeType` and nothing else.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from nfs_usage.settings import VolumeType


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _segments(full_path: str) -> list[str]:
    return [s for s in full_path.split("/") if s]


# ---------------------------------------------------------------------------
# Record variants (frozen dataclasses)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class UsageRecord:
    """Fields shared by every record."""

    cluster: str
    full_path: str  # path below the mount dir, e.g. "/global/vol1"
    disk_size: str  # bytes, as the decimal string the measurement tool reports
    timestamp: datetime = field(default_factory=_now)

    volume_type: VolumeType = field(init=False)

    def to_document(self) -> dict[str, Any]:
        """Return the JSON document stored in the index."""
        doc = asdict(self)
        doc["timestamp"] = self.timestamp.isoformat()
        doc["volume_type"] = str(self.volume_type)
        return doc


@dataclass(frozen=True, kw_only=True)
class GlobalVolumeRecord(UsageRecord):
    volume_name: str

    volume_type: VolumeType = field(default=VolumeType.GLOBAL, init=False)


@dataclass(frozen=True, kw_only=True)
class ProjectRecord(UsageRecord):
    volume_name: str
    project_name: str

    volume_type: VolumeType = field(default=VolumeType.PROJECT, init=False)


@dataclass(frozen=True, kw_only=True)
class PersonalRecord(UsageRecord):
    user_name: str

    volume_type: VolumeType = field(default=VolumeType.PERSONAL, init=False)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def build_record(
    volume_type: VolumeType | str,
    full_path: str,
    disk_size: str,
    *,
    cluster: str = "",
    timestamp: datetime | None = None,
) -> UsageRecord:
    """Build the record variant for *volume_type* from a measured path.

    Name fields come from the trailing segments of *full_path*: the volume or
    user name is the last segment, the project name the one before it.
    """
    kind = VolumeType(volume_type)
    parts = _segments(full_path)
    common: dict[str, Any] = {"cluster": cluster, "full_path": full_path, "disk_size": disk_size}
    if timestamp is not None:
        common["timestamp"] = timestamp

    last = parts[-1] if parts else ""
    if kind is VolumeType.GLOBAL:
        return GlobalVolumeRecord(volume_name=last, **common)
    if kind is VolumeType.PROJECT:
        return ProjectRecord(volume_name=last, project_name=parts[-2] if len(parts) > 1 else "", **common)
    return PersonalRecord(user_name=last, **common)
