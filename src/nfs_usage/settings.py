"""Configuration management for nfs-usage."""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, TomlConfigSettingsSource

from nfs_usage.errors import ConfigError

CONFIG_ENV_VAR = "NFS_USAGE_CONFIG"
CONFIG_FILE_NAME = "nfs-usage.toml"

EVERY_DAY = "Everyday"

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def _find_config_toml() -> Path | None:
    """Return the TOML config named by ``NFS_USAGE_CONFIG``, else walk up from cwd."""
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser().resolve()
        if not path.is_file():
            raise ConfigError(f"{CONFIG_ENV_VAR} points to a missing file: {path}")
        return path

    current = Path.cwd().resolve()
    while True:
        candidate = current / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


# ---------------------------------------------------------------------------
# Job schedule
# ---------------------------------------------------------------------------


class VolumeType(StrEnum):
    """Kind of volume a target scans; also the record tag in the index."""

    GLOBAL = "global"
    PROJECT = "project"
    PERSONAL = "personal"


class JobType(StrEnum):
    SINGLE_DIR = "singleDir"
    SUB_DIRS = "subDirs"


# Depth (segments below the mount dir) at which each volume type is measured.
DEFAULT_DEPTHS: dict[VolumeType, int] = {
    VolumeType.GLOBAL: 2,
    VolumeType.PROJECT: 5,
    VolumeType.PERSONAL: 2,
}


class TargetSettings(BaseModel):
    """One scan target: a location under the mount dir plus how to walk it."""

    type: VolumeType = Field(description="Volume type: 'global', 'project', or 'personal'.")
    location: str = Field(description="Path of the target relative to the mount dir.")
    job_type: JobType = Field(default=JobType.SUB_DIRS, alias="jobType", description="'singleDir' or 'subDirs'.")
    skip_dirs: list[str] = Field(
        default_factory=list,
        alias="skipDirs",
        description="Subtrees to exclude, relative to the target location.",
    )
    depth: int | None = Field(default=None, ge=0, description="Target depth override. Defaults by volume type.")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("location")
    @classmethod
    def _normalise_location(cls, value: str) -> str:
        return value.replace("\\", "/").strip("/")

    @property
    def target_depth(self) -> int:
        return self.depth if self.depth is not None else DEFAULT_DEPTHS[self.type]


class DaySchedule(BaseModel):
    """Targets to scan on a given weekday (or ``Everyday``)."""

    day: str = Field(description="Weekday name ('Monday' ... 'Sunday') or 'Everyday'.")
    targets: list[TargetSettings] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class ElasticsearchSettings(BaseSettings):
    """Elasticsearch connection settings."""

    model_config = SettingsConfigDict(env_prefix="NFS_USAGE_ELASTICSEARCH__")

    host: str = Field(default="localhost", description="Elasticsearch host.")
    port: int = Field(default=9200, description="Elasticsearch HTTP port.")
    scheme: Literal["http", "https"] = Field(default="http", description="'http' or 'https'.")
    username: str = Field(default="", description="Basic-auth username. Empty disables auth.")
    password: str = Field(
        default_factory=lambda: os.environ.get("ES_PASSWORD", ""),
        description="Basic-auth password (falls back to the ES_PASSWORD environment variable).",
    )
    index_name: str = Field(default="nfs-usage", description="Index that receives usage records.")
    request_timeout_s: float = Field(default=30.0, description="Per-request timeout in seconds.")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates for https.")

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host.strip()}:{self.port}"


class MeasureSettings(BaseSettings):
    """Settings for the ``duc`` disk-usage measurement step."""

    model_config = SettingsConfigDict(env_prefix="NFS_USAGE_MEASURE__")

    duc_binary: str = Field(default="duc", description="Path or name of the duc executable.")
    low_priority: bool = Field(default=True, description="Prefix duc index with 'nice -n 19 ionice -c 3'.")
    max_depth: int = Field(default=2, description="Value passed to 'duc index -m'.")
    timeout_s: float | None = Field(default=None, description="Timeout per duc invocation. None waits forever.")


class ErrorPolicy(StrEnum):
    """What a run does after a job finishes with indexing errors."""

    ABORT = "abort"
    CONTINUE = "continue"


class IndexSettings(BaseSettings):
    """Bulk indexing settings."""

    model_config = SettingsConfigDict(env_prefix="NFS_USAGE_INDEX__")

    batch_size: int = Field(default=255, ge=1, description="Records per bulk request.")
    on_error: ErrorPolicy = Field(
        default=ErrorPolicy.ABORT,
        description="'abort' stops remaining jobs after an indexing error, 'continue' keeps going.",
    )


class ObservabilitySettings(BaseSettings):
    """OpenTelemetry observability settings (requires ``[otel]`` extra)."""

    model_config = SettingsConfigDict(env_prefix="NFS_USAGE_OBSERVABILITY__")

    enabled: bool = Field(default=False, description="Enable OpenTelemetry tracing and metrics.")
    exporter: str = Field(default="otlp", description="Exporter type: 'otlp', 'console', or 'none'.")
    endpoint: str = Field(default="http://localhost:4317", description="OTLP collector endpoint.")
    service_name: str = Field(default="nfs-usage", description="OTel service.name resource attribute.")
    sample_rate: float = Field(default=1.0, description="Trace sample rate (1.0 = all, 0.1 = 10%).")


class UsageSettings(BaseSettings):
    """Root configuration for nfs-usage."""

    model_config = SettingsConfigDict(
        env_prefix="NFS_USAGE_",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_path = _find_config_toml()
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        if toml_path:
            sources.append(TomlConfigSettingsSource(settings_cls, toml_file=toml_path))
        sources.append(file_secret_settings)
        return tuple(sources)

    mount_dir: Path = Field(default=Path("/mnt"), description="Mount point of the shared filesystem.")
    output_dir: Path = Field(default=Path("/tmp/nfs-usage"), description="Where duc database files are written.")
    cluster_name: str = Field(default="", description="Cluster name stamped on every record.")
    skip_days: list[str] = Field(default_factory=list, description="Weekdays on which no job runs.")
    jobs: list[DaySchedule] = Field(default_factory=list, description="Per-day target schedule.")
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    measure: MeasureSettings = Field(default_factory=MeasureSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
