"""Shared test fixtures for nfs-usage."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

import pytest
from loguru import logger

from nfs_usage.settings import CONFIG_ENV_VAR, UsageSettings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep host config out of tests: no config file, no NFS_USAGE_* or ES_PASSWORD."""
    for name in list(os.environ):
        if name.startswith("NFS_USAGE_") or name == "ES_PASSWORD":
            monkeypatch.delenv(name)
    # Empty means "not set"; registering it also undoes the --config flag of CLI tests,
    # which writes os.environ directly.
    monkeypatch.setenv(CONFIG_ENV_VAR, "")
    monkeypatch.chdir(tmp_path)
    yield
    # CLI tests point loguru at a stream that CliRunner closes afterwards.
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def mount_dir(tmp_path):
    path = tmp_path / "mnt"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path, mount_dir):
    """Create test settings with mount and output dirs under a temporary directory."""
    return UsageSettings(mount_dir=mount_dir, output_dir=tmp_path / "out", cluster_name="test-cluster")


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="TRACE")
    yield messages
    logger.remove(handler_id)


def _make_tree(root: Path, dirs: Iterable[str] = (), files: Iterable[str] = ()) -> Path:
    """Create *dirs* and empty *files* (both relative, ``/``-separated) under *root*."""
    for rel in dirs:
        (root / rel).mkdir(parents=True, exist_ok=True)
    for rel in files:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
    return root


@pytest.fixture
def make_tree():
    """Return the tree builder: ``make_tree(root, dirs=[...], files=[...])``."""
    return _make_tree
