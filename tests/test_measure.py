"""Tests for duc-based measurement (subprocess mocked — duc need not be installed)."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from nfs_usage.errors import MeasurementError
from nfs_usage.measure import DucMeasurer, Measurement, parse_duc_xml
from nfs_usage.settings import MeasureSettings

DUC_XML = '<?xml version="1.0" encoding="UTF-8"?>\n<duc root="{root}" size_apparent="1000" size_actual="4096">\n</duc>\n'


def _fake_duc(xml: str | bytes | None = None, *, create_db: bool = True, index_rc: int = 0):
    """subprocess.run stand-in: ``duc index`` touches the database, ``duc xml`` prints *xml*."""
    calls: list[list[str]] = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        if "-m" in cmd:
            if create_db:
                Path(cmd[cmd.index("-d") + 1]).touch()
            return subprocess.CompletedProcess(cmd, index_rc, stdout=b"", stderr=b"" if index_rc == 0 else b"boom")
        out = xml if xml is not None else DUC_XML.format(root=cmd[2])
        if isinstance(out, str):
            out = out.encode()
        return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr=b"")

    return run, calls


@pytest.fixture
def measurer(tmp_path):
    return DucMeasurer(MeasureSettings(), tmp_path / "out")


@pytest.fixture
def target_dir(tmp_path):
    path = tmp_path / "mnt" / "global" / "vol1"
    path.mkdir(parents=True)
    return path


# ---------------------------------------------------------------------------
# parse_duc_xml
# ---------------------------------------------------------------------------


class TestParseDucXml:
    def test_prefers_actual_size(self) -> None:
        assert parse_duc_xml(DUC_XML.format(root="/mnt/a"), "/mnt/a") == Measurement(root="/mnt/a", size="4096")

    def test_falls_back_to_size(self) -> None:
        assert parse_duc_xml('<duc root="/mnt/a" size="77"/>', "/mnt/a").size == "77"

    def test_falls_back_to_apparent_size(self) -> None:
        assert parse_duc_xml('<duc root="/mnt/a" size_apparent="5"/>', "/mnt/a").size == "5"

    @pytest.mark.parametrize(
        ("xml", "reason"),
        [
            ("not xml", "malformed"),
            ('<ent root="/mnt/a" size="1"/>', "unexpected root element"),
            ('<duc size="1"/>', "no root attribute"),
            ('<duc root="/mnt/a"/>', "no size attribute"),
        ],
    )
    def test_bad_output(self, xml: str, reason: str) -> None:
        with pytest.raises(MeasurementError, match=reason) as exc_info:
            parse_duc_xml(xml, "/mnt/a")
        assert exc_info.value.path == "/mnt/a"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_index_command_low_priority(self, measurer, tmp_path) -> None:
        db = tmp_path / "x.db"
        assert measurer.index_command("/mnt/a", db) == [
            "nice", "-n", "19", "ionice", "-c", "3",
            "duc", "index", "/mnt/a", "-d", str(db), "-m", "2",
        ]  # fmt: skip

    def test_index_command_normal_priority(self, tmp_path) -> None:
        m = DucMeasurer(MeasureSettings(low_priority=False, max_depth=4, duc_binary="/opt/duc"), tmp_path)
        db = tmp_path / "x.db"
        assert m.index_command("/mnt/a", db) == ["/opt/duc", "index", "/mnt/a", "-d", str(db), "-m", "4"]

    def test_xml_command(self, measurer, tmp_path) -> None:
        db = tmp_path / "x.db"
        assert measurer.xml_command("/mnt/a", db) == ["duc", "xml", "/mnt/a", "-d", str(db)]

    def test_database_path(self, measurer, tmp_path) -> None:
        path = measurer.database_path("/mnt/global/vol1")
        assert path.parent == tmp_path / "out"
        assert re.fullmatch(r"mnt\.global\.vol1\.\d+\.db", path.name)


# ---------------------------------------------------------------------------
# measure
# ---------------------------------------------------------------------------


class TestMeasure:
    def test_missing_dir_is_no_data(self, measurer, tmp_path) -> None:
        with patch("nfs_usage.measure.subprocess.run") as run:
            assert measurer.measure(str(tmp_path / "gone")) is None
        run.assert_not_called()

    def test_success(self, measurer, target_dir, tmp_path) -> None:
        fake, calls = _fake_duc()
        with patch("nfs_usage.measure.subprocess.run", side_effect=fake):
            result = measurer.measure(str(target_dir))

        assert result == Measurement(root=str(target_dir), size="4096")
        assert len(calls) == 2
        assert calls[0][:2] == ["nice", "-n"]
        assert calls[1][:2] == ["duc", "xml"]
        assert (tmp_path / "out").is_dir()

    def test_index_failure(self, measurer, target_dir) -> None:
        fake, calls = _fake_duc(index_rc=1)
        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=fake),
            pytest.raises(MeasurementError, match="exited 1: boom"),
        ):
            measurer.measure(str(target_dir))
        assert len(calls) == 1

    def test_database_not_created(self, measurer, target_dir) -> None:
        fake, _ = _fake_duc(create_db=False)
        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=fake),
            pytest.raises(MeasurementError, match="was not created"),
        ):
            measurer.measure(str(target_dir))

    def test_binary_missing(self, measurer, target_dir) -> None:
        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=FileNotFoundError("nice")),
            pytest.raises(MeasurementError, match="command not found: nice"),
        ):
            measurer.measure(str(target_dir))

    def test_timeout(self, tmp_path, target_dir) -> None:
        m = DucMeasurer(MeasureSettings(timeout_s=5), tmp_path)
        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=subprocess.TimeoutExpired(["duc"], 5)),
            pytest.raises(MeasurementError, match="timed out after 5"),
        ):
            m.measure(str(target_dir))

    def test_bad_xml(self, measurer, target_dir) -> None:
        fake, _ = _fake_duc(xml="<oops")
        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=fake),
            pytest.raises(MeasurementError, match="malformed duc xml"),
        ):
            measurer.measure(str(target_dir))

    def test_non_utf8_entry_names(self, measurer, target_dir) -> None:
        fake, _ = _fake_duc(xml=b'<duc root="/mnt/g/v" size="1"><ent name="caf\xe9"/></duc>')
        with patch("nfs_usage.measure.subprocess.run", side_effect=fake):
            result = measurer.measure(str(target_dir))
        assert result == Measurement(root="/mnt/g/v", size="1")

    def test_non_utf8_root_is_replaced(self, measurer, target_dir) -> None:
        fake, _ = _fake_duc(xml=b'<duc root="/mnt/g/caf\xe9" size="1"/>')
        with patch("nfs_usage.measure.subprocess.run", side_effect=fake):
            result = measurer.measure(str(target_dir))
        assert result.root == "/mnt/g/caf\ufffd"

    def test_non_utf8_stderr(self, measurer, target_dir) -> None:
        def run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 2, stdout=b"", stderr=b"cannot open caf\xe9")

        with (
            patch("nfs_usage.measure.subprocess.run", side_effect=run),
            pytest.raises(MeasurementError, match="exited 2: cannot open caf\ufffd"),
        ):
            measurer.measure(str(target_dir))
