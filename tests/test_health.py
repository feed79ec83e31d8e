"""Unit tests for health check module (mocked clients — no infrastructure needed)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from nfs_usage.errors import IndexStoreError
from nfs_usage.health import (
    CheckResult,
    CheckStatus,
    HealthReport,
    check_duc,
    check_index,
    check_mount,
    check_output_dir,
    check_store,
    run_health_checks,
)
from nfs_usage.settings import MeasureSettings

# ---------------------------------------------------------------------------
# Data model tests
# ---------------------------------------------------------------------------


def test_report_ok_with_warns():
    report = HealthReport(
        checks=[
            CheckResult("a", CheckStatus.OK, "fine"),
            CheckResult("b", CheckStatus.WARN, "degraded"),
        ],
        elapsed_ms=10.0,
    )
    assert report.ok is True


def test_report_fail():
    report = HealthReport(
        checks=[
            CheckResult("a", CheckStatus.OK, "fine"),
            CheckResult("b", CheckStatus.FAIL, "down"),
        ],
        elapsed_ms=10.0,
    )
    assert report.ok is False


# ---------------------------------------------------------------------------
# check_store / check_index
# ---------------------------------------------------------------------------


def _client(**kwargs):
    client = MagicMock(url="http://localhost:9200", index_name="nfs-usage")
    for name, value in kwargs.items():
        setattr(client, name, value)
    return client


def test_check_store_success():
    result = check_store(_client(ping=MagicMock(return_value=True)))
    assert result.status == CheckStatus.OK
    assert "Connected" in result.message


def test_check_store_ping_false():
    result = check_store(_client(ping=MagicMock(return_value=False)))
    assert result.status == CheckStatus.FAIL


def test_check_store_exception():
    result = check_store(_client(ping=MagicMock(side_effect=ConnectionRefusedError("refused"))))
    assert result.status == CheckStatus.FAIL
    assert "refused" in result.detail


def test_check_index_exists():
    result = check_index(_client(index_exists=MagicMock(return_value=True)))
    assert result.status == CheckStatus.OK


def test_check_index_missing_warns():
    result = check_index(_client(index_exists=MagicMock(return_value=False)))
    assert result.status == CheckStatus.WARN
    assert "create-index" in result.suggestion


def test_check_index_error():
    result = check_index(_client(index_exists=MagicMock(side_effect=IndexStoreError("boom"))))
    assert result.status == CheckStatus.FAIL


# ---------------------------------------------------------------------------
# Local checks
# ---------------------------------------------------------------------------


def test_check_mount_ok(settings):
    assert check_mount(settings).status == CheckStatus.OK


def test_check_mount_missing(settings, tmp_path):
    settings = settings.model_copy(update={"mount_dir": tmp_path / "nope"})
    result = check_mount(settings)
    assert result.status == CheckStatus.FAIL
    assert "Not a directory" in result.message


def test_check_output_dir_will_be_created(settings):
    result = check_output_dir(settings)
    assert result.status == CheckStatus.OK
    assert "Will be created" in result.message


def test_check_output_dir_parent_missing(settings, tmp_path):
    settings = settings.model_copy(update={"output_dir": tmp_path / "a" / "b"})
    assert check_output_dir(settings).status == CheckStatus.FAIL


def test_check_duc_found():
    with patch("nfs_usage.health.shutil.which", return_value="/usr/bin/duc"):
        result = check_duc(MeasureSettings())
    assert result.status == CheckStatus.OK


def test_check_duc_missing_wrappers():
    def which(cmd):
        return None if cmd == "ionice" else f"/usr/bin/{cmd}"

    with patch("nfs_usage.health.shutil.which", side_effect=which):
        result = check_duc(MeasureSettings())
    assert result.status == CheckStatus.FAIL
    assert "ionice" in result.message


def test_check_duc_without_low_priority():
    def which(cmd):
        return None if cmd == "ionice" else f"/usr/bin/{cmd}"

    with patch("nfs_usage.health.shutil.which", side_effect=which):
        result = check_duc(MeasureSettings(low_priority=False))
    assert result.status == CheckStatus.OK


# ---------------------------------------------------------------------------
# run_health_checks
# ---------------------------------------------------------------------------


def test_run_health_checks_skips_index_when_store_down(settings):
    client = _client(ping=MagicMock(return_value=False))
    with patch("nfs_usage.health.shutil.which", return_value="/usr/bin/x"):
        report = run_health_checks(settings, client=client)

    by_name = {c.name: c for c in report.checks}
    assert by_name["elasticsearch"].status == CheckStatus.FAIL
    assert by_name["index"].status == CheckStatus.FAIL
    assert "Skipped" in by_name["index"].message
    client.index_exists.assert_not_called()
    client.close.assert_not_called()
    assert report.ok is False


def test_run_health_checks_all_ok(settings):
    client = _client(ping=MagicMock(return_value=True), index_exists=MagicMock(return_value=True))
    with patch("nfs_usage.health.shutil.which", return_value="/usr/bin/x"):
        report = run_health_checks(settings, client=client)

    assert [c.name for c in report.checks] == ["mount", "output_dir", "duc", "elasticsearch", "index"]
    assert report.ok is True
    assert report.elapsed_ms >= 0


def test_run_health_checks_closes_own_client(settings):
    with (
        patch("nfs_usage.health.IndexStoreClient") as cls,
        patch("nfs_usage.health.shutil.which", return_value="/usr/bin/x"),
    ):
        cls.return_value = _client(ping=MagicMock(return_value=True), index_exists=MagicMock(return_value=True))
        run_health_checks(settings)

    cls.return_value.close.assert_called_once()
