"""Tests for the command line interface."""

import json

import pytest

from otpvault import config
from otpvault.main import OtpVaultApp, main
from otpvault.scheduler import AlarmScheduler
from otpvault.webdav import WebDAVConfig


@pytest.fixture
def run(tmp_path, capsys):
    def _run(*argv):
        code = main(["--data-dir", str(tmp_path), *argv])
        out, err = capsys.readouterr()
        return code, out, err
    return _run


def test_add_and_list(run):
    code, out, _ = run("add", "--uri", "otpauth://totp/GitHub:octocat?secret=JBSWY3DPEHPK3PXP")
    assert code == 0
    entry_id = out.strip()
    code, out, _ = run("list")
    assert code == 0
    assert entry_id in out
    assert "GitHub:octocat" in out


def test_uri(run):
    _, out, _ = run("add", "--secret", "JBSWY3DPEHPK3PXP", "--issuer", "Acme", "--account", "bob")
    code, out, _ = run("uri", out.strip())
    assert code == 0
    assert out.strip().startswith("otpauth://totp/Acme:bob?secret=JBSWY3DPEHPK3PXP")


def test_hotp_next(run):
    _, out, _ = run("add", "--secret", "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "--account", "rfc", "--hotp")
    code, out, _ = run("next", out.strip())
    assert code == 0
    assert out.strip() == "287082"


def test_duplicate_reports_error(run):
    run("add", "--secret", "JBSWY3DPEHPK3PXP", "--issuer", "Acme", "--account", "bob")
    code, _, err = run("add", "--secret", "JBSWY3DPEHPK3PXP", "--issuer", "Acme", "--account", "other")
    assert code == 1
    assert "already exists" in err


def test_add_requires_secret_or_uri(run):
    code, _, err = run("add", "--issuer", "Acme")
    assert code == 1
    assert "--uri or --secret" in err


def test_export_import(run, tmp_path):
    run("add", "--secret", "JBSWY3DPEHPK3PXP", "--issuer", "Acme", "--account", "bob")
    backup = tmp_path / "backup.json"
    assert run("export", str(backup), "--password", "pw")[0] == 0
    assert json.loads(backup.read_text(encoding="utf-8"))["encrypted"] is True

    _, out, _ = run("list")
    entry_id = out.split()[0]
    assert run("delete", entry_id)[0] == 0
    code, out, _ = run("import", str(backup), "--password", "pw")
    assert code == 0
    assert "Imported 1" in out


def test_delete_unknown(run):
    code, _, err = run("delete", "nope")
    assert code == 1
    assert "No entry" in err


def test_webdav_config_and_logs(run):
    code, _, _ = run("webdav-config", "--url", "https://dav.example.com/otp/", "--username", "u",
                     "--password", "p", "--interval", "60")
    assert code == 0
    code, out, _ = run("logs")
    assert "CONFIG_SAVED" in out
    run("logs", "--clear")
    assert run("logs")[1] == ""


def test_sync_without_config_fails(run):
    code, _, err = run("sync")
    assert code == 1
    assert "not configured" in err


class RecordingAlarms(AlarmScheduler):
    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, name, interval_minutes, callback):
        self.scheduled.append((name, interval_minutes))

    def cancel(self, name):
        self.cancelled.append(name)


def test_watch_requires_auto_backup(run):
    code, _, err = run("watch")
    assert code == 1
    assert "not enabled" in err


def test_webdav_config_points_to_watch(run):
    code, out, _ = run("webdav-config", "--url", "https://dav.example.com/otp/", "--username", "u",
                       "--password", "p", "--interval", "60", "--auto-backup")
    assert code == 0
    assert "otpvault watch" in out


def test_watch_arms_alarm_until_stopped(tmp_path, capsys):
    app = OtpVaultApp(str(tmp_path))
    alarms = RecordingAlarms()
    app.scheduler.alarms = alarms
    app.scheduler.configure(WebDAVConfig(server_url="https://dav.example.com/otp/", username="u",
                                         password="p", auto_backup=True, interval_minutes=60))
    app.stop_event.set()

    assert app.cmd_watch(None) == 0
    assert alarms.scheduled[-1] == (config.AUTO_BACKUP_ALARM, 60)
    assert alarms.cancelled == [config.AUTO_BACKUP_ALARM]
    assert "every 60 minutes" in capsys.readouterr().out
