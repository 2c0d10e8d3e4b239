"""Tests for automatic backup scheduling."""

import threading

import pytest

from conftest import make_entry
from otpvault import config
from otpvault.errors import InvalidParameter
from otpvault.scheduler import AlarmScheduler, BackupScheduler, ThreadingAlarmScheduler
from otpvault.sync import SyncAction, SyncResolver
from otpvault.sync_log import SyncOperation


class RecordingAlarms(AlarmScheduler):
    def __init__(self):
        self.scheduled = {}
        self.cancelled = []

    def schedule(self, name, interval_minutes, callback):
        self.scheduled[name] = (interval_minutes, callback)

    def cancel(self, name):
        self.scheduled.pop(name, None)
        self.cancelled.append(name)


@pytest.fixture
def alarms():
    return RecordingAlarms()


@pytest.fixture
def scheduler(context, vault, alarms):
    return BackupScheduler(context, SyncResolver(context, vault), alarms)


class TestConfigure:
    """Saving the configuration arms or disarms the alarm."""

    def test_enable(self, scheduler, alarms, context, webdav_config):
        webdav_config.auto_backup = True
        webdav_config.interval_minutes = 360
        scheduler.configure(webdav_config)
        interval, callback = alarms.scheduled[config.AUTO_BACKUP_ALARM]
        assert interval == 360
        assert callback == scheduler.on_alarm
        assert context.load_webdav_config() == webdav_config
        assert context.settings["webdavConfigured"] is True
        assert context.sync_log.read_all()[0].operation is SyncOperation.CONFIG_SAVED

    def test_disable(self, scheduler, alarms, webdav_config):
        scheduler.configure(webdav_config)
        assert alarms.cancelled == [config.AUTO_BACKUP_ALARM]
        assert alarms.scheduled == {}

    def test_rejects_unknown_interval(self, scheduler, webdav_config):
        webdav_config.interval_minutes = 90
        with pytest.raises(InvalidParameter):
            scheduler.configure(webdav_config)


class TestAlarm:
    """Alarm handling and the no-change short circuit."""

    def test_uploads_pending_changes(self, scheduler, configured, vault, dav):
        vault.add(make_entry())
        result = scheduler.on_alarm(config.AUTO_BACKUP_ALARM)
        assert result.action is SyncAction.UPLOAD
        operations = [e.operation for e in configured.sync_log.read_all()]
        assert SyncOperation.AUTO_BACKUP_TRIGGER in operations

    def test_skips_when_nothing_changed(self, scheduler, configured, vault, dav):
        vault.add(make_entry())
        scheduler.on_alarm(config.AUTO_BACKUP_ALARM)
        requests = len(dav.requests)
        assert scheduler.on_alarm(config.AUTO_BACKUP_ALARM) is None
        assert len(dav.requests) == requests

    def test_skips_when_not_configured(self, scheduler, vault, dav):
        vault.add(make_entry())
        assert scheduler.on_alarm(config.AUTO_BACKUP_ALARM) is None
        assert dav.requests == []

    def test_ignores_other_alarms(self, scheduler, configured, vault, dav):
        vault.add(make_entry())
        assert scheduler.on_alarm("somethingElse") is None
        assert dav.requests == []

    def test_startup_rearms_and_catches_up(self, scheduler, context, vault, alarms, webdav_config, dav):
        webdav_config.auto_backup = True
        context.save_webdav_config(webdav_config)
        vault.add(make_entry())
        result = scheduler.on_startup()
        assert config.AUTO_BACKUP_ALARM in alarms.scheduled
        assert result.action is SyncAction.UPLOAD


class TestThreadingAlarmScheduler:
    """Timer-backed alarms."""

    def test_fires_and_rearms(self):
        alarms = ThreadingAlarmScheduler()
        fired = []
        twice = threading.Event()

        def callback(name):
            fired.append(name)
            if len(fired) >= 2:
                twice.set()

        alarms.schedule("tick", 0.0005, callback)
        try:
            assert twice.wait(5)
        finally:
            alarms.cancel("tick")
        assert set(fired) == {"tick"}
        assert not alarms.active("tick")

    def test_callback_errors_do_not_stop_alarm(self):
        alarms = ThreadingAlarmScheduler()
        calls = []
        done = threading.Event()

        def callback(name):
            calls.append(name)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("boom")

        alarms.schedule("tick", 0.0005, callback)
        try:
            assert done.wait(5)
        finally:
            alarms.cancel("tick")

    def test_cancel_prevents_firing(self):
        alarms = ThreadingAlarmScheduler()
        fired = threading.Event()
        alarms.schedule("tick", 0.01, lambda name: fired.set())
        alarms.cancel("tick")
        assert not fired.wait(1)
