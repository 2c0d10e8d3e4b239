"""
Automatic WebDAV backup.

The alarm collaborator fires a named event periodically; the backup scheduler
turns the ``autoBackup`` alarm into a resolver run when WebDAV is configured
and there are local changes the last sync has not covered.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from otpvault.context import VaultContext
from otpvault.errors import InvalidParameter, OtpVaultError
from otpvault.sync import SyncAction, SyncResolver, SyncResult
from otpvault.sync_log import SyncOperation
from otpvault.webdav import WebDAVConfig
from . import config

logger = logging.getLogger(__name__)


class AlarmScheduler:
    """Periodic alarm contract: ``callback(name)`` fires every interval."""

    def schedule(self, name: str, interval_minutes: int, callback: Callable[[str], None]) -> None:
        raise NotImplementedError

    def cancel(self, name: str) -> None:
        raise NotImplementedError


class ThreadingAlarmScheduler(AlarmScheduler):
    """Alarms backed by daemon ``threading.Timer`` objects that re-arm themselves."""

    def __init__(self):
        self._timers: Dict[str, threading.Timer] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def schedule(self, name: str, interval_minutes: int, callback: Callable[[str], None]) -> None:
        self.cancel(name)
        with self._lock:
            generation = self._generations.get(name, 0) + 1
            self._generations[name] = generation
        self._arm(name, generation, interval_minutes * 60, callback)
        logger.info(f"Alarm {name} scheduled every {interval_minutes} minutes")

    def _arm(self, name: str, generation: int, seconds: float, callback: Callable[[str], None]) -> None:
        def fire():
            if not self._current(name, generation):
                return
            try:
                callback(name)
            except Exception as e:
                logger.error(f"Alarm {name} callback failed: {e}", exc_info=True)
            if self._current(name, generation):
                self._arm(name, generation, seconds, callback)

        timer = threading.Timer(seconds, fire)
        timer.daemon = True
        with self._lock:
            if self._generations.get(name) != generation:
                return
            self._timers[name] = timer
        timer.start()

    def _current(self, name: str, generation: int) -> bool:
        with self._lock:
            return self._generations.get(name) == generation and name in self._timers

    def cancel(self, name: str) -> None:
        with self._lock:
            timer = self._timers.pop(name, None)
            self._generations[name] = self._generations.get(name, 0) + 1
        if timer is not None:
            timer.cancel()
            logger.info(f"Alarm {name} cancelled")

    def active(self, name: str) -> bool:
        with self._lock:
            return name in self._timers


class BackupScheduler:
    """Bridges the ``autoBackup`` alarm to the sync resolver."""

    def __init__(self, context: VaultContext, resolver: SyncResolver,
                 alarms: Optional[AlarmScheduler] = None):
        self.context = context
        self.resolver = resolver
        self.alarms = alarms or ThreadingAlarmScheduler()
        self.log = context.sync_log

    def configure(self, webdav_config: WebDAVConfig) -> None:
        """Persist the configuration and arm or disarm the alarm to match."""
        if webdav_config.interval_minutes not in config.BACKUP_INTERVALS_MINUTES:
            raise InvalidParameter("intervalMinutes", webdav_config.interval_minutes)
        self.context.save_webdav_config(webdav_config)
        self.log.info(SyncOperation.CONFIG_SAVED, "WebDAV configuration saved",
                      f"autoBackup={webdav_config.auto_backup} interval={webdav_config.interval_minutes}")
        if webdav_config.auto_backup:
            self.alarms.schedule(config.AUTO_BACKUP_ALARM, webdav_config.interval_minutes, self.on_alarm)
        else:
            self.alarms.cancel(config.AUTO_BACKUP_ALARM)

    def on_alarm(self, name: str) -> Optional[SyncResult]:
        if name != config.AUTO_BACKUP_ALARM:
            return None
        self.log.info(SyncOperation.AUTO_BACKUP_TRIGGER, "Automatic backup triggered")
        return self.run("alarm")

    def on_startup(self) -> Optional[SyncResult]:
        """Startup check: re-arm the alarm if enabled and catch up on pending changes."""
        try:
            webdav_config = self.context.load_webdav_config()
        except OtpVaultError as e:
            logger.warning(f"Ignoring invalid WebDAV configuration at startup: {e}")
            return None
        if webdav_config.auto_backup and webdav_config.is_complete():
            self.alarms.schedule(config.AUTO_BACKUP_ALARM, webdav_config.interval_minutes, self.on_alarm)
        return self.run("startup")

    def run(self, trigger: str) -> Optional[SyncResult]:
        """
        Delegate to the resolver unless there is nothing to do.

        Returns None when short-circuited: WebDAV is incomplete, or no local
        change happened since the last successful sync.
        """
        try:
            webdav_config = self.context.load_webdav_config()
        except OtpVaultError as e:
            logger.warning(f"Skipping {trigger} backup, invalid WebDAV configuration: {e}")
            return None
        if not webdav_config.is_complete():
            logger.debug(f"Skipping {trigger} backup, WebDAV not configured")
            return None

        values = self.context.store.get([config.KEY_ENTRIES_LAST_MODIFIED, config.KEY_LAST_SYNCED])
        last_modified = int(values.get(config.KEY_ENTRIES_LAST_MODIFIED, 0) or 0)
        last_synced = int(values.get(config.KEY_LAST_SYNCED, 0) or 0)
        if last_modified <= last_synced:
            logger.debug(f"Skipping {trigger} backup, no local changes since last sync")
            return None

        result = self.resolver.sync(trigger)
        if result.action is SyncAction.FAILED:
            logger.warning(f"{trigger} backup failed: {result.error}")
        return result
