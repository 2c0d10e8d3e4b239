"""
Bounded operational log for WebDAV backup and restore.

Entries are persisted under ``webdavSyncLogs`` oldest first; once the list
exceeds MAX_SYNC_LOG_ENTRIES the oldest entries are evicted. Every entry is
also mirrored to the Python logger.
"""

import logging
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from otpvault.storage import KeyValueStore
from otpvault.utils import now_ms
from . import config

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class SyncOperation(str, Enum):
    BACKUP_START = "BACKUP_START"
    BACKUP_SUCCESS = "BACKUP_SUCCESS"
    BACKUP_FAILED = "BACKUP_FAILED"
    RESTORE_START = "RESTORE_START"
    RESTORE_SUCCESS = "RESTORE_SUCCESS"
    RESTORE_FAILED = "RESTORE_FAILED"
    CONFIG_SAVED = "CONFIG_SAVED"
    AUTO_BACKUP_TRIGGER = "AUTO_BACKUP_TRIGGER"
    LIST_BACKUPS = "LIST_BACKUPS"
    SYNC_START = "SYNC_START"
    SYNC_SKIPPED = "SYNC_SKIPPED"
    SYNC_NOOP = "SYNC_NOOP"


_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class SyncLogEntry:
    timestamp: int
    level: LogLevel
    operation: SyncOperation
    message: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        data["operation"] = self.operation.value
        if self.details is None:
            del data["details"]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncLogEntry":
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            level=LogLevel(data.get("level", LogLevel.INFO)),
            operation=SyncOperation(data["operation"]),
            message=data.get("message", ""),
            details=data.get("details"),
        )


class SyncLogger:
    """Append-only log capped at ``capacity`` entries."""

    def __init__(self, store: KeyValueStore, capacity: int = config.MAX_SYNC_LOG_ENTRIES,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.capacity = capacity
        self.clock = clock
        self._lock = threading.Lock()

    def append(self, level: LogLevel, operation: SyncOperation, message: str,
               details: Optional[str] = None) -> None:
        """Record an entry. Storage failures are logged, never raised."""
        level = LogLevel(level)
        operation = SyncOperation(operation)
        prefix = f"{config.SYNC_LOG_PREFIX} [{level.value}] [{operation.value}]"
        logger.log(_PY_LEVELS[level], f"{prefix} {message} {details or ''}".rstrip())

        entry = SyncLogEntry(self.clock(), level, operation, message, details)
        try:
            with self._lock:
                logs = self.store.get_value(config.KEY_SYNC_LOGS, []) or []
                logs.append(entry.to_dict())
                while len(logs) > self.capacity:
                    logs.pop(0)
                self.store.set({config.KEY_SYNC_LOGS: logs})
        except Exception as e:
            logger.error(f"{config.SYNC_LOG_PREFIX} Failed to save log: {e}", exc_info=True)

    def info(self, operation: SyncOperation, message: str, details: Optional[str] = None) -> None:
        self.append(LogLevel.INFO, operation, message, details)

    def warn(self, operation: SyncOperation, message: str, details: Optional[str] = None) -> None:
        self.append(LogLevel.WARN, operation, message, details)

    def error(self, operation: SyncOperation, message: str, details: Optional[str] = None) -> None:
        self.append(LogLevel.ERROR, operation, message, details)

    def read_all(self) -> List[SyncLogEntry]:
        """Most recent first."""
        try:
            logs = self.store.get_value(config.KEY_SYNC_LOGS, []) or []
            entries = [SyncLogEntry.from_dict(raw) for raw in logs]
        except Exception as e:
            logger.error(f"{config.SYNC_LOG_PREFIX} Failed to get logs: {e}", exc_info=True)
            return []
        entries.reverse()
        return entries

    def clear(self) -> None:
        try:
            with self._lock:
                self.store.remove([config.KEY_SYNC_LOGS])
            logger.info(f"{config.SYNC_LOG_PREFIX} Logs cleared")
        except Exception as e:
            logger.error(f"{config.SYNC_LOG_PREFIX} Failed to clear logs: {e}", exc_info=True)
