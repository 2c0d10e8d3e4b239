"""
Explicit application context.

Groups the store, the sync log, the clock and the HTTP client factory that
the vault, resolver and scheduler share, so none of them keep module-level
state.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

import httpx

from otpvault.storage import KeyValueStore
from otpvault.sync_log import SyncLogger
from otpvault.utils import now_ms
from otpvault.webdav import WebDAVClient, WebDAVConfig
from . import config

logger = logging.getLogger(__name__)


class VaultContext:
    """Shared collaborators plus a settings cache with init/reset lifecycle."""

    def __init__(self, store: KeyValueStore,
                 clock: Callable[[], int] = now_ms,
                 http_client_factory: Optional[Callable[[], httpx.Client]] = None,
                 master_password: Optional[str] = None):
        self.store = store
        self.clock = clock
        self.http_client_factory = http_client_factory
        self.master_password = master_password
        self.sync_log = SyncLogger(store, clock=clock)
        self.single_flight = SingleFlight()
        self._settings: Optional[Dict[str, Any]] = None

    def init(self) -> "VaultContext":
        """Load the user settings blob."""
        self._settings = self.store.get_value(config.KEY_USER_SETTINGS, {}) or {}
        return self

    def reset(self) -> None:
        """Drop cached settings; the next access reloads them."""
        self._settings = None

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self.init()
        return self._settings

    def update_settings(self, **changes) -> None:
        merged = dict(self.settings)
        merged.update(changes)
        self.store.set({config.KEY_USER_SETTINGS: merged})
        self._settings = merged

    def clock_offset(self) -> int:
        """Seconds to add to local time before computing TOTP codes."""
        try:
            return int(self.settings.get("offset", 0) or 0)
        except (TypeError, ValueError):
            return 0

    def load_webdav_config(self) -> WebDAVConfig:
        raw = self.store.get_value(config.KEY_WEBDAV_CONFIG)
        return WebDAVConfig.from_dict(raw, self.master_password)

    def save_webdav_config(self, webdav_config: WebDAVConfig) -> None:
        self.store.set({
            config.KEY_WEBDAV_CONFIG: webdav_config.to_dict(self.master_password),
            config.KEY_USER_SETTINGS: dict(self.settings, webdavConfigured=webdav_config.is_complete()),
        })
        self.reset()

    def webdav_client(self, webdav_config: WebDAVConfig) -> WebDAVClient:
        http_client = self.http_client_factory() if self.http_client_factory else None
        return WebDAVClient(webdav_config, http_client=http_client)


class SingleFlight:
    """Named non-blocking guards: a second caller for a busy name is turned away."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[bool]:
        """Yield True when the guard was taken, False when it is already held."""
        lock = self._lock_for(name)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def busy(self, name: str) -> bool:
        return self._lock_for(name).locked()
