"""
WebDAV sync conflict resolver.

One invocation runs strictly in sequence: snapshot the local timestamp, list
the remote collection, decide, act, log, advance ``lastSyncedTimestamp``.
Invocations from the alarm, the "sync now" command and startup share one
single-flight guard, so at most one runs at a time.

Decision, comparing the local mutation time with the newest remote backup:
    remote newer  -> download and merge by id
    local newer   -> upload a fresh envelope
    equal         -> nothing to transfer, sync confirmed

Failures are written to the sync log and returned in the result; local
storage is only written after everything it depends on has succeeded.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import httpx

from otpvault.backup import VaultEnvelope, backup_filename
from otpvault.context import VaultContext
from otpvault.errors import OtpVaultError
from otpvault.sync_log import SyncOperation
from otpvault.vault import CredentialVault
from otpvault.webdav import RemoteFile, WebDAVClient, WebDAVConfig, filter_retention, newest
from . import config

logger = logging.getLogger(__name__)

SYNC_ERRORS = (OtpVaultError, httpx.HTTPError, ValueError, OSError)


class SyncAction(str, Enum):
    DOWNLOAD = "DOWNLOAD"
    UPLOAD = "UPLOAD"
    NOOP = "NOOP"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass
class SyncResult:
    action: SyncAction
    imported: int = 0
    uploaded_name: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.action not in (SyncAction.FAILED, SyncAction.SKIPPED)


def decide(local_timestamp: int, remote_timestamp: int) -> SyncAction:
    if remote_timestamp > local_timestamp:
        return SyncAction.DOWNLOAD
    if local_timestamp > remote_timestamp:
        return SyncAction.UPLOAD
    return SyncAction.NOOP


class SyncResolver:
    """Reconciles the local vault with the newest backup on the WebDAV server."""

    def __init__(self, context: VaultContext, vault: Optional[CredentialVault] = None,
                 backup_password: Optional[str] = None):
        self.context = context
        self.vault = vault or CredentialVault(context)
        self.backup_password = backup_password
        self.log = context.sync_log

    def _last_synced(self) -> int:
        return int(self.context.store.get_value(config.KEY_LAST_SYNCED, 0) or 0)

    def _advance_last_synced(self, value: int) -> None:
        self.context.store.set({config.KEY_LAST_SYNCED: max(self._last_synced(), value)})

    def _config_or_none(self, operation: SyncOperation) -> Optional[WebDAVConfig]:
        try:
            webdav_config = self.context.load_webdav_config()
        except OtpVaultError as e:
            self.log.error(operation, "Stored WebDAV configuration is invalid", str(e))
            return None
        if not webdav_config.is_complete():
            self.log.warn(operation, "WebDAV is not configured")
            return None
        return webdav_config

    def sync(self, trigger: str = "manual") -> SyncResult:
        """Run one reconcile pass. Never raises for network or format problems."""
        with self.context.single_flight.hold(config.SYNC_LOCK_NAME) as acquired:
            if not acquired:
                self.log.info(SyncOperation.SYNC_SKIPPED, "Sync already in progress", f"trigger={trigger}")
                return SyncResult(SyncAction.SKIPPED)
            return self._sync(trigger)

    def _sync(self, trigger: str) -> SyncResult:
        webdav_config = self._config_or_none(SyncOperation.SYNC_START)
        if webdav_config is None:
            return SyncResult(SyncAction.FAILED, error="WebDAV is not configured")

        self.log.info(SyncOperation.SYNC_START, "Sync started", f"trigger={trigger}")
        operation = SyncOperation.LIST_BACKUPS
        try:
            local_timestamp = self.vault.last_modified()
            with self.context.webdav_client(webdav_config) as client:
                files = client.list_backups()
                latest = newest(files)
                remote_timestamp = latest.modified_ms if latest else 0
                self.log.info(SyncOperation.LIST_BACKUPS, f"Found {len(files)} backup(s)",
                              f"local={local_timestamp} remote={remote_timestamp}")

                action = decide(local_timestamp, remote_timestamp)
                if action is SyncAction.DOWNLOAD:
                    operation = SyncOperation.RESTORE_FAILED
                    imported = self._download(client, latest.name, remote_timestamp)
                    return SyncResult(SyncAction.DOWNLOAD, imported=imported)
                if action is SyncAction.UPLOAD:
                    operation = SyncOperation.BACKUP_FAILED
                    name = self._upload(client, local_timestamp)
                    return SyncResult(SyncAction.UPLOAD, uploaded_name=name)

            self._advance_last_synced(local_timestamp)
            self.log.info(SyncOperation.SYNC_NOOP, "Local and remote are in sync")
            return SyncResult(SyncAction.NOOP)
        except SYNC_ERRORS as e:
            if operation is SyncOperation.LIST_BACKUPS:
                self.log.error(operation, "Failed to list backups", str(e))
            else:
                self.log.error(operation, "Sync failed", str(e))
            return SyncResult(SyncAction.FAILED, error=str(e))

    def _download(self, client: WebDAVClient, name: str, remote_timestamp: int) -> int:
        self.log.info(SyncOperation.RESTORE_START, f"Downloading {name}")
        body = client.download(name)
        remote = VaultEnvelope.from_json(body).open(self.backup_password, self.vault.cipher)
        imported = self.vault.merge_remote(remote, remote_timestamp)
        self.log.info(SyncOperation.RESTORE_SUCCESS, f"Restored from {name}", f"imported={imported}")
        return imported

    def _upload(self, client: WebDAVClient, local_timestamp: int) -> str:
        entries = self.vault.entries()
        envelope = VaultEnvelope.build(entries, self.backup_password,
                                       self.vault.cipher, self.context.clock())
        name = backup_filename()
        self.log.info(SyncOperation.BACKUP_START, f"Uploading {name}")
        client.upload(name, envelope.to_json())
        self._advance_last_synced(max(local_timestamp, envelope.timestamp))
        self.log.info(SyncOperation.BACKUP_SUCCESS, f"Backed up to {name}", f"accounts={len(entries)}")
        return name

    def backup_now(self) -> SyncResult:
        """Upload unconditionally (the "back up now" command)."""
        with self.context.single_flight.hold(config.SYNC_LOCK_NAME) as acquired:
            if not acquired:
                self.log.info(SyncOperation.SYNC_SKIPPED, "Sync already in progress", "trigger=backup")
                return SyncResult(SyncAction.SKIPPED)
            webdav_config = self._config_or_none(SyncOperation.BACKUP_FAILED)
            if webdav_config is None:
                return SyncResult(SyncAction.FAILED, error="WebDAV is not configured")
            if not self.vault.entries():
                self.log.warn(SyncOperation.BACKUP_FAILED, "No accounts to back up")
                return SyncResult(SyncAction.FAILED, error="No accounts to back up")
            try:
                with self.context.webdav_client(webdav_config) as client:
                    name = self._upload(client, self.vault.last_modified())
            except SYNC_ERRORS as e:
                self.log.error(SyncOperation.BACKUP_FAILED, "Backup failed", str(e))
                return SyncResult(SyncAction.FAILED, error=str(e))
            return SyncResult(SyncAction.UPLOAD, uploaded_name=name)

    def list_restore_points(self) -> List[RemoteFile]:
        """
        Remote backups offered for manual restore, newest first, with the
        retention window applied. Raises on network or format errors so the
        caller can report them."""
        webdav_config = self.context.load_webdav_config()
        if not webdav_config.is_complete():
            raise OtpVaultError("WebDAV is not configured")
        try:
            with self.context.webdav_client(webdav_config) as client:
                files = client.list_backups()
        except SYNC_ERRORS as e:
            self.log.error(SyncOperation.LIST_BACKUPS, "Failed to list backups", str(e))
            raise
        visible = filter_retention(files, webdav_config.retention_days, self.context.clock())
        self.log.info(SyncOperation.LIST_BACKUPS, f"Found {len(visible)} backup(s)",
                      f"hidden_by_retention={len(files) - len(visible)}")
        return visible

    def restore(self, name: str) -> SyncResult:
        """Download a chosen backup and merge it into the vault."""
        with self.context.single_flight.hold(config.SYNC_LOCK_NAME) as acquired:
            if not acquired:
                self.log.info(SyncOperation.SYNC_SKIPPED, "Sync already in progress", "trigger=restore")
                return SyncResult(SyncAction.SKIPPED)
            webdav_config = self._config_or_none(SyncOperation.RESTORE_FAILED)
            if webdav_config is None:
                return SyncResult(SyncAction.FAILED, error="WebDAV is not configured")
            try:
                with self.context.webdav_client(webdav_config) as client:
                    self.log.info(SyncOperation.RESTORE_START, f"Downloading {name}")
                    envelope = VaultEnvelope.from_json(client.download(name))
                    remote = envelope.open(self.backup_password, self.vault.cipher)
                    imported = self.vault.merge_remote(remote, envelope.timestamp)
            except SYNC_ERRORS as e:
                self.log.error(SyncOperation.RESTORE_FAILED, "Restore failed", str(e))
                return SyncResult(SyncAction.FAILED, error=str(e))
            self.log.info(SyncOperation.RESTORE_SUCCESS, f"Restored from {name}", f"imported={imported}")
            return SyncResult(SyncAction.DOWNLOAD, imported=imported)
