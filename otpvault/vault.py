"""
Local credential vault.

Owns the persisted entry list. Each mutation reads a snapshot, computes the
new list and writes it back together with ``entriesLastModified`` in a single
store call.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from otpvault import otp, otpauth
from otpvault.backup import VaultEnvelope
from otpvault.context import VaultContext
from otpvault.crypto import VaultCipher
from otpvault.errors import DuplicateAccount, InvalidParameter
from otpvault.storage import CredentialEntry, OtpKind, load_entries, new_entry_id
from . import config

logger = logging.getLogger(__name__)


def merge_entries(local: List[CredentialEntry],
                  remote: List[CredentialEntry]) -> Tuple[List[CredentialEntry], int]:
    """
    Union of two entry lists keyed by id.

    Local entries keep their position and content; remote entries whose id is
    not present locally, and whose issuer and secret do not match an entry
    already kept, are appended in remote order. Re-merging the same remote
    list changes nothing.

    Returns:
        (merged list, number of remote entries appended)
    """
    merged = list(local)
    seen = {e.id for e in merged}
    identities = {e.identity() for e in merged}
    imported = 0
    for entry in remote:
        if entry.id in seen or entry.identity() in identities:
            continue
        merged.append(entry)
        seen.add(entry.id)
        identities.add(entry.identity())
        imported += 1
    return merged, imported


class CredentialVault:
    """Manages the stored OTP credentials."""

    def __init__(self, context: VaultContext, cipher: Optional[VaultCipher] = None):
        self.context = context
        self.store = context.store
        self.cipher = cipher or VaultCipher()
        self._lock = threading.Lock()

    def entries(self) -> List[CredentialEntry]:
        return load_entries(self.store)

    def get(self, entry_id: str) -> Optional[CredentialEntry]:
        for entry in self.entries():
            if entry.id == entry_id:
                return entry
        return None

    def last_modified(self) -> int:
        return int(self.store.get_value(config.KEY_ENTRIES_LAST_MODIFIED, 0) or 0)

    def _commit(self, entries: List[CredentialEntry], modified_at: Optional[int] = None,
                extra: Optional[Dict[str, Any]] = None) -> None:
        items = {
            config.KEY_ENTRIES: [e.to_dict() for e in entries],
            config.KEY_ENTRIES_LAST_MODIFIED: self.context.clock() if modified_at is None else modified_at,
        }
        if extra:
            items.update(extra)
        self.store.set(items)

    def add(self, entry: CredentialEntry) -> CredentialEntry:
        """
        Add an entry.

        Raises:
            DuplicateAccount: an entry with the same issuer and secret exists
        """
        with self._lock:
            entries = self.entries()
            if any(e.identity() == entry.identity() for e in entries):
                logger.info(f"Duplicate account rejected for issuer {entry.issuer!r}")
                raise DuplicateAccount(entry.issuer)
            if any(e.id == entry.id for e in entries):
                entry.id = new_entry_id()
            entries.append(entry)
            self._commit(entries)
        logger.info(f"Added {entry.kind.value} entry {entry.id}")
        return entry

    def add_uri(self, uri: str) -> CredentialEntry:
        """Parse a scanned or typed otpauth:// URI and add it."""
        return self.add(otpauth.parse(uri))

    def update(self, entry_id: str, **changes) -> bool:
        """
        Edit fields of an entry, keeping its id. The edited record is
        validated again before it is stored."""
        changes.pop("id", None)
        with self._lock:
            entries = self.entries()
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    data = entry.to_dict()
                    data.update(changes)
                    entries[i] = CredentialEntry.from_dict(data)
                    self._commit(entries)
                    return True
            return False

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            entries = self.entries()
            remaining = [e for e in entries if e.id != entry_id]
            if len(remaining) < len(entries):
                self._commit(remaining)
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._commit([])
        logger.info("Vault cleared")

    def accept_hotp(self, entry_id: str) -> CredentialEntry:
        """
        Advance an HOTP counter after its code was used.

        Raises:
            KeyError: unknown entry
            InvalidParameter: the entry is not HOTP, or its counter is already
                at MAX_COUNTER
        """
        with self._lock:
            entries = self.entries()
            for entry in entries:
                if entry.id == entry_id:
                    if entry.kind is not OtpKind.HOTP:
                        raise InvalidParameter("kind", entry.kind.value)
                    if entry.counter >= config.MAX_COUNTER:
                        raise InvalidParameter("counter", entry.counter + 1)
                    entry.counter += 1
                    self._commit(entries)
                    return entry
        raise KeyError(entry_id)

    def code_for(self, entry_id: str, now: Optional[float] = None) -> str:
        entry = self.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        return otp.generate(entry, now, self.context.clock_offset())

    def export_backup(self, password: Optional[str] = None) -> VaultEnvelope:
        """Envelope of the current entries, encrypted when a password is given."""
        return VaultEnvelope.build(self.entries(), password, self.cipher, self.context.clock())

    def import_backup(self, text, password: Optional[str] = None) -> int:
        """
        Merge a backup file into the vault.

        Raises:
            RemoteFormatError: unreadable file, wrong password or invalid records
        """
        remote = VaultEnvelope.from_json(text).open(password, self.cipher)
        with self._lock:
            merged, imported = merge_entries(self.entries(), remote)
            if imported:
                self._commit(merged)
        logger.info(f"Imported {imported} entries from backup")
        return imported

    def merge_remote(self, remote: List[CredentialEntry], remote_timestamp: int) -> int:
        """
        Merge a downloaded entry set and record the sync, in one store call.

        The local snapshot is taken under the vault lock so an edit made while
        the download was in flight is not lost. When the local set holds
        entries the remote lacks, ``entriesLastModified`` moves to now so the
        next sync uploads the union; otherwise it takes the remote timestamp.
        """
        with self._lock:
            local = self.entries()
            merged, imported = merge_entries(local, remote)
            remote_ids = {e.id for e in remote}
            local_only = any(e.id not in remote_ids for e in local)
            modified_at = self.context.clock() if local_only else max(self.last_modified(), remote_timestamp)
            last_synced = int(self.store.get_value(config.KEY_LAST_SYNCED, 0) or 0)
            self._commit(merged, modified_at, {config.KEY_LAST_SYNCED: max(last_synced, remote_timestamp)})
        return imported
