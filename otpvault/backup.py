"""
Backup envelope: the JSON document written to export files and WebDAV.

    {"version": "1.0", "timestamp": <ms>, "accounts": [...]}
    {"version": "1.0", "timestamp": <ms>, "encrypted": true, "format": "v1", "data": "<salt>:<iv>:<ciphertext>"}
"""

import datetime
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from otpvault.crypto import VaultCipher, detect_format
from otpvault.errors import InvalidParameter, InvalidSecretKey, RemoteFormatError, UnsupportedAlgorithm
from otpvault.storage import CredentialEntry
from otpvault.utils import now_ms
from . import config

logger = logging.getLogger(__name__)


def backup_filename(now: Optional[datetime.datetime] = None) -> str:
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return f"{config.BACKUP_FILE_PREFIX}{now.strftime(config.BACKUP_TIMESTAMP_FORMAT)}{config.BACKUP_FILE_SUFFIX}"


def is_backup_name(name: str) -> bool:
    return config.BACKUP_NAME_MARKER in name and name.endswith(config.BACKUP_FILE_SUFFIX)


@dataclass
class VaultEnvelope:
    """Transient wrapper around exported credential data."""
    timestamp: int
    accounts: Optional[List[Dict[str, Any]]] = None
    data: Optional[str] = None
    encrypted: bool = False
    format: Optional[str] = None
    version: str = config.BACKUP_VERSION

    @classmethod
    def build(cls, entries: List[CredentialEntry], password: Optional[str] = None,
              cipher: Optional[VaultCipher] = None, timestamp: Optional[int] = None) -> "VaultEnvelope":
        """Wrap entries, encrypting them when a password is given."""
        if timestamp is None:
            timestamp = now_ms()
        accounts = [e.to_dict() for e in entries]
        if not password:
            return cls(timestamp=timestamp, accounts=accounts)
        cipher = cipher or VaultCipher()
        blob = cipher.encrypt(json.dumps(accounts), password)
        return cls(timestamp=timestamp, data=blob, encrypted=True, format=config.CIPHER_FORMAT_V1)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"version": self.version, "timestamp": self.timestamp}
        if self.encrypted:
            out["encrypted"] = True
            out["format"] = self.format or config.CIPHER_FORMAT_V1
            out["data"] = self.data
        else:
            out["accounts"] = self.accounts or []
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, raw: Any) -> "VaultEnvelope":
        if not isinstance(raw, dict):
            raise RemoteFormatError("Backup is not a JSON object")
        timestamp = raw.get("timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise RemoteFormatError("Backup timestamp is not a number")
        if raw.get("encrypted") and raw.get("data"):
            data = raw["data"]
            if not isinstance(data, str):
                raise RemoteFormatError("Encrypted backup data is not a string")
            # Files written before the format tag existed are classified by shape
            fmt = raw.get("format") or detect_format(data)
            return cls(timestamp=int(timestamp), data=data, encrypted=True, format=fmt,
                       version=str(raw.get("version", config.BACKUP_VERSION)))
        accounts = raw.get("accounts")
        if not isinstance(accounts, list):
            raise RemoteFormatError("Backup has no accounts list")
        return cls(timestamp=int(timestamp), accounts=accounts,
                   version=str(raw.get("version", config.BACKUP_VERSION)))

    @classmethod
    def from_json(cls, text) -> "VaultEnvelope":
        try:
            raw = json.loads(text)
        except (TypeError, ValueError) as e:
            raise RemoteFormatError(f"Backup is not valid JSON: {e}") from e
        return cls.from_dict(raw)

    def open(self, password: Optional[str] = None, cipher: Optional[VaultCipher] = None) -> List[CredentialEntry]:
        """
        Return the entries held by the envelope.

        Raises:
            RemoteFormatError: wrong password, corrupted data, or records that
                do not validate
        """
        if self.encrypted:
            if not password:
                raise RemoteFormatError("Backup is encrypted and no password was given")
            cipher = cipher or VaultCipher()
            plaintext = cipher.decrypt(self.data, password, self.format)
            if plaintext is None:
                raise RemoteFormatError(config.DECRYPT_FAILED_MESSAGE)
            try:
                accounts = json.loads(plaintext)
            except ValueError:
                raise RemoteFormatError(config.DECRYPT_FAILED_MESSAGE)
            if not isinstance(accounts, list):
                raise RemoteFormatError("Decrypted backup is not an accounts list")
        else:
            accounts = self.accounts or []

        entries = []
        for raw in accounts:
            if not isinstance(raw, dict):
                raise RemoteFormatError("Backup account is not an object")
            try:
                entries.append(CredentialEntry.from_dict(raw))
            except (InvalidParameter, InvalidSecretKey, UnsupportedAlgorithm) as e:
                raise RemoteFormatError(f"Backup account is invalid: {e}") from e
        return entries
