"""
Storage management for OTP Vault.

Holds the credential record and the key-value stores the rest of the package
persists into. The file-backed store writes atomically and restricts the file
to its owner.
"""

import copy
import os
import json
import re
import stat
import shutil
import platform
import threading
import uuid
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from otpvault.errors import InvalidParameter, InvalidSecretKey, UnsupportedAlgorithm
from otpvault.utils import restrict_to_owner
from . import config

logger = logging.getLogger(__name__)

_BASE32_RE = re.compile(config.BASE32_PATTERN, re.IGNORECASE)
_ENTRY_ID_NAMESPACE = uuid.UUID(config.ENTRY_ID_NAMESPACE)


class OtpKind(str, Enum):
    TOTP = "TOTP"
    HOTP = "HOTP"


class Algorithm(str, Enum):
    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @classmethod
    def parse(cls, value: Any) -> "Algorithm":
        """Strict conversion; raises UnsupportedAlgorithm for unknown names."""
        if isinstance(value, Algorithm):
            return value
        if isinstance(value, str):
            try:
                return cls(value.upper())
            except ValueError:
                pass
        raise UnsupportedAlgorithm(value)


# Numeric codes used by older exports
_LEGACY_KIND_CODES = {1: OtpKind.TOTP, 2: OtpKind.HOTP}
_LEGACY_ALGORITHM_CODES = {1: Algorithm.SHA1, 2: Algorithm.SHA256, 3: Algorithm.SHA512}


def is_valid_secret(secret: str) -> bool:
    return bool(secret) and _BASE32_RE.match(secret) is not None


def new_entry_id() -> str:
    return uuid.uuid4().hex


def derived_entry_id(issuer: str, account: str, secret: str) -> str:
    """Stable id for records that were stored without one."""
    return uuid.uuid5(_ENTRY_ID_NAMESPACE, f"{issuer}\n{account}\n{secret}").hex


@dataclass
class CredentialEntry:
    """One OTP account.

    ``period`` only matters for TOTP and ``counter`` only for HOTP; the field
    that does not belong to the entry's kind is pinned to its default so two
    entries of the same kind compare equal on what actually generates codes.
    """
    secret: str
    kind: OtpKind = OtpKind.TOTP
    issuer: str = ""
    account: str = ""
    algorithm: Algorithm = Algorithm.SHA1
    digits: int = config.DEFAULT_DIGITS
    period: int = config.DEFAULT_PERIOD
    counter: int = config.DEFAULT_COUNTER
    pinned: bool = False
    folder: Optional[str] = None
    id: str = ""

    def __post_init__(self):
        if not isinstance(self.secret, str) or not is_valid_secret(self.secret):
            raise InvalidSecretKey()
        self.secret = self.secret.upper()
        self.kind = OtpKind(self.kind)
        self.algorithm = Algorithm.parse(self.algorithm)
        self.issuer = self.issuer or ""
        self.account = self.account or ""
        if not self.issuer and not self.account:
            raise InvalidParameter("label", "")

        if isinstance(self.digits, bool) or not isinstance(self.digits, int) \
                or not config.MIN_DIGITS <= self.digits <= config.MAX_DIGITS:
            raise InvalidParameter("digits", self.digits)

        if self.kind is OtpKind.TOTP:
            if isinstance(self.period, bool) or not isinstance(self.period, int) \
                    or not config.MIN_PERIOD <= self.period <= config.MAX_PERIOD:
                raise InvalidParameter("period", self.period)
            self.counter = config.DEFAULT_COUNTER
        else:
            if isinstance(self.counter, bool) or not isinstance(self.counter, int) \
                    or not 0 <= self.counter <= config.MAX_COUNTER:
                raise InvalidParameter("counter", self.counter)
            self.period = config.DEFAULT_PERIOD

        if not self.id:
            self.id = new_entry_id()

    def identity(self) -> tuple:
        """Key used for the duplicate-account check."""
        return (self.issuer, self.secret)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["kind"] = self.kind.value
        data["algorithm"] = self.algorithm.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialEntry":
        """Create from dictionary.

        Accepts records written by older exports, where the id is called
        ``hash`` and kind/algorithm are numeric codes (``type`` 1=TOTP, 2=HOTP;
        ``algorithm`` 1=SHA1, 2=SHA256, 3=SHA512). A record without an id gets
        one derived from its issuer, account and secret, so reading the same
        record twice yields the same id.
        """
        kind = data.get("kind", data.get("type", OtpKind.TOTP))
        if isinstance(kind, int):
            if kind not in _LEGACY_KIND_CODES:
                raise InvalidParameter("kind", kind)
            kind = _LEGACY_KIND_CODES[kind]
        elif isinstance(kind, str):
            try:
                kind = OtpKind(kind.upper())
            except ValueError:
                raise InvalidParameter("kind", kind)

        algorithm = data.get("algorithm", config.DEFAULT_ALGORITHM)
        if isinstance(algorithm, int):
            if algorithm not in _LEGACY_ALGORITHM_CODES:
                raise UnsupportedAlgorithm(algorithm)
            algorithm = _LEGACY_ALGORITHM_CODES[algorithm]

        entry = cls(
            secret=data.get("secret", ""),
            kind=kind,
            issuer=data.get("issuer") or "",
            account=data.get("account") or "",
            algorithm=algorithm,
            digits=_as_int(data.get("digits"), config.DEFAULT_DIGITS, "digits"),
            period=_as_int(data.get("period"), config.DEFAULT_PERIOD, "period"),
            counter=_as_int(data.get("counter"), config.DEFAULT_COUNTER, "counter"),
            pinned=bool(data.get("pinned", False)),
            folder=data.get("folder") or None,
            id=data.get("id") or data.get("hash") or "",
        )
        if not (data.get("id") or data.get("hash")):
            entry.id = derived_entry_id(entry.issuer, entry.account, entry.secret)
        return entry


def _as_int(value: Any, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidParameter(name, value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(name, value)


class KeyValueStore:
    """Key-value store contract shared by local storage and tests.

    Values are JSON-compatible. ``get`` returns only the keys that exist.
    Every ``set`` call is applied as one unit.
    """

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        raise NotImplementedError

    def set(self, items: Dict[str, Any]) -> None:
        raise NotImplementedError

    def remove(self, keys: Iterable[str]) -> None:
        raise NotImplementedError

    def get_value(self, key: str, default: Any = None) -> Any:
        return self.get([key]).get(key, default)


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and as a scratch store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    def set(self, items: Dict[str, Any]) -> None:
        with self._lock:
            self._data.update(copy.deepcopy(items))

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Key-value store persisted as a single JSON document."""

    def __init__(self, filepath: str):
        """
        Args:
            filepath: Path to the JSON store file
        """
        self.filepath = filepath
        self._lock = threading.Lock()

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            data = self._load()
            return {k: data[k] for k in keys if k in data}

    def set(self, items: Dict[str, Any]) -> None:
        with self._lock:
            data = self._load()
            data.update(copy.deepcopy(items))
            self._save(data)

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            data = self._load()
            changed = False
            for key in keys:
                if key in data:
                    del data[key]
                    changed = True
            if changed:
                self._save(data)

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.filepath):
            return {}
        with open(self.filepath, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.filepath} does not hold a JSON object")
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        """
        Save the whole document through a temporary file."""
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.filepath + '.tmp'
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)

            # Atomic replace using shutil.move
            shutil.move(tmp_path, self.filepath)

            if not self._set_file_permissions(self.filepath):
                logger.warning(f"Failed to set secure file permissions for store: {self.filepath}. This might indicate a permission issue.")

        except Exception as e:
            logger.error(f"Error saving store file {self.filepath}: {e}", exc_info=True)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _set_file_permissions(self, filepath: str) -> bool:
        """
        Set file to be readable/writable by owner only."""
        if platform.system() == 'Windows':
            return restrict_to_owner(filepath)
        os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)  # 600
        return True


def load_entries(store: KeyValueStore) -> List[CredentialEntry]:
    """Read the persisted credential list, skipping records that no longer validate."""
    entries = []
    for raw in store.get_value(config.KEY_ENTRIES, []) or []:
        try:
            entries.append(CredentialEntry.from_dict(raw))
        except (InvalidParameter, InvalidSecretKey, UnsupportedAlgorithm) as e:
            logger.warning(f"Skipping stored entry {raw.get('id') or raw.get('hash')!r}: {e}")
    return entries
