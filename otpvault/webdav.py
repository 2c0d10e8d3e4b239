"""
Minimal WebDAV client for backup files: PROPFIND listing, GET and PUT, all
with HTTP Basic authentication.
"""

import email.utils
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import httpx

from otpvault.backup import is_backup_name
from otpvault.crypto import SecureHash
from otpvault.errors import InvalidParameter, NetworkFailure, RemoteFormatError
from otpvault.utils import join_url
from . import config

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"
MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass
class WebDAVConfig:
    """Connection and schedule settings, persisted under ``webdavConfig``."""
    server_url: str = ""
    username: str = ""
    password: str = ""
    auto_backup: bool = False
    interval_minutes: int = config.DEFAULT_BACKUP_INTERVAL_MINUTES
    retention_days: int = config.DEFAULT_RETENTION_DAYS

    def __post_init__(self):
        if self.interval_minutes not in config.BACKUP_INTERVALS_MINUTES:
            raise InvalidParameter("intervalMinutes", self.interval_minutes)
        if self.retention_days != config.RETENTION_FOREVER and self.retention_days < 1:
            raise InvalidParameter("retentionDays", self.retention_days)

    def is_complete(self) -> bool:
        return bool(self.server_url and self.username and self.password)

    def to_dict(self, master_password: Optional[str] = None) -> Dict[str, Any]:
        """Serialize; with a master password the WebDAV password is stored encrypted."""
        data: Dict[str, Any] = {
            "serverUrl": self.server_url,
            "username": self.username,
            "autoBackup": self.auto_backup,
            "intervalMinutes": self.interval_minutes,
            "retentionDays": self.retention_days,
        }
        if master_password and self.password:
            data["encryptedPassword"] = SecureHash.encrypt_data(self.password, master_password)
        else:
            data["password"] = self.password
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], master_password: Optional[str] = None) -> "WebDAVConfig":
        if not data:
            return cls()
        password = data.get("password") or ""
        if not password and data.get("encryptedPassword") and master_password:
            password = SecureHash.decrypt_data(data["encryptedPassword"], master_password) or ""
            if not password:
                logger.warning("Could not decrypt the stored WebDAV password")
        interval = data.get("intervalMinutes", data.get("backupInterval", config.DEFAULT_BACKUP_INTERVAL_MINUTES))
        retention = data.get("retentionDays", config.DEFAULT_RETENTION_DAYS)
        try:
            interval = int(interval)
            retention = int(retention)
        except (TypeError, ValueError):
            raise InvalidParameter("webdavConfig", data)
        return cls(
            server_url=data.get("serverUrl") or "",
            username=data.get("username") or "",
            password=password,
            auto_backup=bool(data.get("autoBackup", False)),
            interval_minutes=interval,
            retention_days=retention,
        )


@dataclass
class RemoteFile:
    name: str
    href: str
    modified_ms: int


def parse_http_date(value: str) -> int:
    """RFC 1123 date to epoch milliseconds; 0 when unparsable."""
    if not value:
        return 0
    try:
        parsed = email.utils.parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return 0
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


def parse_multistatus(text: str) -> List[RemoteFile]:
    """Extract backup-named resources from a PROPFIND multistatus document."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise RemoteFormatError(f"Unparsable PROPFIND response: {e}") from e

    files = []
    for response in root.iter(f"{DAV_NS}response"):
        href_el = response.find(f"{DAV_NS}href")
        href = (href_el.text or "").strip() if href_el is not None else ""
        if not href:
            continue
        name = unquote(href.rstrip("/").split("/")[-1])
        if not is_backup_name(name):
            continue
        modified_el = response.find(f".//{DAV_NS}getlastmodified")
        modified = modified_el.text if modified_el is not None else ""
        files.append(RemoteFile(name=name, href=href, modified_ms=parse_http_date(modified or "")))
    files.sort(key=lambda f: (f.modified_ms, f.name), reverse=True)
    return files


def filter_retention(files: List[RemoteFile], retention_days: int, now: int) -> List[RemoteFile]:
    """Hide backups older than the retention window. Nothing is deleted remotely."""
    if retention_days == config.RETENTION_FOREVER:
        return list(files)
    cutoff = now - retention_days * MS_PER_DAY
    return [f for f in files if f.modified_ms >= cutoff]


def newest(files: List[RemoteFile]) -> Optional[RemoteFile]:
    if not files:
        return None
    return max(files, key=lambda f: (f.modified_ms, f.name))


class WebDAVClient:
    """Talks to one WebDAV collection holding backup files."""

    def __init__(self, webdav_config: WebDAVConfig, http_client: Optional[httpx.Client] = None,
                 timeout: float = config.HTTP_TIMEOUT_SECONDS):
        self.config = webdav_config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)
        self._auth = httpx.BasicAuth(webdav_config.username, webdav_config.password)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "WebDAVClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, auth=self._auth, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"WebDAV {method} {url} failed: {e}")
            raise NetworkFailure("aborted", f"Request aborted: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, ok_codes) -> None:
        if response.status_code in ok_codes:
            return
        status = response.status_code
        raise NetworkFailure(status, config.HTTP_ERROR_MESSAGES.get(status, f"HTTP {status}"))

    def list_backups(self) -> List[RemoteFile]:
        """Backup files in the collection, newest first."""
        response = self._request(
            "PROPFIND",
            self.config.server_url,
            headers={"Depth": "1", "Content-Type": "application/xml"},
            content=config.PROPFIND_BODY.encode("utf-8"),
        )
        self._raise_for_status(response, (200, 207))
        return parse_multistatus(response.text)

    def download(self, name: str) -> bytes:
        response = self._request("GET", join_url(self.config.server_url, name))
        self._raise_for_status(response, (200,))
        return response.content

    def upload(self, name: str, body: str) -> int:
        """PUT a backup; returns the HTTP status on success."""
        response = self._request(
            "PUT",
            join_url(self.config.server_url, name),
            headers={"Content-Type": "application/json"},
            content=body.encode("utf-8"),
        )
        self._raise_for_status(response, config.PUT_SUCCESS_CODES)
        logger.info(f"Uploaded {name} (HTTP {response.status_code})")
        return response.status_code
