"""
Configuration constants for the OTP Vault application.
"""

import os

# Application Metadata
APP_VERSION = "1.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "OTP Vault"  # Use: Full name of the application. Type: str. Range: Any valid string.
APP_TITLE_PREFIX = f"{APP_NAME} v{APP_VERSION}"  # Use: Prefix for CLI banners, combining name and version. Type: str (f-string). Range: Derived from APP_NAME and APP_VERSION.

# Security Settings
SALT_SIZE = 16  # Use: Size of the random PBKDF2 salt in bytes (hex-encoded on the wire). Type: int. Range: 16 bytes (128 bits).
IV_SIZE = 16  # Use: Size of the AES-CBC initialization vector in bytes. Type: int. Range: 16 bytes (AES block size).
KEY_SIZE = 32  # Use: Size of the encryption key in bytes. Corresponds to AES-256. Type: int. Range: 16 (AES-128), 24 (AES-192), or 32 (AES-256) bytes.
PBKDF2_ITERATIONS = 100000  # Use: Number of iterations for PBKDF2-HMAC-SHA256, used for both backup encryption and password hashing. Type: int. Range: Must stay 100000 to read existing backups.
LEGACY_SALT_HEADER = b"Salted__"  # Use: Magic prefix of OpenSSL-compatible legacy encrypted blobs. Type: bytes. Range: b"Salted__"
LEGACY_SALT_SIZE = 8  # Use: Size of the salt embedded after the legacy magic header. Type: int. Range: 8 bytes.
CIPHER_FORMAT_V1 = "v1"  # Use: Envelope tag for salt:iv:ciphertext blobs. Type: str. Range: "v1"
CIPHER_FORMAT_LEGACY = "legacy"  # Use: Envelope tag for OpenSSL-salted legacy blobs (read only). Type: str. Range: "legacy"
DECRYPT_FAILED_MESSAGE = "Wrong password or corrupted file"  # Use: Uniform message shown when a backup cannot be decrypted. Type: str. Range: Any descriptive string.

# OTP Settings
DEFAULT_DIGITS = 6  # Use: Default number of digits in a generated code. Type: int. Range: MIN_DIGITS to MAX_DIGITS.
MIN_DIGITS = 4  # Use: Smallest accepted code length. Type: int. Range: Positive integer.
MAX_DIGITS = 10  # Use: Largest accepted code length. Type: int. Range: Positive integer, at most 10 (31-bit truncation).
DEFAULT_PERIOD = 30  # Use: Default TOTP time step in seconds. Type: int. Range: MIN_PERIOD to MAX_PERIOD.
MIN_PERIOD = 1  # Use: Smallest accepted TOTP time step in seconds. Type: int. Range: Positive integer.
MAX_PERIOD = 300  # Use: Largest accepted TOTP time step in seconds. Type: int. Range: Positive integer.
DEFAULT_COUNTER = 0  # Use: Starting HOTP counter. Type: int. Range: Non-negative integer.
MAX_COUNTER = 2**64 - 1  # Use: Largest HOTP counter, the moving factor is an unsigned 8-byte value. Type: int. Range: 2**64 - 1
ENTRY_ID_NAMESPACE = "6f1c2a8e-3d4b-5c7a-9e0f-1a2b3c4d5e6f"  # Use: uuid5 namespace for ids of records stored without one. Type: str (UUID). Range: Any fixed UUID.
DEFAULT_ALGORITHM = "SHA1"  # Use: HMAC algorithm used when none (or an unknown one) is given. Type: str. Range: "SHA1", "SHA256", "SHA512".
OTPAUTH_SCHEME = "otpauth"  # Use: URI scheme of provisioning URIs. Type: str. Range: "otpauth"
BASE32_PATTERN = r"^[A-Z2-7]+=*$"  # Use: Grammar every stored secret must match (case-insensitive). Type: str (regex). Range: Valid regular expression.

# Backup Settings
BACKUP_VERSION = "1.0"  # Use: Version string written into every backup envelope. Type: str. Range: "1.0"
BACKUP_FILE_PREFIX = "auths-backup-"  # Use: Filename prefix of backup files, local and remote. Type: str. Range: Any valid filename prefix.
BACKUP_NAME_MARKER = "auths-backup"  # Use: Substring a remote resource name must contain to count as a backup. Type: str. Range: Any string.
BACKUP_FILE_SUFFIX = ".json"  # Use: Filename extension of backup files. Type: str. Range: ".json"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"  # Use: strftime format of the date stamp in backup filenames. Type: str. Range: Valid strftime format.

# WebDAV Settings
BACKUP_INTERVALS_MINUTES = (60, 360, 720, 1440, 10080)  # Use: Allowed automatic backup intervals in minutes. Type: tuple[int]. Range: Positive integers.
DEFAULT_BACKUP_INTERVAL_MINUTES = 1440  # Use: Default automatic backup interval (24 hours). Type: int. Range: One of BACKUP_INTERVALS_MINUTES.
DEFAULT_RETENTION_DAYS = 30  # Use: Default restore-list retention window in days. Type: int. Range: -1 (forever) or a positive integer.
RETENTION_FOREVER = -1  # Use: retentionDays value that disables the retention filter. Type: int. Range: -1
AUTO_BACKUP_ALARM = "autoBackup"  # Use: Name of the periodic alarm driving automatic backups. Type: str. Range: Any string.
HTTP_TIMEOUT_SECONDS = 30.0  # Use: Timeout for WebDAV requests. Type: float. Range: Positive number.
PUT_SUCCESS_CODES = (200, 201, 204)  # Use: HTTP status codes treated as a successful upload. Type: tuple[int]. Range: 2xx status codes.
PROPFIND_BODY = (  # Use: Property request body sent with PROPFIND to list backups. Type: str (XML). Range: Valid DAV propfind document.
    '<?xml version="1.0" encoding="utf-8" ?>\n'
    '<D:propfind xmlns:D="DAV:">\n'
    "  <D:prop>\n"
    "    <D:displayname/>\n"
    "    <D:getlastmodified/>\n"
    "  </D:prop>\n"
    "</D:propfind>"
)
HTTP_ERROR_MESSAGES = {  # Use: Readable messages for common WebDAV failure statuses. Type: dict[int, str]. Range: HTTP status code to message.
    401: "Authentication failed, check username and password",
    404: "Path not found, check the server URL",
    409: "Conflict, the parent collection may not exist",
}

# Sync Log Settings
MAX_SYNC_LOG_ENTRIES = 100  # Use: Maximum number of entries kept in the sync log (oldest evicted first). Type: int. Range: Positive integer.
SYNC_LOG_PREFIX = "[WebDAV]"  # Use: Prefix of sync log lines mirrored to the Python logger. Type: str. Range: Any string.
SYNC_LOCK_NAME = "sync"  # Use: Key of the single-flight guard around the resolver. Type: str. Range: Any string.

# Clock Sync Settings
TIME_SYNC_URL = "https://www.google.com/generate_204"  # Use: Endpoint probed for a trusted Date header. Type: str. Range: Valid https URL.
TIME_SYNC_TIMEOUT_SECONDS = 5.0  # Use: Abort the clock probe after this many seconds. Type: float. Range: Positive number.
MAX_CLOCK_OFFSET_SECONDS = 300  # Use: Largest clock offset accepted from the probe. Type: int. Range: Positive integer.
TIME_SYNC_SUCCESS = "updateSuccess"  # Use: Probe result when the offset was stored. Type: str. Range: Fixed string.
TIME_SYNC_FAILURE = "updateFailure"  # Use: Probe result on timeout, transport error or missing Date header. Type: str. Range: Fixed string.
TIME_SYNC_TOO_FAR = "clock_too_far_off"  # Use: Probe result when the offset exceeds MAX_CLOCK_OFFSET_SECONDS. Type: str. Range: Fixed string.

# Persisted Key Space
KEY_ENTRIES = "entries"  # Use: Store key holding the credential list. Type: str. Range: Fixed key.
KEY_ENTRIES_LAST_MODIFIED = "entriesLastModified"  # Use: Store key holding the last local mutation time (ms). Type: str. Range: Fixed key.
KEY_LAST_SYNCED = "lastSyncedTimestamp"  # Use: Store key holding the last confirmed sync time (ms). Type: str. Range: Fixed key.
KEY_WEBDAV_CONFIG = "webdavConfig"  # Use: Store key holding the WebDAV configuration. Type: str. Range: Fixed key.
KEY_SYNC_LOGS = "webdavSyncLogs"  # Use: Store key holding the sync log list. Type: str. Range: Fixed key.
KEY_USER_SETTINGS = "UserSettings"  # Use: Store key holding the user settings blob (clock offset and preferences). Type: str. Range: Fixed key.

# File and Directory Names
CONFIG_DIR_NAME = ".otpvault"  # Use: Name of the hidden directory within the user's home directory where OTP Vault stores its data. Type: str. Range: Any valid directory name.
CONFIG_DIR_ENV = "OTPVAULT_HOME"  # Use: Environment variable overriding the data directory. Type: str. Range: Any valid environment variable name.
DEFAULT_STORE_FILE = "store.json"  # Use: Default filename of the local key-value store. Type: str. Range: Any valid filename.


def default_data_dir() -> str:
    """Directory holding the local store, honoring OTPVAULT_HOME."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return override
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME)
