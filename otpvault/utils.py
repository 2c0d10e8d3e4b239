import platform
import time
import logging

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    try:
        import ntsecuritycon
        import pywintypes
        import win32api
        import win32security
        WINDOWS_SECURITY_AVAILABLE = True
    except ImportError:
        logger.warning("pywin32 not fully installed, cannot set Windows file permissions securely.")
        WINDOWS_SECURITY_AVAILABLE = False
else:
    WINDOWS_SECURITY_AVAILABLE = False


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def join_url(base: str, name: str) -> str:
    """Append a resource name to a collection URL with exactly one slash."""
    if base.endswith("/"):
        return f"{base}{name}"
    return f"{base}/{name}"


def restrict_to_owner(filepath: str) -> bool:
    """
    Replace the DACL of a file with a single read/write ACE for the user
    running this process. Returns False when the DACL could not be applied.
    """
    if not WINDOWS_SECURITY_AVAILABLE:
        return False
    try:
        token = win32security.OpenProcessToken(win32api.GetCurrentProcess(), win32security.TOKEN_QUERY)
        owner_sid = win32security.GetTokenInformation(token, win32security.TokenUser)[0]
        dacl = win32security.ACL()
        dacl.AddAccessAllowedAce(
            win32security.ACL_REVISION,
            ntsecuritycon.FILE_GENERIC_READ | ntsecuritycon.FILE_GENERIC_WRITE,
            owner_sid,
        )
        win32security.SetNamedSecurityInfo(
            filepath,
            win32security.SE_FILE_OBJECT,
            win32security.DACL_SECURITY_INFORMATION | win32security.PROTECTED_DACL_SECURITY_INFORMATION,
            None,
            None,
            dacl,
            None,
        )
    except pywintypes.error as e:
        logger.debug(f"SetNamedSecurityInfo failed for {filepath}: {e}")
        return False
    return True
