"""
HOTP (RFC 4226) and TOTP (RFC 6238) code generation.

The generator is a pure function of the secret, the moving factor, the digit
count and the algorithm. It never touches the stored HOTP counter; advancing
the counter is the vault's job and happens only when a code is accepted.
"""

import base64
import binascii
import hashlib
import hmac
import math
import struct
import time
from typing import Optional

from otpvault.errors import InvalidSecretKey, UnsupportedAlgorithm
from otpvault.storage import Algorithm, CredentialEntry, OtpKind

_DIGESTS = {
    Algorithm.SHA1: hashlib.sha1,
    Algorithm.SHA256: hashlib.sha256,
    Algorithm.SHA512: hashlib.sha512,
}


def decode_secret(secret: str) -> bytes:
    """Base32-decode a secret, restoring the padding many issuers strip."""
    secret = secret.strip().upper()
    missing_padding = len(secret) % 8
    if missing_padding:
        secret += "=" * (8 - missing_padding)
    try:
        key = base64.b32decode(secret, casefold=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSecretKey("Invalid Base32 secret") from e
    if not key:
        raise InvalidSecretKey("Secret decodes to no bytes")
    return key


def int_to_bytes(i: int) -> bytes:
    # HOTP/TOTP use an 8-byte counter (big-endian)
    return struct.pack(">Q", i)


def dynamic_truncate(hmac_digest: bytes) -> int:
    # RFC 4226 dynamic truncation
    offset = hmac_digest[-1] & 0x0F
    return ((hmac_digest[offset] & 0x7F) << 24 |
            (hmac_digest[offset + 1] & 0xFF) << 16 |
            (hmac_digest[offset + 2] & 0xFF) << 8 |
            (hmac_digest[offset + 3] & 0xFF))


def hotp(key: bytes, counter: int, digits: int, algorithm: Algorithm = Algorithm.SHA1) -> str:
    """
    Compute one code from raw key bytes and a moving factor.

    Args:
        key: decoded secret
        counter: moving factor (HOTP counter or TOTP time step)
        digits: code length
        algorithm: HMAC hash

    Returns:
        Zero-padded decimal code of length ``digits``
    """
    digest = _DIGESTS.get(algorithm)
    if digest is None:
        raise UnsupportedAlgorithm(algorithm)
    mac = hmac.new(key, int_to_bytes(counter), digest).digest()
    code = dynamic_truncate(mac) % (10 ** digits)
    return str(code).zfill(digits)


def timecode(now: float, period: int, clock_offset_seconds: int = 0) -> int:
    """Index of the TOTP time step containing ``now`` (unix seconds)."""
    return int(math.floor((now + clock_offset_seconds) / period))


def moving_factor(entry: CredentialEntry, now: Optional[float] = None,
                  clock_offset_seconds: int = 0) -> int:
    if entry.kind is OtpKind.HOTP:
        return entry.counter
    if now is None:
        now = time.time()
    return timecode(now, entry.period, clock_offset_seconds)


def generate(entry: CredentialEntry, now: Optional[float] = None,
             clock_offset_seconds: int = 0) -> str:
    """
    Generate the current code for an entry.

    For TOTP ``now`` (unix seconds, defaults to the current time) plus the
    clock offset selects the time step. For HOTP the entry's stored counter
    is used verbatim and ``now`` is ignored.
    """
    key = decode_secret(entry.secret)
    return hotp(key, moving_factor(entry, now, clock_offset_seconds), entry.digits, entry.algorithm)


def seconds_remaining(entry: CredentialEntry, now: Optional[float] = None,
                      clock_offset_seconds: int = 0) -> Optional[int]:
    """Seconds until the TOTP code changes; None for HOTP entries."""
    if entry.kind is OtpKind.HOTP:
        return None
    if now is None:
        now = time.time()
    elapsed = (now + clock_offset_seconds) % entry.period
    return int(entry.period - elapsed)
