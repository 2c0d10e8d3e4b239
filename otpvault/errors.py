"""
Error types raised by the codec, generator, vault and sync layers.

Decryption failure has no error type: the cipher returns None for a wrong
password and for corrupted data alike.
"""

from typing import Optional, Union


class OtpVaultError(Exception):
    """Base class for all OTP Vault errors."""


class MalformedUri(OtpVaultError):
    """The text is not an otpauth:// URI."""

    def __init__(self, uri: str):
        self.uri = uri
        super().__init__("Not a valid otpauth URI")


class UnsupportedOtpType(OtpVaultError):
    """The URI authority is neither totp nor hotp."""

    def __init__(self, otp_type: str):
        self.otp_type = otp_type
        super().__init__(f"Unsupported OTP type: {otp_type!r}")


class MissingSecret(OtpVaultError):
    def __init__(self):
        super().__init__("No secret found in URI")


class InvalidSecretKey(OtpVaultError):
    def __init__(self, reason: str = "Invalid secret key"):
        super().__init__(reason)


class InvalidParameter(OtpVaultError):
    """A numeric or enumerated field is outside its allowed range."""

    def __init__(self, name: str, value):
        self.name = name
        self.value = value
        super().__init__(f"Invalid value for {name}: {value!r}")


class UnsupportedAlgorithm(OtpVaultError):
    def __init__(self, algorithm):
        self.algorithm = algorithm
        super().__init__(f"Unsupported algorithm: {algorithm!r}")


class NetworkFailure(OtpVaultError):
    """A WebDAV or probe request failed.

    ``status`` is the HTTP status code, or the string ``"aborted"`` when the
    request never produced a response (timeout, connection error).
    """

    def __init__(self, status: Union[int, str], message: Optional[str] = None):
        self.status = status
        if message is None:
            message = f"HTTP {status}" if isinstance(status, int) else "Request aborted"
        super().__init__(message)


class RemoteFormatError(OtpVaultError):
    """A listing or backup could not be parsed (or decrypted)."""


class DuplicateAccount(OtpVaultError):
    """An entry with the same issuer and secret already exists."""

    def __init__(self, issuer: str):
        self.issuer = issuer
        super().__init__("This account already exists")
