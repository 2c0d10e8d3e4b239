"""
otpauth:// provisioning URI codec.

    otpauth://totp/Issuer:account?secret=...&issuer=...&algorithm=SHA1&digits=6&period=30
    otpauth://hotp/Issuer:account?secret=...&issuer=...&algorithm=SHA1&digits=6&counter=0

``serialize`` is the structural inverse of ``parse``: parsing a serialized
entry reproduces issuer, account, secret, kind, algorithm, digits, period and
counter exactly.
"""

import logging
from typing import Dict, List
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from otpvault.errors import (
    InvalidParameter,
    InvalidSecretKey,
    MalformedUri,
    MissingSecret,
    UnsupportedOtpType,
)
from otpvault.storage import Algorithm, CredentialEntry, OtpKind, is_valid_secret
from . import config

logger = logging.getLogger(__name__)

_SCHEME_PREFIX = config.OTPAUTH_SCHEME + "://"


def _first(params: Dict[str, List[str]], key: str) -> str:
    values = params.get(key)
    return values[0] if values else ""


def _parse_int(params: Dict[str, List[str]], key: str, default: int) -> int:
    raw = _first(params, key).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidParameter(key, raw)


def _parse_algorithm(raw: str) -> Algorithm:
    # Unknown names fall back to SHA1 rather than rejecting the URI
    if not raw:
        return Algorithm.SHA1
    try:
        return Algorithm(raw.upper())
    except ValueError:
        logger.warning(f"Unknown OTP algorithm {raw!r}, falling back to {config.DEFAULT_ALGORITHM}")
        return Algorithm.SHA1


def parse(uri: str) -> CredentialEntry:
    """
    Parse a provisioning URI into a credential entry.

    Raises:
        MalformedUri: not an otpauth:// URI
        UnsupportedOtpType: authority other than totp/hotp
        MissingSecret: no ``secret`` parameter
        InvalidSecretKey: secret outside the Base32 alphabet
        InvalidParameter: non-numeric or out-of-range digits/period/counter
    """
    if not isinstance(uri, str) or not uri.startswith(_SCHEME_PREFIX):
        raise MalformedUri(uri)
    try:
        parts = urlsplit(uri)
    except ValueError:
        raise MalformedUri(uri)

    otp_type = parts.netloc
    if otp_type == "totp":
        kind = OtpKind.TOTP
    elif otp_type == "hotp":
        kind = OtpKind.HOTP
    else:
        raise UnsupportedOtpType(otp_type)

    label = unquote(parts.path[1:])
    params = parse_qs(parts.query, keep_blank_values=True)

    issuer = _first(params, "issuer")
    if ":" in label:
        prefix, _, account = label.partition(":")
        if not issuer:
            issuer = prefix
    else:
        account = label

    secret = _first(params, "secret")
    if not secret:
        raise MissingSecret()
    if not is_valid_secret(secret):
        raise InvalidSecretKey()

    return CredentialEntry(
        secret=secret.upper(),
        kind=kind,
        issuer=issuer,
        account=account,
        algorithm=_parse_algorithm(_first(params, "algorithm")),
        digits=_parse_int(params, "digits", config.DEFAULT_DIGITS),
        period=_parse_int(params, "period", config.DEFAULT_PERIOD),
        counter=_parse_int(params, "counter", config.DEFAULT_COUNTER),
    )


def _label(entry: CredentialEntry) -> str:
    account = quote(entry.account, safe="")
    if entry.issuer:
        # The issuer parameter wins on parse, so the label prefix only has
        # to keep the first colon as the separator.
        return quote(entry.issuer.replace(":", ""), safe="") + ":" + account
    if ":" in entry.account:
        return ":" + account
    return account


def serialize(entry: CredentialEntry) -> str:
    """Build the provisioning URI for an entry (the payload of its QR code)."""
    query = {"secret": entry.secret}
    if entry.issuer:
        query["issuer"] = entry.issuer
    query["algorithm"] = entry.algorithm.value
    query["digits"] = entry.digits
    if entry.kind is OtpKind.HOTP:
        query["counter"] = entry.counter
    else:
        query["period"] = entry.period

    otp_type = "hotp" if entry.kind is OtpKind.HOTP else "totp"
    return f"{_SCHEME_PREFIX}{otp_type}/{_label(entry)}?{urlencode(query, quote_via=quote)}"
