"""
Clock offset probe.

Reads the Date header of a well-known endpoint and stores the difference to
the local clock, in whole seconds, as the ``offset`` user setting used when
computing TOTP codes.
"""

import logging
from typing import Optional

import httpx

from otpvault.context import VaultContext
from otpvault.webdav import parse_http_date
from . import config

logger = logging.getLogger(__name__)


def sync_clock(context: VaultContext, client: Optional[httpx.Client] = None,
               url: str = config.TIME_SYNC_URL) -> str:
    """
    Probe the server time and store the offset.

    Returns:
        TIME_SYNC_SUCCESS when the offset was stored, TIME_SYNC_TOO_FAR when it
        exceeds MAX_CLOCK_OFFSET_SECONDS, TIME_SYNC_FAILURE otherwise
    """
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=config.TIME_SYNC_TIMEOUT_SECONDS)
    try:
        response = client.head(url, timeout=config.TIME_SYNC_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        logger.warning(f"Clock probe failed: {e}")
        return config.TIME_SYNC_FAILURE
    finally:
        if owns_client:
            client.close()

    server_ms = parse_http_date(response.headers.get("date", ""))
    if not server_ms:
        logger.warning("Clock probe response carried no usable Date header")
        return config.TIME_SYNC_FAILURE

    offset = round((server_ms - context.clock()) / 1000)
    if abs(offset) > config.MAX_CLOCK_OFFSET_SECONDS:
        logger.warning(f"Clock offset of {offset}s is too large, not applied")
        return config.TIME_SYNC_TOO_FAR

    context.update_settings(offset=offset)
    logger.info(f"Clock offset set to {offset}s")
    return config.TIME_SYNC_SUCCESS
