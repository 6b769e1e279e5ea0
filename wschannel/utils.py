"""
Utility functions for channel handlers.
"""

import logging
import time
from datetime import timedelta
from typing import Optional, Tuple

import httpx

from wschannel.events import ChannelLog

logger = logging.getLogger(__name__)


def strip_plus(address: str) -> str:
    """Drop one leading "+" from a phone-like address."""
    return address[1:] if address.startswith("+") else address


def _dump_request(request: httpx.Request) -> str:
    headers = "".join(f"{k}: {v}\r\n" for k, v in request.headers.items())
    body = request.content.decode("utf-8", errors="replace")
    return f"{request.method} {request.url} HTTP/1.1\r\n{headers}\r\n{body}"


def _dump_response(response: httpx.Response) -> str:
    headers = "".join(f"{k}: {v}\r\n" for k, v in response.headers.items())
    body = response.text
    return f"{response.http_version} {response.status_code} {response.reason_phrase}\r\n{headers}\r\n{body}"


def make_http_request(
    client: httpx.Client,
    request: httpx.Request,
) -> Tuple[Optional[httpx.Response], Optional[httpx.HTTPError], timedelta]:
    """
    Send a request, treating non-2xx responses as errors.

    Never raises for transport or status errors; they are returned instead
    so callers can log the exchange either way.

    Returns:
        Tuple of (response or None, error or None, elapsed time)
    """
    start = time.monotonic()
    response = None
    error = None
    try:
        response = client.send(request)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"HTTP {request.method} {request.url} failed: {e}")
        error = e
    elapsed = timedelta(seconds=time.monotonic() - start)
    return response, error, elapsed


def channel_log_from_exchange(
    description: str,
    channel_uuid: str,
    msg_id: Optional[int],
    request: httpx.Request,
    response: Optional[httpx.Response],
    elapsed: timedelta,
    error: Optional[str] = None,
) -> ChannelLog:
    """Build a channel log for one request/response exchange."""
    return ChannelLog(
        description=description,
        channel_uuid=channel_uuid,
        msg_id=msg_id,
        method=request.method,
        url=str(request.url),
        status_code=response.status_code if response is not None else None,
        request=_dump_request(request),
        response=_dump_response(response) if response is not None else "",
        elapsed=elapsed,
        error=error or "",
    )
