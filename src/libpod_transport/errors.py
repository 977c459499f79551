"""Error taxonomy for the libpod transport.

Every error raised across the transport boundary derives from TransportError
and carries an ErrorKind tag:

- CONNECTION: nothing reached the engine (socket refused, ssh missing,
  tunnel never came up). Safe to retry.
- EXCHANGE: the carrier broke after the request went out (read timeout,
  reset mid-body). The engine may have acted on it.
- PROTOCOL: the engine answered but the body was not the JSON it should be.
- APPLICATION: the engine answered with a failing status.
- RESOURCE: a response that must carry a body did not.
"""

from __future__ import annotations

import contextlib
import json
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Any

import httpx

UNKNOWN_ERROR = "Unknown error"


class ErrorKind(str, Enum):
    """Which tier of the exchange failed."""

    CONNECTION = "connection"
    EXCHANGE = "exchange"
    PROTOCOL = "protocol"
    APPLICATION = "application"
    RESOURCE = "resource"


class TransportError(Exception):
    """Base class for all transport failures."""

    kind: ErrorKind = ErrorKind.CONNECTION

    @property
    def retryable(self) -> bool:
        """True when the engine never saw the request."""
        return self.kind == ErrorKind.CONNECTION


class ConnectionFailedError(TransportError):
    """The socket or TCP connection could not be established."""

    kind = ErrorKind.CONNECTION


class TunnelError(ConnectionFailedError):
    """The SSH tunnel could not be started or never became ready."""

    def __init__(self, host: str, reason: str):
        super().__init__(f"SSH tunnel to {host} failed: {reason}")
        self.host = host
        self.reason = reason


class ExchangeFailedError(TransportError):
    """The carrier broke after the request was sent."""

    kind = ErrorKind.EXCHANGE


class MissingBodyError(TransportError):
    """A streaming response arrived without a body."""

    kind = ErrorKind.RESOURCE

    def __init__(self, method: str, path: str):
        super().__init__(f"No response body for {method} {path}")
        self.method = method
        self.path = path


class APIError(TransportError):
    """The engine returned a failing status or an unreadable body.

    Attributes are fixed at construction.
    """

    def __init__(
        self,
        *,
        status: int,
        message: str,
        method: str,
        path: str,
        kind: ErrorKind = ErrorKind.APPLICATION,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.method = method
        self.path = path
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"APIError(status={self.status}, message={self.message!r}, "
            f"method={self.method!r}, path={self.path!r})"
        )


@contextlib.contextmanager
def translate_httpx_errors(method: str, path: str, target: str = "the engine") -> Iterator[None]:
    """Re-raise httpx carrier failures as TransportError subclasses.

    Only connect failures are connection-tier; anything later happened
    mid-exchange.
    """
    try:
        yield
    except (httpx.ConnectError, httpx.ConnectTimeout) as e:
        raise ConnectionFailedError(f"Cannot connect to {target} for {method} {path}: {e}") from e
    except httpx.TransportError as e:
        raise ExchangeFailedError(f"{method} {path} via {target} failed: {e}") from e


def extract_message(value: Any) -> str:
    """Pull a human-readable message out of a decoded JSON error body.

    Prefers ``message``, then ``cause``; anything else is "Unknown error".
    """
    if isinstance(value, Mapping):
        message = value.get("message")
        if isinstance(message, str):
            return message
        cause = value.get("cause")
        if isinstance(cause, str):
            return cause
    return UNKNOWN_ERROR


def create_api_error(status: int, value: Any, method: str, path: str) -> APIError:
    """Build an APIError from a status code and a decoded JSON body."""
    return APIError(
        status=status,
        message=extract_message(value),
        method=method,
        path=path,
    )


async def raise_for_raw_response(response: httpx.Response, method: str, path: str) -> None:
    """Drain a raw response and raise it as an APIError.

    For use after request_raw() returned a status the caller did not expect.
    Text that does not parse as JSON becomes the message verbatim.
    """
    try:
        with translate_httpx_errors(method, path):
            text = (await response.aread()).decode("utf-8", errors="replace")
    finally:
        await response.aclose()

    if not text.strip():
        raise create_api_error(response.status_code, None, method, path)
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        raise create_api_error(response.status_code, {"message": text}, method, path) from None
    raise create_api_error(response.status_code, value, method, path)
