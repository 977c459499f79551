"""Request executor for the libpod API.

Transport turns the single backend primitive (one HTTP exchange) into the
three operations resource wrappers use:

- request:        JSON in, decoded JSON out, status left to the caller
- request_raw:    body and headers passed through, response returned unread
- request_stream: long-lived byte stream, failing statuses raised as APIError

Usage:
    async with await open_transport(config_from_env()) as transport:
        result = await transport.request("GET", "/info")
        if result.status != 200:
            raise create_api_error(result.status, result.json, "GET", "/info")
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from .backends import Backend, Content, TcpBackend, UnixSocketBackend
from .config import (
    ConnectionKind,
    Credential,
    SshConfig,
    TcpConfig,
    TransportConfig,
    UnixSocketConfig,
    encode_credential,
)
from .errors import (
    APIError,
    ErrorKind,
    MissingBodyError,
    extract_message,
    translate_httpx_errors,
)
from .tunnel import SshTunnelBackend

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
STREAM_FAILED = "Stream request failed"
INVALID_JSON_PREVIEW = 200

# Statuses HTTP defines as never carrying a body
NULL_BODY_STATUSES = frozenset({101, 103, 204, 205, 304})


@dataclass(frozen=True)
class TransportResponse:
    """Status and decoded body of a request() call. json is None for empty bodies."""

    status: int
    json: Any


class ResponseStream:
    """Byte stream of a streaming response.

    Iterate it for chunks; close it (or use ``async with``) when done so the
    underlying connection is released.
    """

    def __init__(self, response: httpx.Response, method: str, path: str):
        self._response = response
        self._method = method
        self._path = path

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def closed(self) -> bool:
        return self._response.is_closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        with translate_httpx_errors(self._method, self._path):
            async for chunk in self._response.aiter_bytes():
                yield chunk

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class Transport:
    """The libpod transport contract, over any Backend.

    Holds no per-call state; concurrent calls on one instance are independent.
    """

    def __init__(self, backend: Backend, auth: Credential | None = None):
        self._backend = backend
        self._auth_header = encode_credential(auth) if auth is not None else None
        self._closed = False

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def auth_header(self) -> str | None:
        """Encoded registry credential for the X-Registry-Auth header, if any."""
        return self._auth_header

    def get_auth_header(self) -> str | None:
        return self._auth_header

    async def request(self, method: str, path: str, body: Any = None) -> TransportResponse:
        """Send an optional JSON body and decode the JSON reply.

        Returns the decoded value whatever the status code.

        Raises:
            APIError: the reply is non-empty and not valid JSON.
            TransportError: the carrier failed before the body was read.
        """
        headers = {"Accept": JSON_CONTENT_TYPE}
        content = None
        if body is not None:
            headers["Content-Type"] = JSON_CONTENT_TYPE
            content = json.dumps(body)

        response = await self._backend.exchange(method, path, content=content, headers=headers)
        try:
            with translate_httpx_errors(method, path):
                await response.aread()
        finally:
            await response.aclose()

        text = response.text
        if not text.strip():
            return TransportResponse(status=response.status_code, json=None)

        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            raise APIError(
                status=response.status_code,
                message=f"Invalid JSON response: {text[:INVALID_JSON_PREVIEW]}",
                method=method,
                path=path,
                kind=ErrorKind.PROTOCOL,
            ) from None
        return TransportResponse(status=response.status_code, json=value)

    async def request_raw(
        self,
        method: str,
        path: str,
        body: Content | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send body and headers untouched; return the unread response.

        The caller reads it (aread/json/aiter_bytes) and must aclose() it.
        """
        return await self._backend.exchange(method, path, content=body, headers=headers)

    async def request_stream(self, method: str, path: str) -> ResponseStream:
        """Open a long-lived byte stream. No deadline applies.

        Raises:
            APIError: status >= 400; the body is drained for the message.
            MissingBodyError: the response cannot carry a body.
        """
        response = await self._backend.exchange(
            method,
            path,
            headers={"Accept": JSON_CONTENT_TYPE},
            timeout=None,
        )

        if response.status_code >= 400:
            try:
                with translate_httpx_errors(method, path):
                    await response.aread()
            finally:
                await response.aclose()
            text = response.text
            raise APIError(
                status=response.status_code,
                message=_stream_error_message(text),
                method=method,
                path=path,
            )

        if method.upper() == "HEAD" or response.status_code in NULL_BODY_STATUSES:
            await response.aclose()
            raise MissingBodyError(method, path)

        logger.debug(f"Stream opened: {method} {path} ({response.status_code})")
        return ResponseStream(response, method, path)

    async def close(self) -> None:
        """Release the backend. Repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        await self._backend.close()

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _stream_error_message(text: str) -> str:
    if text.strip():
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            return text
        if value is not None:
            return extract_message(value)
    return text or STREAM_FAILED


def _direct_backend(config: UnixSocketConfig | TcpConfig) -> Backend:
    if config.kind == ConnectionKind.UNIX:
        return UnixSocketBackend(
            config.socket_path,
            api_version=config.api_version,
            timeout=config.timeout,
        )
    return TcpBackend(
        config.uri,
        api_version=config.api_version,
        timeout=config.timeout,
        tls=config.tls,
    )


def create_transport(config: UnixSocketConfig | TcpConfig) -> Transport:
    """Transport for a Unix-socket or TCP config. Performs no I/O."""
    if config.kind == ConnectionKind.SSH:
        raise ValueError("SSH transports need a running tunnel; use open_transport()")
    return Transport(_direct_backend(config), auth=config.auth)


async def open_transport(config: TransportConfig) -> Transport:
    """Transport for any config; for SSH this waits for the tunnel.

    Raises:
        TunnelError: the SSH tunnel could not be established.
    """
    if config.kind == ConnectionKind.SSH:
        ssh_config: SshConfig = config  # type: ignore[assignment]
        backend: Backend = await SshTunnelBackend.open(ssh_config)
    else:
        backend = _direct_backend(config)  # type: ignore[arg-type]
    return Transport(backend, auth=config.auth)
