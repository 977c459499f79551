"""Connection backends: the "perform one HTTP exchange" primitive.

A backend knows how to reach the engine and nothing about JSON or error
bodies. Transport (transport.py) builds request/request_raw/request_stream
on top of whichever backend the configuration selects.

Backends:
- UnixSocketBackend: HTTP over a local Unix-domain socket
- TcpBackend: HTTP or HTTPS over TCP, optionally with custom TLS material
- SshTunnelBackend (tunnel.py): UnixSocketBackend behind an ssh port-forward
"""

from __future__ import annotations

import logging
import os
import ssl
import tempfile
from typing import Any, Protocol, runtime_checkable

import httpx

from .config import DEFAULT_API_VERSION, DEFAULT_TIMEOUT, TlsOptions
from .errors import translate_httpx_errors


class _ConfiguredTimeout:
    """Sentinel: apply the backend's configured deadline."""

    def __repr__(self) -> str:
        return "CONFIGURED_TIMEOUT"


CONFIGURED_TIMEOUT = _ConfiguredTimeout()

# bytes, str, or a sync/async iterable of bytes
Content = Any

logger = logging.getLogger(__name__)


def api_base_path(api_version: str) -> str:
    """Versioned prefix every libpod path lives under."""
    return f"/v{api_version}/libpod"


@runtime_checkable
class Backend(Protocol):
    """One HTTP exchange over some carrier.

    exchange() returns the response unread (streaming); the caller owns it
    and must read or close it.

    timeout:
        CONFIGURED_TIMEOUT  the backend's configured deadline
        None             no deadline (long-lived streams)
        float            explicit deadline in seconds
    """

    async def exchange(
        self,
        method: str,
        path: str,
        *,
        content: Content | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None | _ConfiguredTimeout = CONFIGURED_TIMEOUT,
    ) -> httpx.Response: ...

    async def close(self) -> None: ...


class HttpxBackend:
    """Backend built on a pooled httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, timeout: float, target: str):
        self._client = client
        self._timeout = timeout
        self._target = target
        self._closed = False

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    @property
    def closed(self) -> bool:
        return self._closed

    def _resolve_timeout(self, timeout: float | None | _ConfiguredTimeout) -> httpx.Timeout:
        if isinstance(timeout, _ConfiguredTimeout):
            return httpx.Timeout(self._timeout)
        return httpx.Timeout(timeout)

    async def exchange(
        self,
        method: str,
        path: str,
        *,
        content: Content | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None | _ConfiguredTimeout = CONFIGURED_TIMEOUT,
    ) -> httpx.Response:
        """Send one request and return the unread response."""
        request = self._client.build_request(
            method,
            path,
            content=content,
            headers=headers,
            timeout=self._resolve_timeout(timeout),
        )
        logger.debug(f"{method} {request.url} via {self._target}")
        with translate_httpx_errors(method, path, self._target):
            return await self._client.send(request, stream=True)

    async def close(self) -> None:
        """Release pooled connections. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()


class UnixSocketBackend(HttpxBackend):
    """HTTP over a local Unix-domain socket.

    The URL host is a placeholder; the socket path does the addressing.
    """

    def __init__(
        self,
        socket_path: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.socket_path = socket_path
        client = httpx.AsyncClient(
            base_url=f"http://localhost{api_base_path(api_version)}",
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            timeout=httpx.Timeout(timeout),
        )
        super().__init__(client, timeout, target=f"unix://{socket_path}")


def build_ssl_context(tls: TlsOptions) -> ssl.SSLContext:
    """SSL context trusting ``tls.ca_certs`` and presenting the client pair.

    ssl only loads client certificates from files, so the PEM text is written
    to a private temporary directory for the duration of the load.
    """
    if tls.ca_certs:
        context = ssl.create_default_context(cadata="\n".join(tls.ca_certs))
    else:
        context = ssl.create_default_context()

    if tls.key and not tls.cert:
        raise ValueError("TLS client key given without a client certificate")

    if tls.cert:
        with tempfile.TemporaryDirectory(prefix="podman-tls-") as tmp:
            cert_file = os.path.join(tmp, "cert.pem")
            with open(cert_file, "w", encoding="utf-8") as f:
                f.write(tls.cert)
            key_file = None
            if tls.key:
                key_file = os.path.join(tmp, "key.pem")
                with open(key_file, "w", encoding="utf-8") as f:
                    f.write(tls.key)
            context.load_cert_chain(cert_file, key_file)

    return context


class TcpBackend(HttpxBackend):
    """HTTP or HTTPS over TCP.

    With TLS options the exchanges go through a dedicated SSL context;
    otherwise httpx picks plain or default-verified TLS from the URI scheme.
    """

    def __init__(
        self,
        uri: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        tls: TlsOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.uri = uri
        kwargs: dict[str, Any] = {}
        if tls is not None:
            kwargs["verify"] = build_ssl_context(tls)
        if transport is not None:
            kwargs["transport"] = transport
        client = httpx.AsyncClient(
            base_url=f"{uri.rstrip('/')}{api_base_path(api_version)}",
            timeout=httpx.Timeout(timeout),
            **kwargs,
        )
        super().__init__(client, timeout, target=uri)
