"""libpod transport - HTTP client transport for the Podman libpod API.

Provides three connection modes behind one Transport contract:
- unix: local Unix-domain socket
- tcp: plain HTTP or TLS, with optional custom CA and client certificate
- ssh: remote engine socket forwarded through an ``ssh`` subprocess

Plus a newline-delimited JSON decoder for the /events stream.
"""

from .backends import CONFIGURED_TIMEOUT, Backend, TcpBackend, UnixSocketBackend
from .config import (
    REGISTRY_AUTH_HEADER,
    ConnectionKind,
    Credential,
    IdentityToken,
    SshConfig,
    TcpConfig,
    TlsOptions,
    TransportConfig,
    UnixSocketConfig,
    UsernamePassword,
    config_from_env,
    parse_connection_uri,
)
from .errors import (
    APIError,
    ConnectionFailedError,
    ErrorKind,
    ExchangeFailedError,
    MissingBodyError,
    TransportError,
    TunnelError,
    create_api_error,
    extract_message,
    raise_for_raw_response,
)
from .events import iter_json_lines, stream_events
from .query import build_query
from .transport import (
    ResponseStream,
    Transport,
    TransportResponse,
    create_transport,
    open_transport,
)
from .tunnel import SshTunnelBackend, TunnelState

__all__ = [
    # Transport
    "Transport",
    "TransportResponse",
    "ResponseStream",
    "create_transport",
    "open_transport",
    # Backends
    "Backend",
    "UnixSocketBackend",
    "TcpBackend",
    "SshTunnelBackend",
    "TunnelState",
    "CONFIGURED_TIMEOUT",
    # Configuration
    "ConnectionKind",
    "UnixSocketConfig",
    "TcpConfig",
    "SshConfig",
    "TlsOptions",
    "TransportConfig",
    "Credential",
    "UsernamePassword",
    "IdentityToken",
    "REGISTRY_AUTH_HEADER",
    "config_from_env",
    "parse_connection_uri",
    # Errors
    "TransportError",
    "ConnectionFailedError",
    "ExchangeFailedError",
    "TunnelError",
    "APIError",
    "MissingBodyError",
    "ErrorKind",
    "extract_message",
    "create_api_error",
    "raise_for_raw_response",
    # Events
    "iter_json_lines",
    "stream_events",
    "build_query",
]
