"""Connection configuration for the libpod transport.

One dataclass per connection kind. Each carries a fixed ``kind`` tag which
is what open_transport() dispatches on:

    UnixSocketConfig(socket_path="/run/podman/podman.sock")
    TcpConfig(uri="https://podman.example:8443", tls=TlsOptions(...))
    SshConfig(host="core@build-box", identity_file="~/.ssh/id_ed25519")

The environment can also describe a connection the way the podman CLI reads
it (CONTAINER_HOST, CONTAINER_SSHKEY); see config_from_env().
"""

from __future__ import annotations

import base64
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_VERSION = "4.0.0"
DEFAULT_TIMEOUT = 30.0
DEFAULT_REMOTE_SOCKET = "/run/podman/podman.sock"
DEFAULT_SSH_PORT = 22

# Header the engine reads registry credentials from. Callers attach it.
REGISTRY_AUTH_HEADER = "X-Registry-Auth"


class ConnectionKind(str, Enum):
    """How the transport reaches the engine."""

    UNIX = "unix"
    TCP = "tcp"
    SSH = "ssh"


# Credentials


class UsernamePassword(BaseModel):
    """Registry login with a username and password."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str


class IdentityToken(BaseModel):
    """Registry login with an opaque identity token."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    identity_token: str = Field(alias="identityToken")


Credential = UsernamePassword | IdentityToken


def encode_credential(credential: Credential) -> str:
    """Base64 of the compact JSON form of a credential."""
    payload = credential.model_dump_json(by_alias=True)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


# Connection configs


@dataclass(frozen=True)
class TlsOptions:
    """PEM material for TCP connections.

    ca_certs verify the server; cert and key enable mutual TLS.
    """

    ca_certs: list[str] = field(default_factory=list)
    cert: str | None = None
    key: str | None = None


@dataclass(frozen=True, kw_only=True)
class _BaseConfig:
    api_version: str = DEFAULT_API_VERSION
    timeout: float = DEFAULT_TIMEOUT
    auth: Credential | None = None


@dataclass(frozen=True, kw_only=True)
class UnixSocketConfig(_BaseConfig):
    """Engine listening on a local Unix-domain socket."""

    socket_path: str
    kind: ConnectionKind = field(default=ConnectionKind.UNIX, init=False)


@dataclass(frozen=True, kw_only=True)
class TcpConfig(_BaseConfig):
    """Engine reachable over plain TCP or TLS."""

    uri: str
    tls: TlsOptions | None = None
    kind: ConnectionKind = field(default=ConnectionKind.TCP, init=False)


@dataclass(frozen=True, kw_only=True)
class SshConfig(_BaseConfig):
    """Engine socket on a remote host, forwarded through ``ssh``."""

    host: str
    remote_socket_path: str = DEFAULT_REMOTE_SOCKET
    port: int = DEFAULT_SSH_PORT
    identity_file: str | None = None
    ssh_options: list[str] = field(default_factory=list)
    ssh_command: str = "ssh"
    kind: ConnectionKind = field(default=ConnectionKind.SSH, init=False)


TransportConfig = UnixSocketConfig | TcpConfig | SshConfig


def parse_connection_uri(uri: str, **overrides: Any) -> TransportConfig:
    """Turn a podman-style connection URI into a config.

    Supported forms:
        unix:///run/podman/podman.sock
        tcp://host:port            (plain HTTP)
        http://host:port, https://host:port
        ssh://[user@]host[:port][/remote/socket]

    Extra keyword arguments are passed to the config constructor.
    """
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()

    if scheme == "unix":
        path = unquote(parts.path)
        if not path:
            raise ValueError(f"unix connection URI has no socket path: {uri}")
        return UnixSocketConfig(socket_path=path, **overrides)

    if scheme in ("tcp", "http", "https"):
        if not parts.netloc:
            raise ValueError(f"{scheme} connection URI has no host: {uri}")
        http_scheme = "http" if scheme == "tcp" else scheme
        return TcpConfig(uri=f"{http_scheme}://{parts.netloc}{parts.path}", **overrides)

    if scheme == "ssh":
        if not parts.hostname:
            raise ValueError(f"ssh connection URI has no host: {uri}")
        host = parts.hostname
        if parts.username:
            host = f"{unquote(parts.username)}@{host}"
        return SshConfig(
            host=host,
            port=parts.port or DEFAULT_SSH_PORT,
            remote_socket_path=unquote(parts.path) or DEFAULT_REMOTE_SOCKET,
            **overrides,
        )

    raise ValueError(f"Unsupported connection URI scheme: {uri}")


def default_socket_path(environ: Mapping[str, str] | None = None) -> str:
    """The local socket podman uses: rootless under XDG_RUNTIME_DIR, else rootful."""
    env = os.environ if environ is None else environ
    runtime_dir = env.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return os.path.join(runtime_dir, "podman", "podman.sock")
    return DEFAULT_REMOTE_SOCKET


def config_from_env(environ: Mapping[str, str] | None = None) -> TransportConfig:
    """Build a config from CONTAINER_HOST and friends.

    CONTAINER_HOST     connection URI (default: the local podman socket)
    CONTAINER_SSHKEY   identity file for ssh:// hosts
    PODMAN_API_VERSION API version path segment
    PODMAN_TIMEOUT     request deadline in seconds
    """
    env = os.environ if environ is None else environ

    overrides: dict[str, Any] = {}
    if env.get("PODMAN_API_VERSION"):
        overrides["api_version"] = env["PODMAN_API_VERSION"]
    if env.get("PODMAN_TIMEOUT"):
        try:
            overrides["timeout"] = float(env["PODMAN_TIMEOUT"])
        except ValueError as e:
            raise ValueError(f"PODMAN_TIMEOUT is not a number: {env['PODMAN_TIMEOUT']!r}") from e

    uri = env.get("CONTAINER_HOST") or f"unix://{default_socket_path(env)}"
    if uri.startswith("ssh://") and env.get("CONTAINER_SSHKEY"):
        overrides["identity_file"] = env["CONTAINER_SSHKEY"]

    return parse_connection_uri(uri, **overrides)
