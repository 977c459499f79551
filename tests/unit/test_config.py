"""Unit tests for connection configuration and query encoding."""

from __future__ import annotations

import pytest

from libpod_transport import (
    ConnectionKind,
    IdentityToken,
    SshConfig,
    TcpConfig,
    UnixSocketConfig,
    UsernamePassword,
    build_query,
    config_from_env,
    parse_connection_uri,
)
from libpod_transport.config import encode_credential


class TestConfigDefaults:
    """Each config carries its kind tag and the shared defaults."""

    def test_unix_defaults(self) -> None:
        config = UnixSocketConfig(socket_path="/run/podman/podman.sock")
        assert config.kind == ConnectionKind.UNIX
        assert config.api_version == "4.0.0"
        assert config.timeout == 30.0
        assert config.auth is None

    def test_ssh_defaults(self) -> None:
        config = SshConfig(host="core@example")
        assert config.kind == ConnectionKind.SSH
        assert config.remote_socket_path == "/run/podman/podman.sock"
        assert config.port == 22
        assert config.ssh_options == []
        assert config.ssh_command == "ssh"

    def test_kind_not_settable(self) -> None:
        with pytest.raises(TypeError):
            TcpConfig(uri="http://x", kind=ConnectionKind.SSH)  # type: ignore[call-arg]


class TestCredentials:
    """Credential encoding."""

    def test_identity_token_accepts_alias(self) -> None:
        token = IdentityToken.model_validate({"identityToken": "abc"})
        assert token.identity_token == "abc"

    def test_encoded_form_is_stable(self) -> None:
        # base64 of {"username":"u","password":"p"}
        assert encode_credential(UsernamePassword(username="u", password="p")) == (
            "eyJ1c2VybmFtZSI6InUiLCJwYXNzd29yZCI6InAifQ=="
        )


class TestParseConnectionUri:
    """Tests for podman-style connection URIs."""

    def test_unix(self) -> None:
        config = parse_connection_uri("unix:///run/user/1000/podman/podman.sock")
        assert isinstance(config, UnixSocketConfig)
        assert config.socket_path == "/run/user/1000/podman/podman.sock"

    def test_tcp_becomes_http(self) -> None:
        config = parse_connection_uri("tcp://10.0.0.5:8888")
        assert isinstance(config, TcpConfig)
        assert config.uri == "http://10.0.0.5:8888"

    def test_https_kept(self) -> None:
        config = parse_connection_uri("https://podman.example:8443", timeout=5.0)
        assert isinstance(config, TcpConfig)
        assert config.uri == "https://podman.example:8443"
        assert config.timeout == 5.0

    def test_ssh_full(self) -> None:
        config = parse_connection_uri("ssh://core@build-box:2222/run/user/1000/podman/podman.sock")
        assert isinstance(config, SshConfig)
        assert config.host == "core@build-box"
        assert config.port == 2222
        assert config.remote_socket_path == "/run/user/1000/podman/podman.sock"

    def test_ssh_defaults(self) -> None:
        config = parse_connection_uri("ssh://build-box")
        assert isinstance(config, SshConfig)
        assert config.host == "build-box"
        assert config.port == 22
        assert config.remote_socket_path == "/run/podman/podman.sock"

    @pytest.mark.parametrize("uri", ["ftp://x", "unix://", "ssh:///path", "tcp://"])
    def test_rejects_bad_uris(self, uri: str) -> None:
        with pytest.raises(ValueError):
            parse_connection_uri(uri)


class TestConfigFromEnv:
    """Tests for CONTAINER_HOST and friends."""

    def test_default_rootful_socket(self) -> None:
        config = config_from_env({})
        assert isinstance(config, UnixSocketConfig)
        assert config.socket_path == "/run/podman/podman.sock"

    def test_default_rootless_socket(self) -> None:
        config = config_from_env({"XDG_RUNTIME_DIR": "/run/user/1000"})
        assert isinstance(config, UnixSocketConfig)
        assert config.socket_path == "/run/user/1000/podman/podman.sock"

    def test_ssh_host_with_key(self) -> None:
        config = config_from_env(
            {
                "CONTAINER_HOST": "ssh://core@build-box/run/podman/podman.sock",
                "CONTAINER_SSHKEY": "/home/me/.ssh/id_ed25519",
                "PODMAN_API_VERSION": "5.2.0",
                "PODMAN_TIMEOUT": "12",
            }
        )
        assert isinstance(config, SshConfig)
        assert config.identity_file == "/home/me/.ssh/id_ed25519"
        assert config.api_version == "5.2.0"
        assert config.timeout == 12.0

    def test_sshkey_ignored_for_tcp(self) -> None:
        config = config_from_env({"CONTAINER_HOST": "tcp://h:1", "CONTAINER_SSHKEY": "/k"})
        assert isinstance(config, TcpConfig)

    def test_bad_timeout(self) -> None:
        with pytest.raises(ValueError, match="PODMAN_TIMEOUT"):
            config_from_env({"PODMAN_TIMEOUT": "soon"})


class TestBuildQuery:
    """Tests for query-string encoding."""

    def test_empty(self) -> None:
        assert build_query(None) == ""
        assert build_query({}) == ""
        assert build_query({"all": None}) == ""

    def test_scalars_and_bools(self) -> None:
        assert build_query({"all": True, "limit": 5}) == "?all=true&limit=5"

    def test_lists_repeat_key(self) -> None:
        assert build_query({"names": ["a", "b"]}) == "?names=a&names=b"

    def test_mappings_json_encoded(self) -> None:
        assert build_query({"filters": {"label": ["x=y"]}}) == (
            "?filters=%7B%22label%22%3A%5B%22x%3Dy%22%5D%7D"
        )

    def test_values_percent_encoded(self) -> None:
        assert build_query({"reference": "docker.io/library/alpine:latest"}) == (
            "?reference=docker.io%2Flibrary%2Falpine%3Alatest"
        )
