"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Callable, Iterator

import httpx
import pytest

from libpod_transport import Transport, UnixSocketBackend


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def short_tmp() -> Iterator[str]:
    """Temp dir with a short path; AF_UNIX paths are limited to ~108 bytes."""
    path = tempfile.mkdtemp(prefix="lpt-")
    yield path
    shutil.rmtree(path, ignore_errors=True)


MockHandler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def make_transport() -> Callable[..., Transport]:
    """Build a Transport whose Unix-socket backend is served by a handler."""

    def factory(handler: MockHandler, **kwargs) -> Transport:
        auth = kwargs.pop("auth", None)
        backend = UnixSocketBackend(
            "/tmp/fake.sock",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )
        return Transport(backend, auth=auth)

    return factory
