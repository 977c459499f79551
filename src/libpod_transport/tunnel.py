"""SSH tunnel backend.

Forwards a local Unix socket to the engine socket on a remote host with an
external ``ssh -N -L`` process, then talks HTTP to the local end through a
UnixSocketBackend.

Lifecycle:
    SPAWNING         temp dir created, ssh started
    AWAITING_SOCKET  first of: socket file appears / ssh exits / deadline
    READY            socket appeared first; exchanges go to the inner backend
    FAILED           ssh exited or deadline passed; everything torn down
    CLOSED           close() ran; process reaped, temp dir removed
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import tempfile
from enum import Enum

import httpx

from .backends import CONFIGURED_TIMEOUT, Content, UnixSocketBackend, _ConfiguredTimeout
from .config import SshConfig
from .errors import TunnelError

logger = logging.getLogger(__name__)

SOCKET_WAIT_TIMEOUT = 10.0
SOCKET_POLL_INTERVAL = 0.1
STDERR_DRAIN_TIMEOUT = 5.0
TERMINATE_GRACE = 5.0


class TunnelState(str, Enum):
    """Tunnel state machine."""

    SPAWNING = "spawning"
    AWAITING_SOCKET = "awaiting_socket"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


def build_ssh_args(config: SshConfig, local_socket: str) -> list[str]:
    """Arguments for ``ssh`` forwarding local_socket to the remote engine socket.

    The destination host is always last so caller options cannot follow it.
    """
    args = [
        "-N",
        "-L",
        f"{local_socket}:{config.remote_socket_path}",
        "-p",
        str(config.port),
    ]
    if not any("StrictHostKeyChecking" in opt for opt in config.ssh_options):
        args += ["-o", "StrictHostKeyChecking=accept-new"]
    args += ["-o", "ExitOnForwardFailure=yes"]
    if config.identity_file:
        args += ["-i", config.identity_file]
    args += [*config.ssh_options, config.host]
    return args


def _remove_dir(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)


async def _wait_for_path(path: str, interval: float) -> None:
    while not os.path.exists(path):
        await asyncio.sleep(interval)


class SshTunnelBackend:
    """Backend that reaches a remote engine socket through ssh.

    Construct with ``await SshTunnelBackend.open(config)``; the constructor
    only wires up an already-spawned process.
    """

    def __init__(
        self,
        config: SshConfig,
        process: asyncio.subprocess.Process,
        temp_dir: str,
        socket_path: str,
    ):
        self.config = config
        self.socket_path = socket_path
        self.temp_dir = temp_dir
        self.state = TunnelState.SPAWNING
        self.exited = False
        self._process = process
        self._inner: UnixSocketBackend | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[int] = asyncio.create_task(process.wait())
        self._exit_task.add_done_callback(self._on_exit)

    @classmethod
    async def open(
        cls,
        config: SshConfig,
        *,
        ready_timeout: float = SOCKET_WAIT_TIMEOUT,
    ) -> SshTunnelBackend:
        """Start ssh and wait until the forwarded socket exists.

        Raises:
            TunnelError: ssh could not be started, exited early, or the
                socket did not appear within ready_timeout. No process or
                temp dir survives the failure.
        """
        temp_dir = tempfile.mkdtemp(prefix="podman-py-")
        socket_path = os.path.join(temp_dir, "podman.sock")
        args = build_ssh_args(config, socket_path)

        try:
            process = await asyncio.create_subprocess_exec(
                config.ssh_command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            _remove_dir(temp_dir)
            raise TunnelError(config.host, f"ssh command not available ({e})") from e
        except BaseException:
            _remove_dir(temp_dir)
            raise

        logger.info(f"Spawned ssh tunnel to {config.host} (pid={process.pid})")
        tunnel = cls(config, process, temp_dir, socket_path)
        try:
            await tunnel._await_socket(ready_timeout)
        except TunnelError:
            raise
        except BaseException:
            # cancelled while waiting; nothing may outlive open()
            await tunnel._teardown()
            raise
        return tunnel

    def _on_exit(self, task: asyncio.Task[int]) -> None:
        self.exited = True
        if self.state == TunnelState.READY:
            returncode = None if task.cancelled() else task.result()
            logger.warning(f"ssh tunnel to {self.config.host} exited (code={returncode})")

    async def _await_socket(self, ready_timeout: float) -> None:
        self.state = TunnelState.AWAITING_SOCKET
        socket_task = asyncio.create_task(_wait_for_path(self.socket_path, SOCKET_POLL_INTERVAL))
        try:
            done, _ = await asyncio.wait(
                {socket_task, self._exit_task},
                timeout=ready_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            socket_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await socket_task

        if socket_task in done and self._exit_task not in done:
            self._become_ready()
            return
        await self._fail(f"socket not created within {ready_timeout:g}s")

    def _become_ready(self) -> None:
        self._inner = UnixSocketBackend(
            self.socket_path,
            api_version=self.config.api_version,
            timeout=self.config.timeout,
        )
        self._stderr_task = asyncio.create_task(self._forward_stderr())
        self.state = TunnelState.READY
        logger.info(f"ssh tunnel to {self.config.host} ready at {self.socket_path}")

    async def _fail(self, fallback: str) -> None:
        self.state = TunnelState.FAILED
        self._terminate()

        err = b""
        if self._process.stderr is not None:
            try:
                err = await asyncio.wait_for(self._process.stderr.read(), STDERR_DRAIN_TIMEOUT)
            except TimeoutError:
                logger.debug(f"ssh stderr for {self.config.host} still open after drain timeout")

        await self._reap()
        _remove_dir(self.temp_dir)

        reason = err.decode("utf-8", errors="replace").strip() or fallback
        logger.warning(f"ssh tunnel to {self.config.host} failed: {reason}")
        raise TunnelError(self.config.host, reason)

    async def _forward_stderr(self) -> None:
        """Log ssh diagnostics while the tunnel is up."""
        if self._process.stderr is None:
            return
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[ssh {self.config.host}] {line.decode('utf-8', errors='replace').rstrip()}")

    def _terminate(self) -> None:
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()

    async def _reap(self) -> None:
        done, _ = await asyncio.wait({self._exit_task}, timeout=TERMINATE_GRACE)
        if not done:
            logger.warning(f"ssh tunnel to {self.config.host} ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._exit_task

    async def _teardown(self) -> None:
        self._terminate()
        if self._stderr_task:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None
        try:
            await self._reap()
        finally:
            _remove_dir(self.temp_dir)

    async def exchange(
        self,
        method: str,
        path: str,
        *,
        content: Content | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None | _ConfiguredTimeout = CONFIGURED_TIMEOUT,
    ) -> httpx.Response:
        if self._inner is None or self.state != TunnelState.READY:
            raise TunnelError(self.config.host, f"tunnel is {self.state.value}")
        return await self._inner.exchange(
            method, path, content=content, headers=headers, timeout=timeout
        )

    async def close(self) -> None:
        """Close the inner backend, stop ssh and remove the temp dir. Idempotent."""
        if self.state == TunnelState.CLOSED:
            return
        self.state = TunnelState.CLOSED
        try:
            if self._inner is not None:
                await self._inner.close()
        finally:
            await self._teardown()
        logger.info(f"ssh tunnel to {self.config.host} closed")
