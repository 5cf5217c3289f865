"""SSH transport — paramiko-backed implementation of the Channel protocol.

paramiko is a blocking library. Every call that can block runs in the
default executor so the relay's event loop stays responsive; closing a
channel unblocks a pending ``recv`` in its executor thread.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, TypeVar

import paramiko
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shellrelay.config import ConnectionConfig
from shellrelay.errors import PtyRequestFailed, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXEC_CHUNK_SIZE = 32768
EXEC_POLL_INTERVAL = 0.02


async def _in_executor(func: Callable[..., T], *args: Any) -> T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args))


class ParamikoChannel:
    """Adapts a ``paramiko.Channel`` to the async Channel protocol."""

    def __init__(self, channel: paramiko.Channel) -> None:
        self._chan = channel

    @property
    def closed(self) -> bool:
        return bool(self._chan.closed)

    def at_eof(self) -> bool:
        return bool(self._chan.eof_received) or self.closed

    async def request_pty(self, term_type: str, columns: int, rows: int) -> None:
        try:
            await _in_executor(self._chan.get_pty, term_type, columns, rows)
        except paramiko.SSHException as e:
            raise PtyRequestFailed("pty", str(e)) from e

    async def request_shell(self) -> None:
        try:
            await _in_executor(self._chan.invoke_shell)
        except paramiko.SSHException as e:
            raise PtyRequestFailed("shell", str(e)) from e

    async def exec(self, command: str) -> None:
        try:
            await _in_executor(self._chan.exec_command, command)
        except paramiko.SSHException as e:
            raise PtyRequestFailed("exec", str(e)) from e

    async def read(self, size: int) -> bytes:
        return await _in_executor(self._chan.recv, size)

    async def write(self, data: bytes) -> int:
        await _in_executor(self._chan.sendall, data)
        return len(data)

    async def close(self) -> None:
        if self._chan.closed:
            return
        await _in_executor(self._chan.close)

    async def collect(self) -> tuple[bytes, bytes, int]:
        """Read stdout and stderr to the end and return them with the exit status.

        For channels started with ``exec``.
        """
        return await _in_executor(self._collect_blocking)

    def _collect_blocking(self) -> tuple[bytes, bytes, int]:
        # Both streams share the channel window: draining only one of them
        # can stall the remote writer on the other.
        chan = self._chan
        stdout = bytearray()
        stderr = bytearray()
        while True:
            progressed = False
            if chan.recv_ready():
                stdout += chan.recv(EXEC_CHUNK_SIZE)
                progressed = True
            if chan.recv_stderr_ready():
                stderr += chan.recv_stderr(EXEC_CHUNK_SIZE)
                progressed = True
            if (
                chan.exit_status_ready()
                and not chan.recv_ready()
                and not chan.recv_stderr_ready()
            ):
                break
            if not progressed:
                time.sleep(EXEC_POLL_INTERVAL)
        return bytes(stdout), bytes(stderr), chan.recv_exit_status()


@dataclass
class ExecResult:
    """Outcome of a single non-interactive remote command."""

    exit_status: int
    stdout: str
    stderr: str


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _open_client(config: ConnectionConfig) -> paramiko.SSHClient:
    """Connect and authenticate, retrying transient network errors."""
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    if config.allow_unknown_hosts:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.RejectPolicy())

    try:
        client.connect(
            hostname=config.host,
            port=config.port,
            username=config.username,
            password=config.password,
            key_filename=config.key_file,
            passphrase=config.passphrase,
            timeout=config.timeout,
            allow_agent=True,
            look_for_keys=config.key_file is None,
        )
    except BaseException:
        client.close()
        raise
    return client


class SSHConnection:
    """An authenticated SSH connection that hands out session channels."""

    def __init__(self, client: paramiko.SSHClient, config: ConnectionConfig) -> None:
        self._client = client
        self.config = config

    @property
    def target(self) -> str:
        return f"{self.config.username}@{self.config.host}"

    def _transport(self) -> paramiko.Transport:
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise TransportError(f"connection to {self.target} is not active")
        return transport

    async def open_channel(self) -> ParamikoChannel:
        """Open a fresh session channel."""
        transport = self._transport()
        try:
            chan = await _in_executor(transport.open_session)
        except paramiko.SSHException as e:
            raise TransportError(f"cannot open channel: {e}") from e
        # TCP_NODELAY keeps single keystrokes from being batched by Nagle.
        if transport.sock is not None and isinstance(transport.sock, socket.socket):
            transport.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return ParamikoChannel(chan)

    async def exec_command(self, command: str) -> ExecResult:
        """Run one command without a PTY and collect its output."""
        logger.debug("Executing remote command: %s", command)
        channel = await self.open_channel()
        try:
            await channel.exec(command)
            stdout, stderr, exit_status = await channel.collect()
        finally:
            await channel.close()
        result = ExecResult(
            exit_status=exit_status,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if exit_status != 0:
            logger.warning(
                "Remote command exited with %d: %s", exit_status, result.stderr.strip()
            )
        return result

    async def close(self) -> None:
        logger.info("Disconnecting from %s", self.target)
        await _in_executor(self._client.close)


async def connect(config: ConnectionConfig) -> SSHConnection:
    """Connect to ``config.host`` and authenticate.

    Raises:
        TransportError: The host is unreachable, the host key is rejected,
            or authentication fails.
    """
    logger.info(
        "Connecting to %s@%s:%d", config.username, config.host, config.port
    )
    try:
        client = await _in_executor(_open_client, config)
    except paramiko.AuthenticationException as e:
        raise TransportError(f"authentication failed for {config.username}: {e}") from e
    except paramiko.SSHException as e:
        raise TransportError(f"SSH negotiation with {config.host} failed: {e}") from e
    except OSError as e:
        raise TransportError(
            f"cannot reach {config.host}:{config.port}: {e}"
        ) from e
    logger.info("Connected to %s", config.host)
    return SSHConnection(client, config)
