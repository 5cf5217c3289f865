"""Relay engine — pump bytes between the local terminal and a remote channel."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from shellrelay.errors import ChannelIoError
from shellrelay.escape.cpr import CprFilter, filter_block
from shellrelay.session.channel import Channel

# The relay runs with the terminal in raw mode: keep records at INFO or
# below so the default stderr handler never writes into the session.
logger = logging.getLogger(__name__)

LOCAL_TO_REMOTE = "local->remote"
REMOTE_TO_LOCAL = "remote->local"

# Ctrl-C (ETX) and Ctrl-D (EOT)
DEFAULT_INTERRUPT_BYTES = frozenset({0x03, 0x04})

# Upper bound on waiting for the output path to drain after the remote closed.
DRAIN_TIMEOUT = 1.0


class RelayState(enum.Enum):
    """Lifecycle states for a relay."""

    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"  # Stop requested, winding down both paths
    CLOSED = "closed"


class RelayOutcome(enum.Enum):
    """Why a relay ended."""

    LOCAL_EXIT = "local_exit"  # Interrupt byte typed locally
    LOCAL_EOF = "local_eof"  # Local input closed
    REMOTE_CLOSED = "remote_closed"  # Channel reached EOF
    ERROR = "error"


class TerminalIO(Protocol):
    async def read_byte(self, timeout: float | None = None) -> int | None: ...

    def write(self, data: bytes) -> None: ...


@dataclass
class RelayResult:
    """Completion report handed back to the caller."""

    outcome: RelayOutcome
    error: ChannelIoError | None = None
    bytes_in: int = 0  # Remote -> local, before filtering
    bytes_out: int = 0  # Local -> remote, after filtering

    @property
    def ok(self) -> bool:
        return self.outcome is not RelayOutcome.ERROR

    @property
    def direction(self) -> str | None:
        return self.error.direction if self.error else None


@dataclass
class _Stop:
    outcome: RelayOutcome
    error: ChannelIoError | None = None


class RelayEngine:
    """Runs the two data paths of an interactive session.

    * remote -> local: chunks read from the channel, CPR replies removed
      with ``filter_block``, written to the terminal.
    * local -> remote: keystrokes read one byte at a time, interrupt bytes
      intercepted, CPR replies removed with a ``CprFilter``, written to
      the channel.

    Both paths run as asyncio tasks. The first one to stop ends the
    session: the other is cancelled (or, after a remote close, given
    ``DRAIN_TIMEOUT`` to flush what is left) and the channel is closed.

    Interrupt bytes end the session locally; they are not forwarded, so
    the remote process never sees a SIGINT from them.
    """

    def __init__(
        self,
        channel: Channel,
        terminal: TerminalIO,
        *,
        filter_input: bool = True,
        filter_output: bool = True,
        read_size: int = 8192,
        poll_interval: float = 0.1,
        interrupt_bytes: Iterable[int] = DEFAULT_INTERRUPT_BYTES,
        on_state_change: Callable[[RelayState, RelayState], None] | None = None,
    ) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._channel = channel
        self._terminal = terminal
        self._filter_output = filter_output
        self._input_filter = CprFilter() if filter_input else None
        self._read_size = read_size
        self._poll_interval = poll_interval
        self._interrupt_bytes = frozenset(interrupt_bytes)
        self._on_state_change = on_state_change
        self._state = RelayState.STARTING
        self._bytes_in = 0
        self._bytes_out = 0

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def input_filter(self) -> CprFilter | None:
        return self._input_filter

    def _set_state(self, new: RelayState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.debug("Relay %s -> %s", old.value, new.value)
        if self._on_state_change:
            try:
                self._on_state_change(old, new)
            except Exception:
                logger.info("Error in relay state callback", exc_info=True)

    async def run(self) -> RelayResult:
        """Relay until a stop condition, then close the channel.

        Never raises for I/O failures; they are reported in the result.
        """
        if self._state is not RelayState.STARTING:
            raise RuntimeError(f"relay already {self._state.value}")

        output_task = asyncio.create_task(self._pump_output(), name="relay-output")
        input_task = asyncio.create_task(self._pump_input(), name="relay-input")
        tasks = {output_task, input_task}
        self._set_state(RelayState.RUNNING)

        try:
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_COMPLETED
            )
            self._set_state(RelayState.DRAINING)
            stop = self._first_stop(done, prefer=output_task)
            logger.info("Relay stopping: %s", stop.outcome.value)
            if stop.error is not None:
                logger.info("Relay I/O error (%s)", stop.error)

            if stop.outcome is RelayOutcome.REMOTE_CLOSED and output_task in pending:
                # Let the output path print whatever is still buffered.
                await asyncio.wait({output_task}, timeout=DRAIN_TIMEOUT)
        except asyncio.CancelledError:
            self._set_state(RelayState.DRAINING)
            raise
        finally:
            await self._cancel(tasks)
            await self._close_channel()
            if self._input_filter is not None and self._input_filter.pending:
                logger.debug(
                    "Discarding held input bytes %r", self._input_filter.flush()
                )
            self._set_state(RelayState.CLOSED)

        return RelayResult(
            outcome=stop.outcome,
            error=stop.error,
            bytes_in=self._bytes_in,
            bytes_out=self._bytes_out,
        )

    @staticmethod
    def _first_stop(done: set[asyncio.Task[_Stop]], prefer: asyncio.Task[_Stop]) -> _Stop:
        stops = [task.result() for task in done]
        for stop in stops:
            if stop.error is not None:
                return stop
        if prefer in done:
            return prefer.result()
        return stops[0]

    @staticmethod
    async def _cancel(tasks: set[asyncio.Task[_Stop]]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _close_channel(self) -> None:
        if self._channel.closed:
            return
        try:
            await self._channel.close()
        except Exception as e:
            logger.info("Error closing channel: %s", e)

    async def _pump_output(self) -> _Stop:
        """Remote -> local."""
        while True:
            try:
                data = await self._channel.read(self._read_size)
            except Exception as e:
                return _Stop(
                    RelayOutcome.ERROR,
                    ChannelIoError(REMOTE_TO_LOCAL, f"read failed: {e}"),
                )

            if not data:
                logger.debug("Remote channel reached EOF")
                return _Stop(RelayOutcome.REMOTE_CLOSED)

            self._bytes_in += len(data)
            if self._filter_output:
                data = filter_block(data)
            if not data:
                continue

            try:
                self._terminal.write(data)
            except Exception as e:
                return _Stop(
                    RelayOutcome.ERROR,
                    ChannelIoError(REMOTE_TO_LOCAL, f"terminal write failed: {e}"),
                )

    async def _pump_input(self) -> _Stop:
        """Local -> remote."""
        while True:
            try:
                byte = await self._terminal.read_byte(timeout=self._poll_interval)
            except EOFError:
                logger.debug("Local input closed")
                return _Stop(RelayOutcome.LOCAL_EOF)
            except Exception as e:
                return _Stop(
                    RelayOutcome.ERROR,
                    ChannelIoError(LOCAL_TO_REMOTE, f"terminal read failed: {e}"),
                )

            if byte is None:
                # Poll timeout: only check the channel is still alive.
                if self._channel.closed or self._channel.at_eof():
                    return _Stop(RelayOutcome.REMOTE_CLOSED)
                continue

            if byte in self._interrupt_bytes:
                logger.debug("Interrupt byte 0x%02x, ending session", byte)
                return _Stop(RelayOutcome.LOCAL_EXIT)

            if self._input_filter is not None:
                data = self._input_filter.process(byte)
                if data is None:
                    continue
            else:
                data = bytes((byte,))

            try:
                await self._channel.write(data)
            except Exception as e:
                return _Stop(
                    RelayOutcome.ERROR,
                    ChannelIoError(LOCAL_TO_REMOTE, f"write failed: {e}"),
                )
            self._bytes_out += len(data)
