"""Local terminal device — size queries, raw mode and byte-level I/O."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import termios
import tty
from collections import deque
from typing import Any, BinaryIO

from shellrelay.errors import TerminalModeError
from shellrelay.session.channel import TerminalGeometry

logger = logging.getLogger(__name__)


class LocalTerminal:
    """The controlling terminal of this process.

    Input is read with ``loop.add_reader`` so a pending read never blocks
    the event loop and can be abandoned at any time.
    """

    def __init__(
        self,
        stdin_fd: int | None = None,
        stdout: BinaryIO | None = None,
        default_geometry: TerminalGeometry = TerminalGeometry(80, 24),
    ) -> None:
        self._fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._default_geometry = default_geometry
        self._pending: deque[int] = deque()

    @property
    def fd(self) -> int:
        return self._fd

    def is_interactive(self) -> bool:
        return os.isatty(self._fd)

    def size(self) -> TerminalGeometry:
        """Current (columns, rows), or the default when not a terminal."""
        for fd in (self._fd, self._stdout_fd()):
            if fd is None:
                continue
            try:
                columns, rows = os.get_terminal_size(fd)
            except OSError:
                continue
            if columns > 0 and rows > 0:
                return TerminalGeometry(columns, rows)
        logger.debug("Terminal size unavailable, using %s", self._default_geometry)
        return self._default_geometry

    def _stdout_fd(self) -> int | None:
        try:
            return self._stdout.fileno()
        except (AttributeError, OSError, ValueError):
            return None

    def enable_raw_mode(self) -> list[Any]:
        """Switch to raw mode and return the previous attributes.

        Raw mode turns off line buffering, echo and signal generation
        (Ctrl-C arrives as byte 0x03 instead of SIGINT).
        """
        if not self.is_interactive():
            raise TerminalModeError("standard input is not a terminal")
        try:
            saved = termios.tcgetattr(self._fd)
            tty.setraw(self._fd, termios.TCSADRAIN)
        except termios.error as e:
            raise TerminalModeError(f"cannot enable raw mode: {e}") from e
        logger.debug("Raw mode enabled on fd %d", self._fd)
        return saved

    def disable_raw_mode(self, saved: list[Any]) -> None:
        """Restore the attributes returned by ``enable_raw_mode``."""
        try:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            raise TerminalModeError(f"cannot restore terminal mode: {e}") from e
        logger.debug("Raw mode disabled on fd %d", self._fd)

    async def read_byte(self, timeout: float | None = None) -> int | None:
        """Read one input byte.

        Returns None if nothing arrived within ``timeout`` seconds.

        Raises:
            EOFError: Standard input was closed.
        """
        if self._pending:
            return self._pending.popleft()

        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()

        def _on_ready() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_reader(self._fd, _on_ready)
        try:
            await asyncio.wait_for(ready, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            loop.remove_reader(self._fd)

        data = os.read(self._fd, 1024)
        if not data:
            raise EOFError("standard input closed")
        # Keep the rest so bytes are handed out one at a time, in order.
        self._pending.extend(data[1:])
        return data[0]

    def write(self, data: bytes) -> None:
        self._stdout.write(data)
        self._stdout.flush()
