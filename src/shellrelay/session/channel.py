"""Channel session — turn an authenticated channel into an interactive shell."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol, runtime_checkable

from shellrelay.errors import PtyRequestFailed

logger = logging.getLogger(__name__)

# Plain xterm rather than xterm-256color keeps the set of control
# sequences remote programs emit small.
DEFAULT_TERM_TYPE = "xterm"


class TerminalGeometry(NamedTuple):
    """Size of the local terminal, read once at session start."""

    columns: int
    rows: int


@runtime_checkable
class Channel(Protocol):
    """An open, authenticated, full-duplex byte channel.

    Provided by the transport layer. ``read`` returns ``b""`` once the
    remote side has closed its end.
    """

    @property
    def closed(self) -> bool: ...

    def at_eof(self) -> bool: ...

    async def request_pty(self, term_type: str, columns: int, rows: int) -> None: ...

    async def request_shell(self) -> None: ...

    async def exec(self, command: str) -> None: ...

    async def read(self, size: int) -> bytes: ...

    async def write(self, data: bytes) -> int: ...

    async def close(self) -> None: ...


@dataclass
class SessionHandle:
    """A channel with a PTY and a running remote shell.

    Must be closed explicitly with ``await handle.close()``.
    """

    channel: Channel
    geometry: TerminalGeometry
    term_type: str = DEFAULT_TERM_TYPE
    opened_at: float = field(default_factory=time.monotonic)
    _finished: bool = field(default=False, init=False, repr=False)

    @property
    def closed(self) -> bool:
        return self.channel.closed

    async def close(self) -> None:
        """Close the underlying channel and end the session.

        Safe to call more than once, and after the relay has already
        closed the channel.
        """
        if self._finished:
            return
        self._finished = True
        try:
            if not self.channel.closed:
                await self.channel.close()
        finally:
            logger.info(
                "Session closed after %.1fs", time.monotonic() - self.opened_at
            )


async def open_interactive(
    channel: Channel,
    geometry: TerminalGeometry,
    term_type: str = DEFAULT_TERM_TYPE,
) -> SessionHandle:
    """Request a PTY of the given size, then start the remote shell.

    Raises:
        PtyRequestFailed: The remote refused the PTY or the shell.
    """
    logger.debug(
        "Requesting PTY %s %dx%d", term_type, geometry.columns, geometry.rows
    )
    try:
        await channel.request_pty(term_type, geometry.columns, geometry.rows)
    except PtyRequestFailed:
        raise
    except Exception as e:
        raise PtyRequestFailed("pty", str(e) or type(e).__name__) from e

    try:
        await channel.request_shell()
    except PtyRequestFailed:
        raise
    except Exception as e:
        raise PtyRequestFailed("shell", str(e) or type(e).__name__) from e

    logger.info(
        "Interactive shell started (term=%s, %dx%d)",
        term_type,
        geometry.columns,
        geometry.rows,
    )
    return SessionHandle(channel=channel, geometry=geometry, term_type=term_type)
