"""Interactive session driver.

Sequence: read the terminal size, take raw mode, negotiate the PTY and
shell, relay until a stop condition, restore the terminal, close the
session. The terminal is restored before any error leaves this module.
"""

from __future__ import annotations

import logging
from typing import Callable

from shellrelay.config import RelayConfig
from shellrelay.errors import ChannelError, SessionPhaseError, TerminalModeError
from shellrelay.relay.engine import RelayEngine, RelayResult, RelayState
from shellrelay.session.channel import (
    DEFAULT_TERM_TYPE,
    Channel,
    TerminalGeometry,
    open_interactive,
)
from shellrelay.terminal.local import LocalTerminal
from shellrelay.terminal.raw import RawModeGuard

logger = logging.getLogger(__name__)


async def run_interactive(
    channel: Channel,
    terminal: LocalTerminal,
    config: RelayConfig | None = None,
    *,
    term_type: str = DEFAULT_TERM_TYPE,
    geometry: TerminalGeometry | None = None,
    on_state_change: Callable[[RelayState, RelayState], None] | None = None,
) -> RelayResult:
    """Run one interactive shell over ``channel`` on the local terminal.

    Relay I/O errors are returned in the result (``outcome`` ERROR).
    Setup and teardown failures raise ``SessionPhaseError`` with phase
    ``"raw-mode"``, ``"pty"`` or ``"restore"``.
    """
    config = config or RelayConfig()
    geometry = geometry or terminal.size()

    guard = RawModeGuard(terminal)
    try:
        guard.enter()
    except TerminalModeError as e:
        raise SessionPhaseError("raw-mode", e) from e

    failure: BaseException | None = None
    try:
        try:
            handle = await open_interactive(channel, geometry, term_type)
        except ChannelError as e:
            await _close_quietly(channel)
            raise SessionPhaseError("pty", e) from e

        engine = RelayEngine(
            handle.channel,
            terminal,
            filter_input=config.filter_input,
            filter_output=config.filter_output,
            read_size=config.read_size,
            poll_interval=config.poll_interval,
            interrupt_bytes=config.interrupt_bytes,
            on_state_change=on_state_change,
        )
        try:
            return await engine.run()
        finally:
            await handle.close()
    except BaseException as e:
        failure = e
        raise
    finally:
        try:
            guard.release()
        except TerminalModeError as e:
            if failure is None:
                raise SessionPhaseError("restore", e) from e
            logger.error("Failed to restore terminal mode: %s", e)


async def _close_quietly(channel: Channel) -> None:
    try:
        await channel.close()
    except Exception as e:
        logger.debug("Error closing rejected channel: %s", e)
