"""Tests for shellrelay.session.channel (open_interactive, SessionHandle)."""

from __future__ import annotations

import logging

import pytest

from shellrelay.errors import ChannelError, PtyRequestFailed
from shellrelay.session.channel import (
    DEFAULT_TERM_TYPE,
    Channel,
    SessionHandle,
    TerminalGeometry,
    open_interactive,
)


class RecordingChannel:
    """Channel double that records negotiation requests."""

    def __init__(
        self,
        pty_error: Exception | None = None,
        shell_error: Exception | None = None,
    ) -> None:
        self.pty_error = pty_error
        self.shell_error = shell_error
        self.calls: list[tuple] = []
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def at_eof(self) -> bool:
        return self._closed

    async def request_pty(self, term_type: str, columns: int, rows: int) -> None:
        self.calls.append(("pty", term_type, columns, rows))
        if self.pty_error:
            raise self.pty_error

    async def request_shell(self) -> None:
        self.calls.append(("shell",))
        if self.shell_error:
            raise self.shell_error

    async def exec(self, command: str) -> None:
        self.calls.append(("exec", command))

    async def read(self, size: int) -> bytes:
        return b""

    async def write(self, data: bytes) -> int:
        return len(data)

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True


# ---------------------------------------------------------------------------
# TerminalGeometry / protocol
# ---------------------------------------------------------------------------


class TestTerminalGeometry:
    def test_fields(self) -> None:
        geometry = TerminalGeometry(columns=132, rows=43)
        assert geometry.columns == 132
        assert geometry.rows == 43
        assert tuple(geometry) == (132, 43)

    def test_recording_channel_satisfies_protocol(self) -> None:
        assert isinstance(RecordingChannel(), Channel)


# ---------------------------------------------------------------------------
# open_interactive
# ---------------------------------------------------------------------------


class TestOpenInteractive:
    async def test_requests_pty_then_shell(self) -> None:
        channel = RecordingChannel()
        handle = await open_interactive(channel, TerminalGeometry(100, 30))
        assert channel.calls == [("pty", "xterm", 100, 30), ("shell",)]
        assert isinstance(handle, SessionHandle)
        assert handle.geometry == TerminalGeometry(100, 30)
        assert handle.term_type == DEFAULT_TERM_TYPE

    async def test_default_term_type_is_basic(self) -> None:
        assert DEFAULT_TERM_TYPE == "xterm"
        assert "256" not in DEFAULT_TERM_TYPE

    async def test_custom_term_type(self) -> None:
        channel = RecordingChannel()
        handle = await open_interactive(channel, TerminalGeometry(80, 24), "vt100")
        assert channel.calls[0] == ("pty", "vt100", 80, 24)
        assert handle.term_type == "vt100"

    async def test_pty_refused(self) -> None:
        channel = RecordingChannel(pty_error=RuntimeError("PTY not allowed"))
        with pytest.raises(PtyRequestFailed, match="PTY not allowed") as exc_info:
            await open_interactive(channel, TerminalGeometry(80, 24))
        assert exc_info.value.step == "pty"
        assert isinstance(exc_info.value, ChannelError)
        # Shell is never requested after a PTY refusal
        assert ("shell",) not in channel.calls

    async def test_shell_refused(self) -> None:
        channel = RecordingChannel(shell_error=OSError("no shell"))
        with pytest.raises(PtyRequestFailed) as exc_info:
            await open_interactive(channel, TerminalGeometry(80, 24))
        assert exc_info.value.step == "shell"
        assert isinstance(exc_info.value.__cause__, OSError)

    async def test_pty_request_failed_passes_through(self) -> None:
        original = PtyRequestFailed("pty", "administratively prohibited")
        channel = RecordingChannel(pty_error=original)
        with pytest.raises(PtyRequestFailed) as exc_info:
            await open_interactive(channel, TerminalGeometry(80, 24))
        assert exc_info.value is original

    async def test_does_not_close_channel(self) -> None:
        channel = RecordingChannel()
        await open_interactive(channel, TerminalGeometry(80, 24))
        assert channel.close_calls == 0


# ---------------------------------------------------------------------------
# SessionHandle
# ---------------------------------------------------------------------------


class TestSessionHandle:
    async def test_close(self) -> None:
        channel = RecordingChannel()
        handle = await open_interactive(channel, TerminalGeometry(80, 24))
        assert not handle.closed
        await handle.close()
        assert handle.closed
        assert channel.close_calls == 1

    async def test_close_twice(self) -> None:
        channel = RecordingChannel()
        handle = SessionHandle(channel=channel, geometry=TerminalGeometry(80, 24))
        await handle.close()
        await handle.close()
        assert channel.close_calls == 1

    async def test_close_after_channel_closed_elsewhere(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        channel = RecordingChannel()
        handle = SessionHandle(channel=channel, geometry=TerminalGeometry(80, 24))
        await channel.close()
        with caplog.at_level(logging.INFO, logger="shellrelay.session.channel"):
            await handle.close()
            await handle.close()
        assert channel.close_calls == 1
        assert caplog.text.count("Session closed after") == 1
