"""Error hierarchy for shellrelay.

Every error is fatal to the current session. The CLI catches
``RelayError`` after the raw-mode guard has restored the terminal and
prints a single diagnostic line.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all shellrelay errors."""


class ChannelError(RelayError):
    """The remote channel misbehaved."""


class PtyRequestFailed(ChannelError):
    """The remote side refused the PTY, shell or exec request."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step} request failed: {message}")
        self.step = step


class ChannelIoError(ChannelError):
    """A read or write failed mid-session."""

    def __init__(self, direction: str, message: str) -> None:
        super().__init__(f"{direction}: {message}")
        self.direction = direction


class TerminalModeError(RelayError):
    """The local device cannot be switched into (or out of) raw mode."""


class TransportError(RelayError):
    """Connecting or authenticating to the remote host failed."""


class FilterInvariantError(RelayError):
    """The CPR filter reached a state it should never be in."""


class SessionPhaseError(RelayError):
    """Wraps a fatal error with the session phase it happened in.

    Phases: ``"raw-mode"``, ``"pty"`` (PTY negotiation) and ``"restore"``.
    Relay I/O errors are reported in ``RelayResult`` instead.
    """

    def __init__(self, phase: str, error: BaseException) -> None:
        super().__init__(f"{phase} failed: {error}")
        self.phase = phase
        self.error = error
