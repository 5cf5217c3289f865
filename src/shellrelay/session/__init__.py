"""Remote sessions — channel negotiation and the SSH transport adapter."""

from shellrelay.session.channel import (
    DEFAULT_TERM_TYPE,
    Channel,
    SessionHandle,
    TerminalGeometry,
    open_interactive,
)

__all__ = [
    "DEFAULT_TERM_TYPE",
    "Channel",
    "SessionHandle",
    "TerminalGeometry",
    "open_interactive",
]
