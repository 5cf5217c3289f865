"""Relay engine — bidirectional byte pump for interactive sessions."""

from shellrelay.relay.engine import (
    RelayEngine,
    RelayOutcome,
    RelayResult,
    RelayState,
)
from shellrelay.relay.interactive import run_interactive

__all__ = [
    "RelayEngine",
    "RelayOutcome",
    "RelayResult",
    "RelayState",
    "run_interactive",
]
