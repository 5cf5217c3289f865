"""Local terminal device access and the raw-mode guard."""

from shellrelay.terminal.local import LocalTerminal
from shellrelay.terminal.raw import RawModeGuard, active_guard, raw_mode

__all__ = [
    "LocalTerminal",
    "RawModeGuard",
    "active_guard",
    "raw_mode",
]
