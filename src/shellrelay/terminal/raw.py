"""Raw-mode scope — exclusive, always-restored raw mode for the local terminal."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from shellrelay.errors import TerminalModeError

logger = logging.getLogger(__name__)


class RawModeDevice(Protocol):
    def enable_raw_mode(self) -> Any: ...

    def disable_raw_mode(self, saved: Any) -> None: ...


# The terminal has a single line discipline, so only one guard may hold it.
_lock = threading.Lock()
_active_guard: RawModeGuard | None = None


def active_guard() -> RawModeGuard | None:
    """The guard currently holding raw mode, if any."""
    return _active_guard


class RawModeGuard:
    """Holds the local terminal in raw mode until released.

    Use as a context manager (sync or async); the previous mode is
    restored exactly once on every exit path, including exceptions and
    task cancellation. Nesting is not supported: entering a second guard
    while one is live raises ``TerminalModeError``.
    """

    def __init__(self, device: RawModeDevice) -> None:
        self._device = device
        self._saved: Any = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def enter(self) -> RawModeGuard:
        global _active_guard
        with _lock:
            if _active_guard is not None:
                raise TerminalModeError("raw mode is already held by another guard")
            self._saved = self._device.enable_raw_mode()
            self._active = True
            _active_guard = self
        return self

    def release(self) -> None:
        """Restore the saved mode. Later calls do nothing."""
        global _active_guard
        with _lock:
            if not self._active:
                return
            saved, self._saved = self._saved, None
            self._active = False
            if _active_guard is self:
                _active_guard = None
        self._device.disable_raw_mode(saved)

    def __enter__(self) -> RawModeGuard:
        if self._active:
            return self
        return self.enter()

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    async def __aenter__(self) -> RawModeGuard:
        return self.__enter__()

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


def raw_mode(device: RawModeDevice) -> RawModeGuard:
    """Enter raw mode on ``device``; use the result in a ``with`` block."""
    return RawModeGuard(device).enter()
