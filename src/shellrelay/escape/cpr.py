"""Cursor Position Report (CPR) filtering.

Terminals answer a cursor-position query (``ESC [ 6 n``) with
``ESC [ <row> ; <col> R``. In a raw-mode relay those replies would be
echoed to the screen or forwarded out of context, so they are removed
here. Nothing else is touched: colour codes, cursor movement and every
other control sequence pass through byte for byte.

Two modes are provided:

* ``filter_block`` works on a complete buffer and keeps no state
  between calls (used for remote output, which arrives in chunks).
* ``CprFilter`` is fed one byte at a time and keeps its state across
  calls (used for local keystrokes).
"""

from __future__ import annotations

import enum
import logging

from shellrelay.errors import FilterInvariantError

logger = logging.getLogger(__name__)

ESC = 0x1B
CSI_INTRODUCER = 0x5B  # '['
CPR_FINAL = 0x52  # 'R'
PARAM_SEPARATOR = 0x3B  # ';'

# Final bytes of a CSI sequence
FINAL_BYTE_MIN = 0x40
FINAL_BYTE_MAX = 0x7E


def _is_cpr_param(byte: int) -> bool:
    return 0x30 <= byte <= 0x39 or byte == PARAM_SEPARATOR


def _is_final(byte: int) -> bool:
    return FINAL_BYTE_MIN <= byte <= FINAL_BYTE_MAX


def filter_block(data: bytes) -> bytes:
    """Remove every complete CPR sequence from ``data``.

    Any other CSI sequence is kept verbatim, from the introducer through
    its final byte. A CSI sequence with no final byte before the end of
    the buffer is also kept verbatim; no state carries over to the next
    call.
    """
    if ESC not in data:
        return bytes(data)

    result = bytearray()
    i = 0
    n = len(data)
    while i < n:
        if data[i] == ESC and i + 1 < n and data[i + 1] == CSI_INTRODUCER:
            start = i
            j = i + 2
            while j < n and not _is_final(data[j]):
                j += 1
            if j >= n:
                # Truncated sequence
                result += data[start:]
                break
            params = data[start + 2 : j]
            if data[j] == CPR_FINAL and all(_is_cpr_param(b) for b in params):
                logger.debug("Dropped CPR %r", bytes(data[start : j + 1]))
            else:
                result += data[start : j + 1]
            i = j + 1
        else:
            result.append(data[i])
            i += 1
    return bytes(result)


class FilterState(enum.Enum):
    """Matching progress of the incremental filter."""

    IDLE = "idle"
    SAW_ESCAPE = "saw_escape"
    SAW_CSI = "saw_csi"
    IN_NUMERIC_BODY = "in_numeric_body"


class CprFilter:
    """Byte-at-a-time CPR filter.

    ``process`` returns ``None`` while a possible CPR is being matched and
    when a complete CPR has just been dropped. Otherwise it returns the
    bytes to forward: the single input byte, or, when a tentative match
    is disproved, every byte buffered so far followed by the disproving
    byte.

    Example::

        f = CprFilter()
        out = bytearray()
        for b in data:
            emitted = f.process(b)
            if emitted is not None:
                out += emitted
    """

    def __init__(self) -> None:
        self._state = FilterState.IDLE
        self._buffer = bytearray()
        self.dropped = 0  # Number of CPR sequences removed

    @property
    def state(self) -> FilterState:
        return self._state

    @property
    def pending(self) -> bytes:
        """Bytes held back while a match is in progress."""
        return bytes(self._buffer)

    def reset(self) -> None:
        """Discard any partial match."""
        self._state = FilterState.IDLE
        self._buffer.clear()

    def flush(self) -> bytes:
        """Return the held-back bytes and go back to idle."""
        pending = bytes(self._buffer)
        self.reset()
        return pending

    def feed(self, data: bytes) -> bytes:
        """Run ``process`` over a chunk and concatenate what it emits."""
        out = bytearray()
        for byte in data:
            emitted = self.process(byte)
            if emitted is not None:
                out += emitted
        return bytes(out)

    def process(self, byte: int) -> bytes | None:
        """Feed one byte; see the class docstring for the return value."""
        try:
            return self._step(byte)
        except FilterInvariantError:
            logger.info(
                "CPR filter invariant broken in state %r, passing bytes through",
                self._state,
                exc_info=True,
            )
            return self._disprove(byte)

    def _step(self, byte: int) -> bytes | None:
        state = self._state

        if state is FilterState.IDLE:
            if byte == ESC:
                self._begin(byte)
                return None
            return bytes((byte,))

        if state is FilterState.SAW_ESCAPE:
            if byte == CSI_INTRODUCER:
                self._buffer.append(byte)
                self._state = FilterState.SAW_CSI
                return None
            if byte == ESC:
                # The held ESC was not a CSI; the new one may be.
                emitted = bytes(self._buffer)
                self._begin(byte)
                return emitted
            return self._disprove(byte)

        if state in (FilterState.SAW_CSI, FilterState.IN_NUMERIC_BODY):
            if _is_cpr_param(byte):
                self._buffer.append(byte)
                self._state = FilterState.IN_NUMERIC_BODY
                return None
            if byte == CPR_FINAL:
                logger.debug("Dropped CPR %r", bytes(self._buffer) + b"R")
                self.dropped += 1
                self.reset()
                return None
            return self._disprove(byte)

        raise FilterInvariantError(f"unknown filter state: {state!r}")

    def _begin(self, byte: int) -> None:
        self._buffer.clear()
        self._buffer.append(byte)
        self._state = FilterState.SAW_ESCAPE

    def _disprove(self, byte: int) -> bytes:
        emitted = bytes(self._buffer) + bytes((byte,))
        self.reset()
        return emitted
