"""Escape-sequence filtering for relayed terminal streams."""

from shellrelay.escape.cpr import CprFilter, FilterState, filter_block

__all__ = [
    "CprFilter",
    "FilterState",
    "filter_block",
]
