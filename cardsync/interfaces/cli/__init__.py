"""CLI interface for cardsync.

This package is the home for all Click commands.
"""

from .__main__ import cli
from .control import cancel, clear_signal, reset, status
from .sync import discover, sync

__all__ = [
    "cancel",
    "clear_signal",
    "cli",
    "discover",
    "reset",
    "status",
    "sync",
]
