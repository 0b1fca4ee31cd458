"""Domain layer for cardsync.

This package groups the pure business logic and shared models (targets,
records, sync states) that do not concern infrastructure or interface details.
"""

from . import models

__all__ = ["models"]
