"""Service layer modules for cardsync."""

from .sync_service import BULK_SYNC, SyncService  # noqa: F401

__all__ = ["BULK_SYNC", "SyncService"]
