"""Shared helpers for composing CLI command contexts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cardsync.app.config import SyncSettings, load_settings
from cardsync.infrastructure.db import get_path_config
from cardsync.services.sync_service import SyncService


@dataclass(frozen=True)
class CLIContext:
    """Container for CLI dependencies and configuration paths."""

    db_path: Path
    settings: SyncSettings

    def sync_service(self) -> SyncService:
        return SyncService(db_path=self.db_path, settings=self.settings)


def build_cli_context(db_path: str | Path | None = None) -> CLIContext:
    """Resolve the database path and settings for a CLI invocation."""
    resolved = Path(db_path) if db_path is not None else get_path_config()["db_path"]
    return CLIContext(db_path=resolved, settings=load_settings())
