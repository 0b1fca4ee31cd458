"""Sync engine settings.

Values come from the ``sync`` section of ``config.json`` and can be
overridden by ``CARDSYNC_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

from cardsync.infrastructure.db.config import load_config

ENV_OVERRIDES = {
    "CARDSYNC_JSON_API_KEY": "json_api_key",
    "CARDSYNC_JSON_API_URL": "json_api_url",
    "CARDSYNC_CSV_BASE_URL": "csv_base_url",
    "CARDSYNC_CONCURRENCY": "concurrency",
    "CARDSYNC_UPSERT_BATCH_SIZE": "chunk_size",
}


@dataclass
class SyncSettings:
    json_api_url: str = "https://api.justtcg.com/v1"
    json_api_key: str | None = None
    csv_base_url: str = "https://tcgcsv.com/tcgplayer"
    page_size: int = 100
    max_pages: int = 500
    concurrency: int = 4
    max_write_batches: int | None = None
    chunk_size: int = 2000
    fetch_attempts: int = 3
    fetch_base_delay: float = 0.5
    fetch_max_delay: float = 30.0
    batch_attempts: int = 3
    batch_base_delay: float = 0.1
    http_timeout_seconds: float = 30.0
    acquire_timeout_seconds: float = 600.0
    throttle_per_host: float | None = None
    stuck_threshold_minutes: float = 15.0

    @property
    def stuck_threshold(self) -> timedelta:
        return timedelta(minutes=self.stuck_threshold_minutes)


def _coerce(value: Any, default: Any) -> Any:
    if value is None or default is None or isinstance(value, type(default)):
        return value
    if isinstance(default, bool):
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def load_settings(
    config_path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> SyncSettings:
    """Build :class:`SyncSettings` from ``config.json`` and the environment.

    Raises ``ValueError`` when a numeric setting cannot be parsed.
    """
    cfg = load_config(config_path)
    section = cfg.get("sync", {}) if isinstance(cfg.get("sync", {}), dict) else {}
    environ = os.environ if env is None else env

    defaults = SyncSettings()
    values: dict[str, Any] = {}
    for f in fields(SyncSettings):
        if f.name in section:
            values[f.name] = _coerce(section[f.name], getattr(defaults, f.name))
    for env_name, attr in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw not in (None, ""):
            values[attr] = _coerce(raw, getattr(defaults, attr))
    return SyncSettings(**values)


__all__ = ["ENV_OVERRIDES", "SyncSettings", "load_settings"]
