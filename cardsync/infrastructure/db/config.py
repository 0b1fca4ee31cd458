"""Project configuration file lookup.

``config.json`` lives at the repository root unless ``CARDSYNC_CONFIG`` points
elsewhere. ``CARDSYNC_DB_PATH`` overrides ``paths.db_path``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

DEFAULT_DB_TIMEOUT = 30.0
DEFAULT_DB_NAME = "cardsync.db"

_REPO_ROOT = Path(__file__).resolve().parents[3]


def config_file(config_path: Path | str | None = None) -> Path:
    if config_path is not None:
        return Path(config_path)
    override = os.environ.get("CARDSYNC_CONFIG")
    return Path(override) if override else _REPO_ROOT / "config.json"


def load_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Return the parsed config file, or an empty dict when there is none."""
    path = config_file(config_path)
    if not path.is_file():
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = cfg.get(name)
    return value if isinstance(value, dict) else {}


def get_path_config(config_path: Path | str | None = None) -> Dict[str, Path]:
    """Resolve ``db_path`` relative to the directory holding the config file."""
    path = config_file(config_path)
    base = path.parent
    raw = os.environ.get("CARDSYNC_DB_PATH") if config_path is None else None
    if not raw:
        raw = _section(load_config(path), "paths").get("db_path", DEFAULT_DB_NAME)
    db_path = Path(raw)
    if not db_path.is_absolute():
        db_path = (base / db_path).resolve()
    return {"db_path": db_path}


def get_db_options(config_path: Path | str | None = None) -> Dict[str, Any]:
    """The ``db`` section (``enable_wal``, ``foreign_keys``)."""
    return _section(load_config(config_path), "db")


def get_default_timeout(config_path: Path | str | None = None) -> float:
    """SQLite connect and busy timeout in seconds."""
    try:
        return float(load_config(config_path).get("db_timeout_seconds", DEFAULT_DB_TIMEOUT))
    except (TypeError, ValueError):
        return DEFAULT_DB_TIMEOUT
