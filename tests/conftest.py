from __future__ import annotations

from pathlib import Path

import pytest

from cardsync.infrastructure.db import ensure_schema, get_connection
from cardsync.infrastructure.observability import get_registry


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "cardsync.db"
    with get_connection(path) as conn:
        ensure_schema(conn)
    return path


@pytest.fixture(autouse=True)
def _fresh_metrics():
    get_registry().reset()
    yield
