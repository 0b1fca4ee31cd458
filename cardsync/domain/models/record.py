"""Normalized catalog record ready for persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Record:
    """A card, product or price row keyed by its provider-assigned id.

    ``external_id`` is the upsert key and must be non-empty. ``group_id`` and
    ``category_id`` reference the parent set/group and game/category.
    """

    external_id: str
    name: str | None
    group_id: str | None = None
    category_id: str | None = None
    kind: str = "product"
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def has_key(self) -> bool:
        return bool(self.external_id and str(self.external_id).strip())
