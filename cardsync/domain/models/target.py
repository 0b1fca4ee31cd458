"""Synchronization target domain model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SyncTarget:
    """One unit of synchronization work: a product group or a card set.

    ``external_id`` is the provider-assigned identifier (TCGplayer group id,
    JustTCG set id) and ``id`` the internal row id in ``sync_targets``.
    ``expected_count`` is optional and only used for completeness checks.
    """

    source: str
    external_id: str
    id: int | None = None
    category_id: str | None = None
    name: str | None = None
    code: str | None = None
    expected_count: int | None = None

    @property
    def label(self) -> str:
        if self.name:
            return f"{self.external_id} ({self.name})"
        return self.external_id

    def matches_name(self, needle: str | None) -> bool:
        """Case-insensitive substring match on the target name."""
        if not needle:
            return True
        return needle.strip().lower() in (self.name or "").lower()
