"""Locate the record list and pagination hints inside provider responses.

Providers wrap their lists in varying envelopes (``{"data": [...]}``,
``{"cards": [...], "meta": {...}}``, ``{"data": {"items": [...]}}``, or a
bare list). :func:`extract_envelope` normalises them into an
:class:`Envelope`, or an :class:`UnrecognizedShape` when no list is found.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ...infrastructure.observability import get_logger

logger = get_logger(__name__)

LIST_KEYS = (
    "data",
    "results",
    "items",
    "cards",
    "products",
    "sets",
    "groups",
    "games",
    "categories",
)

_META_KEYS = ("meta", "_metadata", "pagination")


@dataclass(frozen=True)
class Envelope:
    records: list[Any]
    has_more: bool | None = None
    total: int | None = None


@dataclass(frozen=True)
class UnrecognizedShape:
    """The body held no list under any known key."""

    type_name: str
    keys: tuple[str, ...] = ()


@dataclass
class Page:
    """One fetched page; ``records`` is empty for unrecognized bodies."""

    records: list[Any] = field(default_factory=list)
    has_more: bool | None = None
    total: int | None = None


def _find_list(container: dict[str, Any]) -> list[Any] | None:
    for key in LIST_KEYS:
        value = container.get(key)
        if isinstance(value, list):
            return value
    return None


def _meta_blocks(body: dict[str, Any]) -> list[dict[str, Any]]:
    blocks = [body.get(key) for key in _META_KEYS]
    return [b for b in blocks if isinstance(b, dict)]


def _has_more(body: dict[str, Any]) -> bool | None:
    candidates: list[Any] = []
    for block in _meta_blocks(body):
        candidates.extend((block.get("hasMore"), block.get("has_more")))
    candidates.extend((body.get("hasMore"), body.get("has_more")))
    for value in candidates:
        # Only genuine booleans count; "false" or 0 are ignored.
        if isinstance(value, bool):
            return value
    return None


def _total(body: dict[str, Any]) -> int | None:
    candidates: list[Any] = []
    for block in _meta_blocks(body):
        candidates.extend((block.get("total"), block.get("totalItems")))
    candidates.extend((body.get("total"), body.get("totalItems")))
    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value >= 0:
            return value
    return None


def extract_envelope(body: Any) -> Envelope | UnrecognizedShape:
    """Return the record list and pagination hints found in ``body``."""
    if isinstance(body, list):
        return Envelope(records=body)
    if not isinstance(body, dict):
        return UnrecognizedShape(type_name=type(body).__name__)

    records = _find_list(body)
    if records is None and isinstance(body.get("data"), dict):
        records = _find_list(body["data"])
    if records is None:
        return UnrecognizedShape(type_name="dict", keys=tuple(sorted(body)))

    return Envelope(records=records, has_more=_has_more(body), total=_total(body))


def page_from_body(body: Any) -> Page:
    """Build a :class:`Page` from a decoded body; never raises."""
    envelope = extract_envelope(body)
    if isinstance(envelope, UnrecognizedShape):
        logger.warning(
            "Unrecognized response shape (%s, keys=%s); treating as empty page",
            envelope.type_name,
            ",".join(envelope.keys) or "-",
        )
        return Page()
    return Page(records=list(envelope.records), has_more=envelope.has_more, total=envelope.total)
