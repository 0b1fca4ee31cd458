"""Parsing and normalising the per-group ``ProductsAndPrices.csv`` feed."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from ...domain.models import Record, SyncTarget

_KEY_CLEAN = re.compile(r"[^a-z0-9]")

ID_COLUMNS = ("productid", "id")
NAME_COLUMNS = ("name", "cleanname", "productname")


def normalize_key(key: str | None) -> str:
    return _KEY_CLEAN.sub("", (key or "").strip().lower())


def parse_csv_rows(text: str) -> list[dict[str, str | None]]:
    """Split CSV text into rows keyed by lower-cased header names.

    Fields follow RFC 4180 quoting (embedded quotes are doubled). Blank lines
    are ignored and short rows leave the missing columns as ``None``.
    """
    if not text or not text.strip():
        return []
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    headers: list[str] | None = None
    rows: list[dict[str, str | None]] = []
    for raw in reader:
        if not raw or not any(cell.strip() for cell in raw):
            continue
        if headers is None:
            headers = [cell.strip().lower() for cell in raw]
            continue
        row: dict[str, str | None] = {}
        for index, header in enumerate(headers):
            value = raw[index].strip() if index < len(raw) else ""
            row[header] = value or None
        rows.append(row)
    return rows


@dataclass
class RowFilter:
    """Product-type filters applied while normalising CSV rows."""

    include_sealed: bool = True
    include_singles: bool = True

    def excludes(self, product_type: str | None) -> bool:
        if not product_type:
            return False
        kind = product_type.lower()
        if not self.include_sealed and "sealed" in kind:
            return True
        if not self.include_singles and ("card" in kind or "single" in kind):
            return True
        return False


@dataclass
class NormalizedRows:
    records: list[Record] = field(default_factory=list)
    skipped: int = 0


RowNormalizer = Callable[[dict[str, Any], SyncTarget], "Record | None"]


def _first(row: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = row.get(name)
        if value not in (None, ""):
            return value
    return None


def _find_column(row: dict[str, Any], needle: str) -> str | None:
    for key in row:
        if needle in key:
            return key
    return None


def normalize_product_row(row: dict[str, Any], target: SyncTarget) -> Record | None:
    """Map one CSV row onto a :class:`Record`; ``None`` when id or name is missing."""
    normalized = {normalize_key(k): v for k, v in row.items()}
    external_id = _first(normalized, ID_COLUMNS)
    name = _first(normalized, NAME_COLUMNS)
    if external_id is None or name is None:
        return None

    type_col = _find_column(normalized, "producttype") or (
        "extcardtype" if "extcardtype" in normalized else None
    )
    product_type = normalized.get(type_col) if type_col else None
    kind = "product"
    if product_type:
        lowered = str(product_type).lower()
        if "sealed" in lowered:
            kind = "sealed"
        elif "card" in lowered or "single" in lowered:
            kind = "single"

    consumed = set(ID_COLUMNS) | set(NAME_COLUMNS)
    attributes = {
        key: value
        for key, value in normalized.items()
        if key not in consumed and value not in (None, "")
    }
    return Record(
        external_id=str(external_id).strip(),
        name=str(name).strip(),
        group_id=target.external_id,
        category_id=target.category_id,
        kind=kind,
        attributes=attributes,
    )


def normalize_rows(
    rows: list[dict[str, Any]],
    target: SyncTarget,
    *,
    row_filter: RowFilter | None = None,
    normalizer: RowNormalizer = normalize_product_row,
) -> NormalizedRows:
    """Normalise parsed rows, counting skipped ones (missing keys or filtered)."""
    result = NormalizedRows()
    active_filter = row_filter or RowFilter()
    for row in rows:
        record = normalizer(row, target)
        if record is None:
            result.skipped += 1
            continue
        if record.kind != "product" and active_filter.excludes(record.kind):
            result.skipped += 1
            continue
        result.records.append(record)
    return result
