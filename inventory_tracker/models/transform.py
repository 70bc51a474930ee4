"""Conversions between stored rows, form input and canonical models.

Also holds the in-memory helpers (low-stock check, filtering, sorting) that
operate on already fetched snapshots.
"""

import math
import re
import unicodedata
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .inventory import InventoryItem, Category, SearchFilters, DEFAULT_LOW_STOCK_THRESHOLD

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Row / form transformation
# ---------------------------------------------------------------------------

def transform_inventory_item(raw: Mapping[str, Any]) -> InventoryItem:
    """Convert a raw stored row to the canonical ``InventoryItem``."""
    return InventoryItem(
        id=raw.get("id"),
        name=raw.get("name"),
        sku=raw.get("sku"),
        quantity=raw.get("quantity"),
        category=raw.get("category"),
        # Falsy check: a stored threshold of 0 also becomes the default
        low_stock_threshold=raw.get("low_stock_threshold") or DEFAULT_LOW_STOCK_THRESHOLD,
        description=raw.get("description") or "",
        created_at=raw.get("created_at"),
        updated_at=raw.get("updated_at")
    )


def transform_category(raw: Mapping[str, Any]) -> Category:
    """Convert a raw stored row to a ``Category``."""
    return Category(
        id=raw.get("id"),
        name=raw.get("name"),
        description=raw.get("description") or "",
        created_at=raw.get("created_at")
    )


def _parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse: ``"15"`` → 15, ``"15 pcs"`` → 15, ``"abc"`` → None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    return None


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def transform_form_to_inventory_item(form: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert free-text form input to a write-ready record.

    Text fields are trimmed (empty when absent). ``quantity`` falls back to 0
    and ``low_stock_threshold`` to 10 when missing or unparsable.
    """
    quantity = _parse_int(form.get("quantity"))
    threshold_raw = form.get("low_stock_threshold")
    threshold = _parse_int(threshold_raw) if threshold_raw else None

    return {
        "name": _trimmed(form.get("name")),
        "sku": _trimmed(form.get("sku")),
        "quantity": quantity if quantity is not None else 0,
        "category": _trimmed(form.get("category")),
        "low_stock_threshold": threshold if threshold is not None else DEFAULT_LOW_STOCK_THRESHOLD,
        "description": _trimmed(form.get("description"))
    }


def create_new_inventory_item() -> Dict[str, Any]:
    """Blank item template for a new-item form."""
    return {
        "name": "",
        "sku": "",
        "quantity": 0,
        "category": "",
        "low_stock_threshold": DEFAULT_LOW_STOCK_THRESHOLD,
        "description": ""
    }


# ---------------------------------------------------------------------------
# In-memory helpers
# ---------------------------------------------------------------------------

def is_low_stock(item: InventoryItem) -> bool:
    """True when the quantity is at or below the item's threshold."""
    return item.quantity <= item.low_stock_threshold


def filter_inventory_items(
    items: Iterable[InventoryItem],
    filters: Union[SearchFilters, Mapping[str, Any]]
) -> List[InventoryItem]:
    """Apply search, category and low-stock criteria (all must match)."""
    if isinstance(filters, Mapping):
        filters = SearchFilters.from_dict(filters)

    def matches(item: InventoryItem) -> bool:
        if filters.search:
            term = filters.search.lower()
            if term not in item.name.lower() and term not in item.sku.lower():
                return False

        if filters.category and filters.category != item.category:
            return False

        if filters.low_stock_only and not is_low_stock(item):
            return False

        return True

    return [item for item in items if matches(item)]


def _collation_key(value: Optional[str]):
    """Case- and accent-insensitive ordering with the raw text as tie-breaker."""
    text = value or ""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base, text


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def sort_inventory_items(
    items: Iterable[InventoryItem],
    sort_by: str = "name",
    sort_order: str = "asc"
) -> List[InventoryItem]:
    """
    Return a new, stably sorted list; *items* is left untouched.

    Args:
        items: Items to sort
        sort_by: ``name``, ``sku``, ``category``, ``quantity`` or ``low_stock``
            (``lowStock`` is accepted as sent by the UI); anything else sorts by name
        sort_order: ``asc`` or ``desc``

    Low-stock sorting keeps low-stock items first in both orders; ``desc``
    only reverses the quantity order inside each group.
    """
    descending = sort_order == "desc"

    def compare(a: InventoryItem, b: InventoryItem) -> int:
        if sort_by in ("low_stock", "lowStock"):
            a_low, b_low = is_low_stock(a), is_low_stock(b)
            if a_low and not b_low:
                return -1
            if b_low and not a_low:
                return 1
            comparison = _cmp(a.quantity, b.quantity)
        elif sort_by == "quantity":
            comparison = _cmp(a.quantity, b.quantity)
        elif sort_by in ("sku", "category"):
            comparison = _cmp(_collation_key(getattr(a, sort_by)), _collation_key(getattr(b, sort_by)))
        else:
            comparison = _cmp(_collation_key(a.name), _collation_key(b.name))

        return -comparison if descending else comparison

    return sorted(items, key=cmp_to_key(compare))
