"""Inventory item, category and reporting data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any

DEFAULT_LOW_STOCK_THRESHOLD = 10


@dataclass
class InventoryItem:
    """Represents one stocked product in canonical application format."""

    id: Optional[str]
    name: str
    sku: str
    quantity: int
    category: str  # free text, not linked to the categories table
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "category": self.category,
            "low_stock_threshold": self.low_stock_threshold,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }


@dataclass
class Category:
    """Represents a grouping label."""

    id: Optional[str]
    name: str
    description: str = ""
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at
        }


@dataclass
class SearchFilters:
    """Search and filter criteria for inventory listings."""

    search: str = ""
    category: Optional[str] = None
    low_stock_only: bool = False
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchFilters":
        """Create instance from dictionary. camelCase keys are accepted too."""
        return cls(
            search=data.get("search") or "",
            category=data.get("category"),
            low_stock_only=bool(data.get("low_stock_only", data.get("lowStockOnly", False))),
            min_quantity=data.get("min_quantity", data.get("minQuantity")),
            max_quantity=data.get("max_quantity", data.get("maxQuantity"))
        )


@dataclass
class InventoryStatistics:
    """Aggregate figures derived from one full fetch of the inventory."""

    total_items: int = 0
    total_quantity: int = 0
    low_stock_items: int = 0
    categories: int = 0
    average_quantity: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total_items": self.total_items,
            "total_quantity": self.total_quantity,
            "low_stock_items": self.low_stock_items,
            "categories": self.categories,
            "average_quantity": self.average_quantity,
            "last_updated": self.last_updated.isoformat()
        }
