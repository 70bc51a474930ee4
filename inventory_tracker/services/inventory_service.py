"""Query service for inventory items and categories.

Every public operation returns an envelope (``Result``, or ``DeleteResult``
for deletes) and never raises. Store failures, validation failures and
unexpected errors are all converted to an ``ErrorInfo`` carrying one of the
``ErrorCode`` values, so callers check ``result.error`` instead of catching.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..api.store_client import StoreClient, TableQuery
from ..models.inventory import (
    InventoryItem,
    InventoryStatistics,
    SearchFilters,
    DEFAULT_LOW_STOCK_THRESHOLD,
)
from ..models.result import Result, DeleteResult, ErrorCode, ErrorInfo
from ..models.transform import transform_inventory_item, transform_category, is_low_stock
from ..models.validation import validate_inventory_item, validate_category
from ..utils.config import get_config
from ..utils.exceptions import StoreAPIError, ServiceError
from ..utils.logger import get_inventory_logger, get_error_logger
from .change_feed import ChangeEvent, ChangeFeed, Subscription, get_change_feed

DUPLICATE_SKU_MESSAGE = "SKU already exists. Please use a unique SKU."
DUPLICATE_SKUS_MESSAGE = "One or more SKUs already exist. Please ensure all SKUs are unique."
DUPLICATE_CATEGORY_MESSAGE = "Category name already exists. Please use a unique name."

# Assigned and maintained by the store; never sent on update
STORE_MANAGED_COLUMNS = ("id", "created_at", "updated_at")
TEXT_COLUMNS = ("name", "sku", "category", "description")
INTEGER_COLUMNS = ("quantity", "low_stock_threshold")

FiltersArg = Union[SearchFilters, Mapping[str, Any], None]


def _trim_or_empty(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _prepare_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    """Insert payload for a validated item: trimmed text, default threshold."""
    return {
        "name": item["name"].strip(),
        "sku": item["sku"].strip(),
        "quantity": int(item["quantity"]),
        "category": item["category"].strip(),
        "low_stock_threshold": int(item.get("low_stock_threshold") or DEFAULT_LOW_STOCK_THRESHOLD),
        "description": _trim_or_empty(item.get("description"))
    }


def _prepare_updates(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Update payload: drops ``None`` values and store-managed columns, trims text."""
    prepared: Dict[str, Any] = {}
    for key, value in updates.items():
        if value is None or key in STORE_MANAGED_COLUMNS:
            continue
        if key in TEXT_COLUMNS and isinstance(value, str):
            value = value.strip()
        elif key in INTEGER_COLUMNS:
            value = int(value)
        prepared[key] = value
    return prepared


def _paginate(items: List[Any], limit: Optional[int], offset: int) -> List[Any]:
    if not limit:
        return items
    return items[offset:offset + limit]


class InventoryService:
    """
    Data access for inventory items and categories.

    The store client is injected; its lifecycle belongs to whoever created it.
    """

    def __init__(self, store: StoreClient, feed: Optional[ChangeFeed] = None):
        """
        Args:
            store: Connected remote store client
            feed: Change feed for subscriptions; defaults to the process-wide feed
        """
        config = get_config()
        self.store = store
        self.feed = feed if feed is not None else get_change_feed()
        self.items_table = config.store.items_table
        self.categories_table = config.store.categories_table
        self.logger = get_inventory_logger()
        self.error_logger = get_error_logger()

    # ------------------------------------------------------------------
    # Error plumbing
    # ------------------------------------------------------------------

    def _failure(self, operation: str, error: Exception, default_code: str) -> Result:
        """Convert an exception caught at an operation boundary into an error envelope."""
        if isinstance(error, ServiceError):
            self.logger.warning(f"{operation} failed [{error.code}]: {error.message}")
            return Result.failure(error.message, error.code, error.details)

        self.error_logger.error(f"Unexpected error in {operation}: {str(error)}", exc_info=True)
        return Result.failure(
            str(error),
            default_code,
            {"error": str(error), "type": type(error).__name__}
        )

    @staticmethod
    def _store_error(
        error: StoreAPIError,
        prefix: str,
        code: str,
        not_found: Optional[str] = None,
        duplicate: Optional[tuple] = None
    ) -> ServiceError:
        """Map a store error to the application taxonomy.

        Args:
            not_found: Message to use when the store reports no matching row
            duplicate: ``(code, message)`` to use on a uniqueness violation
        """
        if not_found and error.is_not_found:
            return ServiceError(not_found, ErrorCode.NOT_FOUND, error.to_dict())
        if duplicate and error.is_unique_violation:
            duplicate_code, message = duplicate
            return ServiceError(message, duplicate_code, error.to_dict())
        return ServiceError(f"{prefix}: {error.message}", code, error.to_dict())

    def _items(self) -> TableQuery:
        return self.store.table(self.items_table)

    def _categories(self) -> TableQuery:
        return self.store.table(self.categories_table)

    # ------------------------------------------------------------------
    # Inventory items: CRUD
    # ------------------------------------------------------------------

    def get_all_inventory_items(
        self,
        sort_by: str = "created_at",
        ascending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Result:
        """
        List inventory items.

        Args:
            sort_by: Column to order by
            ascending: Sort direction
            limit: Page size; no pagination when falsy
            offset: Rows to skip when paginating
        """
        operation = "get_all_inventory_items"
        try:
            query = self._items().select().order(sort_by, ascending)
            if limit:
                query = query.range(offset, offset + limit - 1)

            rows = query.execute() or []
            return Result.success([transform_inventory_item(row) for row in rows])

        except StoreAPIError as e:
            error = self._store_error(e, "Failed to fetch inventory items", ErrorCode.FETCH_ERROR)
            return self._failure(operation, error, ErrorCode.FETCH_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.FETCH_ERROR)

    def get_inventory_item_by_id(self, item_id: str) -> Result:
        operation = "get_inventory_item_by_id"
        try:
            if not item_id:
                raise ServiceError("Item ID is required", ErrorCode.FETCH_ERROR)

            row = self._items().select().eq("id", item_id).single().execute()
            return Result.success(transform_inventory_item(row))

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to fetch item", ErrorCode.FETCH_ERROR, not_found="Item not found"
            )
            return self._failure(operation, error, ErrorCode.FETCH_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.FETCH_ERROR)

    def create_inventory_item(self, item: Mapping[str, Any]) -> Result:
        """Validate, normalise and insert one item."""
        operation = "create_inventory_item"
        try:
            validation = validate_inventory_item(item)
            if not validation.is_valid:
                raise ServiceError(
                    f"Validation failed: {validation.summary()}",
                    ErrorCode.CREATE_ERROR,
                    {"errors": validation.errors}
                )

            row = self._items().insert([_prepare_item(item)]).single().execute()
            created = transform_inventory_item(row)
            self.logger.info(f"Created inventory item {created.sku} ({created.id})")
            return Result.success(created)

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to create item", ErrorCode.CREATE_ERROR,
                duplicate=(ErrorCode.DUPLICATE_SKU, DUPLICATE_SKU_MESSAGE)
            )
            return self._failure(operation, error, ErrorCode.CREATE_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.CREATE_ERROR)

    def update_inventory_item(self, item_id: str, updates: Mapping[str, Any]) -> Result:
        """Validate the fields present in *updates* and apply them to one item."""
        operation = "update_inventory_item"
        try:
            if not item_id:
                raise ServiceError("Item ID is required", ErrorCode.UPDATE_ERROR)
            if not isinstance(updates, Mapping):
                raise ServiceError("Updates must be an object", ErrorCode.UPDATE_ERROR)

            validation = validate_inventory_item(updates, partial=True)
            if not validation.is_valid:
                raise ServiceError(
                    f"Validation failed: {validation.summary()}",
                    ErrorCode.UPDATE_ERROR,
                    {"errors": validation.errors}
                )

            changes = _prepare_updates(updates)
            if not changes:
                raise ServiceError("No fields to update", ErrorCode.UPDATE_ERROR)

            row = self._items().update(changes).eq("id", item_id).single().execute()
            updated = transform_inventory_item(row)
            self.logger.info(f"Updated inventory item {item_id}: {', '.join(sorted(changes))}")
            return Result.success(updated)

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to update item", ErrorCode.UPDATE_ERROR,
                not_found="Item not found",
                duplicate=(ErrorCode.DUPLICATE_SKU, DUPLICATE_SKU_MESSAGE)
            )
            return self._failure(operation, error, ErrorCode.UPDATE_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.UPDATE_ERROR)

    def delete_inventory_item(self, item_id: str) -> DeleteResult:
        return self._delete(self.items_table, item_id, "Item ID is required", "Failed to delete item")

    def _delete(self, table: str, row_id: str, missing_id: str, prefix: str) -> DeleteResult:
        """Hard delete by id; deleting an id that does not exist succeeds."""
        operation = f"delete from {table}"
        try:
            if not row_id:
                raise ServiceError(missing_id, ErrorCode.DELETE_ERROR)

            self.store.table(table).delete().eq("id", row_id).execute()
            self.logger.info(f"Deleted {table} row {row_id}")
            return DeleteResult(success=True)

        except StoreAPIError as e:
            failure = self._failure(operation, self._store_error(e, prefix, ErrorCode.DELETE_ERROR), ErrorCode.DELETE_ERROR)
            return DeleteResult(success=False, error=failure.error)
        except Exception as e:
            failure = self._failure(operation, e, ErrorCode.DELETE_ERROR)
            return DeleteResult(success=False, error=failure.error)

    # ------------------------------------------------------------------
    # Inventory items: search and filtering
    # ------------------------------------------------------------------

    def search_and_filter_inventory_items(
        self,
        filters: FiltersArg = None,
        sort_by: str = "created_at",
        ascending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Result:
        """
        Search by name/SKU and filter by category, quantity range and low stock.

        Search, category and quantity predicates run in the store. The
        low-stock predicate compares two columns of the same row, which the
        store's filter syntax cannot express, so when it is requested the
        whole matching set is fetched without pagination, filtered here, and
        only then paginated.
        """
        operation = "search_and_filter_inventory_items"
        try:
            if filters is None:
                filters = SearchFilters()
            elif isinstance(filters, Mapping):
                filters = SearchFilters.from_dict(filters)

            query = self._items().select()

            term = (filters.search or "").strip()
            if term:
                query = query.ilike_any(("name", "sku"), term)
            if filters.category:
                query = query.eq("category", filters.category)
            if filters.min_quantity is not None:
                query = query.gte("quantity", filters.min_quantity)
            if filters.max_quantity is not None:
                query = query.lte("quantity", filters.max_quantity)

            query = query.order(sort_by, ascending)

            if filters.low_stock_only:
                items = [transform_inventory_item(row) for row in query.execute() or []]
                low_stock = [item for item in items if is_low_stock(item)]
                return Result.success(_paginate(low_stock, limit, offset))

            if limit:
                query = query.range(offset, offset + limit - 1)

            rows = query.execute() or []
            return Result.success([transform_inventory_item(row) for row in rows])

        except StoreAPIError as e:
            error = self._store_error(e, "Search failed", ErrorCode.SEARCH_ERROR)
            return self._failure(operation, error, ErrorCode.SEARCH_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.SEARCH_ERROR)

    def search_inventory_items(self, search_term: str, **options) -> Result:
        """Search by name or SKU; *options* are passed to ``search_and_filter_inventory_items``."""
        return self.search_and_filter_inventory_items(SearchFilters(search=search_term or ""), **options)

    def get_inventory_items_by_category(self, category: str, **options) -> Result:
        return self.search_and_filter_inventory_items(SearchFilters(category=category), **options)

    def get_low_stock_items(
        self,
        sort_by: str = "quantity",
        ascending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Result:
        """Items at or below their threshold; always fetches the full set before paginating."""
        operation = "get_low_stock_items"
        try:
            result = self.get_all_inventory_items(sort_by=sort_by, ascending=ascending)
            if result.error:
                raise ServiceError(
                    f"Failed to fetch items for low stock filter: {result.error.message}",
                    ErrorCode.SEARCH_ERROR,
                    result.error.to_dict()
                )

            low_stock = [item for item in result.data if is_low_stock(item)]
            return Result.success(_paginate(low_stock, limit, offset))

        except Exception as e:
            return self._failure(operation, e, ErrorCode.SEARCH_ERROR)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_all_categories(self) -> Result:
        operation = "get_all_categories"
        try:
            rows = self._categories().select().order("name", ascending=True).execute() or []
            return Result.success([transform_category(row) for row in rows])

        except StoreAPIError as e:
            error = self._store_error(e, "Failed to fetch categories", ErrorCode.FETCH_ERROR)
            return self._failure(operation, error, ErrorCode.FETCH_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.FETCH_ERROR)

    def create_category(self, category: Mapping[str, Any]) -> Result:
        operation = "create_category"
        try:
            validation = validate_category(category)
            if not validation.is_valid:
                raise ServiceError(
                    f"Validation failed: {validation.summary()}",
                    ErrorCode.CREATE_ERROR,
                    {"errors": validation.errors}
                )

            row = self._categories().insert([{
                "name": category["name"].strip(),
                "description": _trim_or_empty(category.get("description"))
            }]).single().execute()

            created = transform_category(row)
            self.logger.info(f"Created category {created.name} ({created.id})")
            return Result.success(created)

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to create category", ErrorCode.CREATE_ERROR,
                duplicate=(ErrorCode.DUPLICATE_NAME, DUPLICATE_CATEGORY_MESSAGE)
            )
            return self._failure(operation, error, ErrorCode.CREATE_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.CREATE_ERROR)

    def update_category(self, category_id: str, updates: Mapping[str, Any]) -> Result:
        operation = "update_category"
        try:
            if not category_id:
                raise ServiceError("Category ID is required", ErrorCode.UPDATE_ERROR)
            if not isinstance(updates, Mapping):
                raise ServiceError("Updates must be an object", ErrorCode.UPDATE_ERROR)

            validation = validate_category(updates, partial=True)
            if not validation.is_valid:
                raise ServiceError(
                    f"Validation failed: {validation.summary()}",
                    ErrorCode.UPDATE_ERROR,
                    {"errors": validation.errors}
                )

            changes = {
                key: value.strip() if isinstance(value, str) else value
                for key, value in updates.items()
                if key in ("name", "description") and value is not None
            }
            if not changes:
                raise ServiceError("No fields to update", ErrorCode.UPDATE_ERROR)

            row = self._categories().update(changes).eq("id", category_id).single().execute()
            self.logger.info(f"Updated category {category_id}")
            return Result.success(transform_category(row))

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to update category", ErrorCode.UPDATE_ERROR,
                not_found="Category not found",
                duplicate=(ErrorCode.DUPLICATE_NAME, DUPLICATE_CATEGORY_MESSAGE)
            )
            return self._failure(operation, error, ErrorCode.UPDATE_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.UPDATE_ERROR)

    def delete_category(self, category_id: str) -> DeleteResult:
        return self._delete(self.categories_table, category_id, "Category ID is required", "Failed to delete category")

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def create_multiple_inventory_items(self, items: Sequence[Mapping[str, Any]]) -> Result:
        """
        Insert several items in one bulk request.

        Every item is validated before anything is sent; a duplicate SKU
        fails the whole batch.
        """
        operation = "create_multiple_inventory_items"
        try:
            if not isinstance(items, (list, tuple)) or not items:
                raise ServiceError(
                    "Items array is required and must not be empty",
                    ErrorCode.BATCH_CREATE_ERROR
                )

            for index, item in enumerate(items):
                validation = validate_inventory_item(item)
                if not validation.is_valid:
                    raise ServiceError(
                        f"Item {index + 1} validation failed: {validation.summary()}",
                        ErrorCode.BATCH_CREATE_ERROR,
                        {"index": index, "errors": validation.errors}
                    )

            rows = self._items().insert([_prepare_item(item) for item in items]).execute() or []
            created = [transform_inventory_item(row) for row in rows]
            self.logger.info(f"Created {len(created)} inventory items in one batch")
            return Result.success(created)

        except StoreAPIError as e:
            error = self._store_error(
                e, "Failed to create items", ErrorCode.BATCH_CREATE_ERROR,
                duplicate=(ErrorCode.DUPLICATE_SKU, DUPLICATE_SKUS_MESSAGE)
            )
            return self._failure(operation, error, ErrorCode.BATCH_CREATE_ERROR)
        except Exception as e:
            return self._failure(operation, e, ErrorCode.BATCH_CREATE_ERROR)

    def update_multiple_inventory_items(self, updates: Sequence[Mapping[str, Any]]) -> Result:
        """
        Apply ``[{"id": ..., "updates": {...}}, ...]`` one entry at a time, in order.

        Failures do not stop the batch. When some entries fail, ``data`` still
        holds the successful results and ``error`` is a
        ``BATCH_UPDATE_PARTIAL_ERROR`` whose details list ``index``, ``id`` and
        ``error`` for each failure.
        """
        operation = "update_multiple_inventory_items"
        try:
            if not isinstance(updates, (list, tuple)) or not updates:
                raise ServiceError(
                    "Updates array is required and must not be empty",
                    ErrorCode.BATCH_UPDATE_ERROR
                )

            results: List[InventoryItem] = []
            errors: List[Dict[str, Any]] = []

            for index, entry in enumerate(updates):
                if not isinstance(entry, Mapping):
                    error = ErrorInfo("Update entry must be an object", ErrorCode.UPDATE_ERROR)
                    errors.append({"index": index, "id": None, "error": error})
                    continue

                item_id = entry.get("id")
                result = self.update_inventory_item(item_id, entry.get("updates") or {})

                if result.error:
                    errors.append({"index": index, "id": item_id, "error": result.error})
                else:
                    results.append(result.data)

            if errors:
                message = f"{len(errors)} out of {len(updates)} updates failed"
                self.logger.warning(f"{operation}: {message}")
                return Result.failure(message, ErrorCode.BATCH_UPDATE_PARTIAL_ERROR, errors, data=results)

            return Result.success(results)

        except Exception as e:
            return self._failure(operation, e, ErrorCode.BATCH_UPDATE_ERROR)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_inventory_statistics(self) -> Result:
        """Totals over one full fetch; recomputed on every call."""
        operation = "get_inventory_statistics"
        try:
            result = self.get_all_inventory_items()
            if result.error:
                raise ServiceError(
                    f"Failed to fetch statistics: {result.error.message}",
                    ErrorCode.STATS_ERROR,
                    result.error.to_dict()
                )

            items: List[InventoryItem] = result.data
            total_quantity = sum(item.quantity for item in items)
            # Round half up
            average = math.floor(total_quantity / len(items) + 0.5) if items else 0

            return Result.success(InventoryStatistics(
                total_items=len(items),
                total_quantity=total_quantity,
                low_stock_items=sum(1 for item in items if is_low_stock(item)),
                categories=len({item.category for item in items}),
                average_quantity=average
            ))

        except Exception as e:
            return self._failure(operation, e, ErrorCode.STATS_ERROR)

    # ------------------------------------------------------------------
    # Change subscriptions
    # ------------------------------------------------------------------

    def _subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], Any],
        events: str,
        filter: Optional[str],
        transform: Callable[[Mapping[str, Any]], Any]
    ) -> Subscription:
        try:
            return self.feed.subscribe(table, callback, events=events, filter=filter, transform=transform)
        except Exception as e:
            self.error_logger.error(f"Failed to set up subscription on {table}: {str(e)}")
            return Subscription.failed(table, e)

    def subscribe_to_inventory_items(
        self,
        callback: Callable[[ChangeEvent], Any],
        events: str = "*",
        filter: Optional[str] = None
    ) -> Subscription:
        """
        Call *callback* with a ``ChangeEvent`` for every change on inventory items.

        The event's ``new`` / ``old`` snapshots are ``InventoryItem`` instances.
        Setup problems are reported on the returned handle's ``error``.
        """
        return self._subscribe(self.items_table, callback, events, filter, transform_inventory_item)

    def subscribe_to_categories(
        self,
        callback: Callable[[ChangeEvent], Any],
        events: str = "*",
        filter: Optional[str] = None
    ) -> Subscription:
        return self._subscribe(self.categories_table, callback, events, filter, transform_category)

    # ------------------------------------------------------------------
    # Connection checks
    # ------------------------------------------------------------------

    def test_connection(self) -> bool:
        """Run a minimal query against the items table."""
        try:
            self._items().select("id").limit(1).execute()
            return True
        except Exception as e:
            self.error_logger.error(f"Database connection test failed: {str(e)}")
            return False

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            "connected": self.test_connection(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "url": "configured" if self.store.project_url else "not configured"
        }

    def initialize(self) -> Dict[str, Any]:
        """Check connectivity once at startup."""
        status = self.get_connection_status()
        if not status["connected"]:
            self.logger.error("Failed to connect to the inventory database")
            return {
                "success": False,
                "message": "Failed to connect to the inventory database",
                "status": status
            }

        self.logger.info("Database connection initialized successfully")
        return {
            "success": True,
            "message": "Database connection initialized successfully",
            "status": status
        }
