"""Change feed: per-table subscriptions fed by database change webhooks.

The hosted database posts a payload for every INSERT / UPDATE / DELETE on a
watched table. The webhook server turns each payload into a ``ChangeEvent``
and hands it to ``ChangeFeed.dispatch``, which delivers it to every matching
subscription. Each callback runs in isolation: an exception in one consumer
is logged and delivery continues with the next.
"""

import operator
import threading
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from ..utils.logger import get_webhook_logger, get_error_logger

ALL_EVENTS = "*"
EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")

_COMPARISONS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}
FILTER_OPERATORS = ("eq", "neq", "in") + tuple(_COMPARISONS)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


# ---------------------------------------------------------------------------
# Events and filters
# ---------------------------------------------------------------------------

@dataclass
class ChangeEvent:
    """One row change reported by the store."""

    table: str
    event_type: str
    new: Optional[Any] = None
    old: Optional[Any] = None
    schema: str = "public"
    commit_timestamp: Optional[str] = None

    @classmethod
    def from_webhook_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from a database webhook body.

        Expected keys: ``type``, ``table``, ``schema``, ``record``, ``old_record``.

        Raises:
            ValueError: If the payload is not a recognisable change event
        """
        if not isinstance(payload, dict):
            raise ValueError("Change payload must be a JSON object")

        event_type = str(payload.get("type") or "").upper()
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type: {payload.get('type')!r}")

        table = payload.get("table")
        if not table:
            raise ValueError("Change payload has no table")

        return cls(
            table=table,
            event_type=event_type,
            new=payload.get("record"),
            old=payload.get("old_record"),
            schema=payload.get("schema") or "public",
            commit_timestamp=payload.get("commit_timestamp")
        )

    @property
    def record(self) -> Optional[Any]:
        """The row the event is about: the old snapshot for deletes, the new one otherwise."""
        return self.old if self.event_type == "DELETE" else self.new

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        def plain(snapshot):
            return snapshot.to_dict() if hasattr(snapshot, "to_dict") else snapshot

        return {
            "table": self.table,
            "event_type": self.event_type,
            "new": plain(self.new),
            "old": plain(self.old),
            "schema": self.schema,
            "commit_timestamp": self.commit_timestamp
        }


@dataclass(frozen=True)
class RowFilter:
    """Row filter in realtime syntax, e.g. ``category=eq.Books`` or ``quantity=lt.5``."""

    column: str
    operator: str
    value: str

    @classmethod
    def parse(cls, expression: str) -> "RowFilter":
        column, has_eq, rest = expression.partition("=")
        op, has_dot, value = rest.partition(".")
        if not has_eq or not has_dot or not column.strip() or op not in FILTER_OPERATORS:
            raise ValueError(f"Invalid filter expression: {expression!r}")
        return cls(column=column.strip(), operator=op, value=value)

    def matches(self, record: Optional[Dict[str, Any]]) -> bool:
        if not isinstance(record, dict) or self.column not in record:
            return False

        actual = record[self.column]

        if self.operator == "in":
            options = [option.strip().strip('"') for option in self.value.strip("()").split(",")]
            return _as_text(actual) in options

        if self.operator in ("eq", "neq"):
            equal = _as_text(actual) == self.value
            return equal if self.operator == "eq" else not equal

        # Numeric comparison when both sides are numbers, text otherwise
        try:
            left, right = float(actual), float(self.value)
        except (TypeError, ValueError):
            left, right = _as_text(actual), self.value
        return _COMPARISONS[self.operator](left, right)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``.

    A handle whose setup failed has ``error`` set, is never active, and its
    ``unsubscribe`` does nothing.
    """

    def __init__(
        self,
        table: str,
        callback: Optional[Callable[[ChangeEvent], Any]],
        events: str = ALL_EVENTS,
        row_filter: Optional[RowFilter] = None,
        transform: Optional[Callable[[Dict[str, Any]], Any]] = None,
        feed: Optional["ChangeFeed"] = None,
        error: Optional[Exception] = None
    ):
        self.table = table
        self.callback = callback
        self.events = events
        self.row_filter = row_filter
        self.transform = transform
        self.error = error
        self._feed = feed
        self.active = feed is not None and error is None

    @classmethod
    def failed(cls, table: str, error: Exception) -> "Subscription":
        return cls(table=table, callback=None, error=error)

    def wants(self, event: ChangeEvent) -> bool:
        """Whether *event* should be delivered to this subscription."""
        if not self.active or event.table != self.table:
            return False
        if self.events != ALL_EVENTS and event.event_type != self.events:
            return False
        if self.row_filter is not None:
            return self.row_filter.matches(event.record)
        return True

    def deliver(self, event: ChangeEvent):
        """Transform the snapshots and invoke the callback. Exceptions propagate to the feed."""
        if self.transform is not None:
            event = replace(
                event,
                new=self.transform(event.new) if event.new else None,
                old=self.transform(event.old) if event.old else None
            )
        self.callback(event)

    def unsubscribe(self):
        """Stop receiving events. Safe to call more than once."""
        if self._feed is not None:
            self._feed.remove(self)
        self.active = False


class ChangeFeed:
    """Thread-safe registry of subscriptions with an isolating dispatch loop."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self.logger = get_webhook_logger()
        self.error_logger = get_error_logger()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], Any],
        events: str = ALL_EVENTS,
        filter: Optional[str] = None,
        transform: Optional[Callable[[Dict[str, Any]], Any]] = None
    ) -> Subscription:
        """
        Register *callback* for changes on *table*.

        Args:
            table: Table name
            callback: Called with a ``ChangeEvent``
            events: ``*`` or one of INSERT / UPDATE / DELETE (case-insensitive)
            filter: Optional row filter, e.g. ``category=eq.Books``
            transform: Optional converter applied to the new/old snapshots

        Raises:
            ValueError: On an unknown table, event type or filter
        """
        if not table:
            raise ValueError("Table name is required")
        if not callable(callback):
            raise ValueError("Callback must be callable")

        events = (events or ALL_EVENTS).upper()
        if events != ALL_EVENTS and events not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type: {events!r}")

        row_filter = RowFilter.parse(filter) if filter else None

        subscription = Subscription(
            table=table,
            callback=callback,
            events=events,
            row_filter=row_filter,
            transform=transform,
            feed=self
        )

        with self._lock:
            self._subscriptions.append(subscription)

        self.logger.info(
            f"Subscribed to {events} changes on {table}"
            + (f" where {filter}" if filter else "")
        )
        return subscription

    def remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                self.logger.info(f"Unsubscribed from changes on {subscription.table}")

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def dispatch(self, event: ChangeEvent) -> int:
        """
        Deliver *event* to every matching subscription.

        Returns:
            Number of callbacks that completed without raising
        """
        with self._lock:
            targets = [subscription for subscription in self._subscriptions if subscription.wants(event)]

        self.logger.debug(f"Dispatching {event.event_type} on {event.table} to {len(targets)} subscriber(s)")

        delivered = 0
        for subscription in targets:
            try:
                subscription.deliver(event)
                delivered += 1
            except Exception as e:
                self.error_logger.error(
                    f"Error processing {event.event_type} change on {event.table}: {str(e)}",
                    exc_info=True
                )

        return delivered


@lru_cache()
def get_change_feed() -> ChangeFeed:
    """Get the process-wide change feed."""
    return ChangeFeed()
