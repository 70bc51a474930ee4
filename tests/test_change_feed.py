"""Tests for the change feed."""

import pytest
from unittest.mock import Mock

from inventory_tracker.services.change_feed import ChangeEvent, RowFilter, Subscription


def item_event(event_type="INSERT", **record):
    row = {"id": "1", "name": "Widget", "category": "Tools", "quantity": 4}
    row.update(record)
    if event_type == "DELETE":
        return ChangeEvent(table="inventory_items", event_type=event_type, old=row)
    return ChangeEvent(table="inventory_items", event_type=event_type, new=row)


class TestChangeEvent:
    """Tests for ChangeEvent parsing."""

    def test_from_webhook_payload(self):
        event = ChangeEvent.from_webhook_payload({
            "type": "UPDATE",
            "table": "inventory_items",
            "schema": "public",
            "record": {"id": "1", "quantity": 2},
            "old_record": {"id": "1", "quantity": 5}
        })

        assert event.event_type == "UPDATE"
        assert event.table == "inventory_items"
        assert event.new == {"id": "1", "quantity": 2}
        assert event.old == {"id": "1", "quantity": 5}
        assert event.record == event.new

    def test_event_type_is_case_insensitive(self):
        event = ChangeEvent.from_webhook_payload({"type": "insert", "table": "categories", "record": {}})

        assert event.event_type == "INSERT"
        assert event.schema == "public"

    def test_delete_record_is_old_snapshot(self):
        event = ChangeEvent.from_webhook_payload({
            "type": "DELETE", "table": "inventory_items", "record": None, "old_record": {"id": "7"}
        })

        assert event.record == {"id": "7"}

    @pytest.mark.parametrize("payload, message", [
        ([], "must be a JSON object"),
        ({"type": "TRUNCATE", "table": "inventory_items"}, "Unsupported event type"),
        ({"table": "inventory_items"}, "Unsupported event type"),
        ({"type": "INSERT"}, "has no table"),
    ])
    def test_invalid_payloads(self, payload, message):
        with pytest.raises(ValueError, match=message):
            ChangeEvent.from_webhook_payload(payload)


class TestRowFilter:
    """Tests for RowFilter."""

    def test_parse(self):
        assert RowFilter.parse("category=eq.Books") == RowFilter("category", "eq", "Books")

    @pytest.mark.parametrize("expression", ["category", "category=like.Books", "=eq.x", "quantity=lt"])
    def test_parse_invalid(self, expression):
        with pytest.raises(ValueError, match="Invalid filter expression"):
            RowFilter.parse(expression)

    @pytest.mark.parametrize("expression, expected", [
        ("category=eq.Tools", True),
        ("category=neq.Tools", False),
        ("quantity=lt.5", True),
        ("quantity=lte.4", True),
        ("quantity=gt.4", False),
        ("quantity=gte.10", False),
        ("id=in.(1,2,3)", True),
        ("missing=eq.x", False),
    ])
    def test_matches(self, expression, expected):
        record = {"id": "1", "category": "Tools", "quantity": 4}

        assert RowFilter.parse(expression).matches(record) is expected

    def test_no_record_never_matches(self):
        assert RowFilter.parse("id=eq.1").matches(None) is False


class TestChangeFeed:
    """Tests for subscription and dispatch."""

    def test_dispatch_to_matching_subscribers(self, feed):
        items, categories = [], []
        feed.subscribe("inventory_items", items.append)
        feed.subscribe("categories", categories.append)

        delivered = feed.dispatch(item_event())

        assert delivered == 1
        assert len(items) == 1
        assert categories == []

    def test_event_type_filter(self, feed):
        received = []
        feed.subscribe("inventory_items", received.append, events="delete")

        feed.dispatch(item_event("INSERT"))
        feed.dispatch(item_event("DELETE"))

        assert [event.event_type for event in received] == ["DELETE"]

    def test_row_filter_uses_old_snapshot_for_deletes(self, feed):
        received = []
        feed.subscribe("inventory_items", received.append, filter="category=eq.Tools")

        feed.dispatch(item_event("DELETE"))
        feed.dispatch(item_event("INSERT", category="Garden"))

        assert len(received) == 1

    def test_transform_applies_to_both_snapshots(self, feed):
        received = []
        feed.subscribe("inventory_items", received.append, transform=lambda row: row["name"].upper())

        feed.dispatch(ChangeEvent(table="inventory_items", event_type="UPDATE",
                                  new={"name": "new"}, old={"name": "old"}))

        assert (received[0].new, received[0].old) == ("NEW", "OLD")

    def test_failing_callback_does_not_stop_others(self, feed):
        received = []

        def broken(event):
            raise RuntimeError("consumer failed")

        feed.subscribe("inventory_items", broken)
        feed.subscribe("inventory_items", received.append)

        delivered = feed.dispatch(item_event())

        assert delivered == 1
        assert len(received) == 1

    def test_unsubscribe_is_idempotent(self, feed):
        received = []
        subscription = feed.subscribe("inventory_items", received.append)

        subscription.unsubscribe()
        subscription.unsubscribe()
        feed.dispatch(item_event())

        assert subscription.active is False
        assert feed.subscription_count == 0
        assert received == []

    @pytest.mark.parametrize("kwargs, message", [
        ({"table": "", "callback": print}, "Table name is required"),
        ({"table": "inventory_items", "callback": "nope"}, "Callback must be callable"),
        ({"table": "inventory_items", "callback": print, "events": "UPSERT"}, "Unsupported event type"),
        ({"table": "inventory_items", "callback": print, "filter": "bad"}, "Invalid filter expression"),
    ])
    def test_subscribe_rejects_bad_arguments(self, feed, kwargs, message):
        with pytest.raises(ValueError, match=message):
            feed.subscribe(**kwargs)

        assert feed.subscription_count == 0


def test_failed_subscription_handle():
    subscription = Subscription.failed("inventory_items", ValueError("bad"))

    assert subscription.active is False
    assert subscription.wants(item_event()) is False
    subscription.unsubscribe()


def test_callback_receives_event(feed):
    callback = Mock()
    feed.subscribe("categories", callback, events="INSERT")
    event = ChangeEvent(table="categories", event_type="INSERT", new={"id": "c1", "name": "Books"})

    feed.dispatch(event)

    callback.assert_called_once_with(event)
