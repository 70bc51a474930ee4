"""Tests for the command-line interface."""

import pytest
from click.testing import CliRunner

from inventory_tracker import cli as cli_module
from inventory_tracker.cli import cli
from inventory_tracker.utils.logger import get_inventory_logger, get_error_logger, get_webhook_logger


@pytest.fixture
def run(seeded_backend, make_store, monkeypatch):
    """Invoke the CLI against the seeded fake backend."""
    store = make_store(seeded_backend.handler)
    # Create the loggers before the runner swaps stdout
    get_inventory_logger()
    get_error_logger()
    get_webhook_logger()
    monkeypatch.setattr(cli_module, "StoreClient", lambda: store)

    runner = CliRunner()

    def _run(*args):
        return runner.invoke(cli, list(args))

    return _run


def test_list(run):
    result = run("list", "--limit", "2")

    assert result.exit_code == 0
    assert "USB Cable" in result.output
    assert "Office Chair" in result.output
    assert "Laptop Computer" not in result.output
    assert "2 item(s)" in result.output


def test_search_low_stock(run):
    result = run("search", "--low-stock")

    assert result.exit_code == 0
    assert "FURN-001" in result.output
    assert "ELEC-002" in result.output
    assert "ELEC-001" not in result.output


def test_stats(run):
    result = run("stats")

    assert result.exit_code == 0
    assert "Total items:       3" in result.output
    assert "Low stock items:   2" in result.output
    assert "Average quantity:  13" in result.output


def test_categories(run):
    result = run("categories")

    assert result.exit_code == 0
    assert "Electronics" in result.output
    assert "Office furniture" in result.output


def test_import(run, seeded_backend, tmp_path):
    path = tmp_path / "items.yml"
    path.write_text(
        "items:\n"
        "  - name: Desk Lamp\n"
        "    sku: LIGHT-001\n"
        "    quantity: '12'\n"
        "    category: Lighting\n"
        "  - name: Bulb\n"
        "    sku: LIGHT-002\n"
        "    quantity: 40\n"
        "    category: Lighting\n"
        "    low_stock_threshold: 15\n"
    )

    result = run("import", str(path))

    assert result.exit_code == 0
    assert "Imported 2 item(s)" in result.output
    skus = {row["sku"]: row for row in seeded_backend.tables["inventory_items"]}
    assert skus["LIGHT-001"]["quantity"] == 12
    assert skus["LIGHT-002"]["low_stock_threshold"] == 15


def test_import_rejects_empty_file(run, tmp_path):
    path = tmp_path / "empty.json"
    path.write_text("[]")

    result = run("import", str(path))

    assert result.exit_code == 1
    assert "non-empty list" in result.output


def test_store_error_exits_non_zero(run, seeded_backend):
    seeded_backend.fail_with = (500, {"message": "database unavailable"})

    result = run("stats")

    assert result.exit_code == 1
    assert "STATS_ERROR" in result.output


def test_test_connection(run):
    result = run("test-connection")

    assert result.exit_code == 0
    assert "Connected" in result.output
