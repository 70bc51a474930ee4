"""Command-line interface for inventory queries and bulk imports."""

import sys
from contextlib import contextmanager
from typing import List, Optional

import click
import yaml

from .api.store_client import StoreClient
from .models.inventory import InventoryItem, SearchFilters
from .models.result import Result
from .models.transform import is_low_stock, transform_form_to_inventory_item
from .services.inventory_service import InventoryService
from .utils.config import get_config
from .utils.exceptions import ConfigurationError


@contextmanager
def _inventory_service():
    """Open a store client for the duration of one command."""
    try:
        with StoreClient() as store:
            yield InventoryService(store)
    except ConfigurationError as e:
        click.echo(click.style(f"✗ Configuration error: {e.message}", fg="red"), err=True)
        sys.exit(1)


def _exit_on_error(result: Result):
    if result.error:
        click.echo(click.style(f"✗ [{result.error.code}] {result.error.message}", fg="red"), err=True)
        sys.exit(1)


def _print_items(items: List[InventoryItem]):
    if not items:
        click.echo("No items found.")
        return

    click.echo(f"{'SKU':<16} {'Name':<32} {'Category':<18} {'Qty':>6} {'Min':>5}")
    click.echo("─" * 82)
    for item in items:
        line = (
            f"{item.sku[:16]:<16} {item.name[:32]:<32} {item.category[:18]:<18} "
            f"{item.quantity:>6} {item.low_stock_threshold:>5}"
        )
        if is_low_stock(item):
            line = click.style(line + "  LOW", fg="yellow")
        click.echo(line)
    click.echo("─" * 82)
    click.echo(f"{len(items)} item(s)")


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """
    Inventory Tracker CLI.

    Query and maintain the inventory stored in the hosted database.
    """
    pass


@cli.command("list")
@click.option("--sort-by", default="created_at", show_default=True, help="Column to sort by")
@click.option("--asc", "ascending", is_flag=True, help="Sort ascending (default: descending)")
@click.option("--limit", type=int, default=None, help="Page size")
@click.option("--offset", type=int, default=0, show_default=True, help="Rows to skip")
def list_items(sort_by: str, ascending: bool, limit: Optional[int], offset: int):
    """List inventory items."""
    with _inventory_service() as service:
        result = service.get_all_inventory_items(
            sort_by=sort_by, ascending=ascending, limit=limit, offset=offset
        )
    _exit_on_error(result)
    _print_items(result.data)


@cli.command()
@click.argument("term", required=False, default="")
@click.option("--category", default=None, help="Exact category name")
@click.option("--low-stock", is_flag=True, help="Only items at or below their threshold")
@click.option("--min-quantity", type=int, default=None, help="Minimum quantity")
@click.option("--max-quantity", type=int, default=None, help="Maximum quantity")
@click.option("--limit", type=int, default=None, help="Page size")
@click.option("--offset", type=int, default=0, show_default=True, help="Rows to skip")
def search(
    term: str,
    category: Optional[str],
    low_stock: bool,
    min_quantity: Optional[int],
    max_quantity: Optional[int],
    limit: Optional[int],
    offset: int
):
    """
    Search items by name or SKU.

    TERM: Case-insensitive text matched against name and SKU
    """
    filters = SearchFilters(
        search=term,
        category=category,
        low_stock_only=low_stock,
        min_quantity=min_quantity,
        max_quantity=max_quantity
    )
    with _inventory_service() as service:
        result = service.search_and_filter_inventory_items(filters, limit=limit, offset=offset)
    _exit_on_error(result)
    _print_items(result.data)


@cli.command("low-stock")
@click.option("--limit", type=int, default=None, help="Page size")
@click.option("--offset", type=int, default=0, show_default=True, help="Rows to skip")
def low_stock(limit: Optional[int], offset: int):
    """List items at or below their low stock threshold, lowest quantity first."""
    with _inventory_service() as service:
        result = service.get_low_stock_items(limit=limit, offset=offset)
    _exit_on_error(result)
    _print_items(result.data)


@cli.command()
def stats():
    """Show inventory statistics."""
    with _inventory_service() as service:
        result = service.get_inventory_statistics()
    _exit_on_error(result)

    statistics = result.data
    click.echo(f"Total items:       {statistics.total_items}")
    click.echo(f"Total quantity:    {statistics.total_quantity}")
    click.echo(click.style(
        f"Low stock items:   {statistics.low_stock_items}",
        fg="yellow" if statistics.low_stock_items > 0 else None
    ))
    click.echo(f"Categories:        {statistics.categories}")
    click.echo(f"Average quantity:  {statistics.average_quantity}")


@cli.command()
def categories():
    """List categories."""
    with _inventory_service() as service:
        result = service.get_all_categories()
    _exit_on_error(result)

    if not result.data:
        click.echo("No categories found.")
        return
    for category in result.data:
        click.echo(f"  {category.name:<24} {category.description}")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_items(path: str):
    """
    Create items from a YAML or JSON file in one batch.

    PATH: File holding a list of items, or a mapping with an ``items`` list
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list) or not data:
        click.echo(click.style("✗ File must contain a non-empty list of items", fg="red"), err=True)
        sys.exit(1)

    rows = [transform_form_to_inventory_item(entry) if isinstance(entry, dict) else entry for entry in data]

    with _inventory_service() as service:
        result = service.create_multiple_inventory_items(rows)
    _exit_on_error(result)

    click.echo(click.style(f"✓ Imported {len(result.data)} item(s)", fg="green", bold=True))


@cli.command("test-connection")
def test_connection():
    """Test connectivity to the hosted database."""
    click.echo("Testing database connection...")
    click.echo()

    with _inventory_service() as service:
        status = service.get_connection_status()

    if status["connected"]:
        click.echo(click.style("✓ Database: Connected", fg="green"))
        sys.exit(0)

    click.echo(click.style("✗ Database: Failed", fg="red"))
    click.echo("  Check logs/error.log for details")
    sys.exit(1)


@cli.command()
def config():
    """Display current configuration (without sensitive data)."""
    try:
        settings = get_config()

        click.echo("Environment:")
        click.echo(f"  Environment:     {settings.env.environment}")
        click.echo(f"  Log level:       {settings.logging.level}")
        click.echo()

        click.echo("Database:")
        click.echo(f"  URL:             {settings.env.supabase_url}")
        click.echo(f"  API key:         {settings.env.supabase_key[:10]}...")
        click.echo(f"  Schema:          {settings.store.schema_name}")
        click.echo(f"  Tables:          {settings.store.items_table}, {settings.store.categories_table}")
        click.echo()

        click.echo("Webhooks:")
        click.echo(f"  Validation:      {settings.webhook.validate_signature}")
        click.echo(f"  Header:          {settings.webhook.signature_header}")
        click.echo(f"  Secret set:      {bool(settings.env.webhook_secret)}")
        click.echo()

    except ConfigurationError as e:
        click.echo(click.style(f"✗ Error loading config: {e.message}", fg="red"), err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
