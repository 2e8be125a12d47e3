# Overview: Flask CLI command groups for bootstrap, catalog maintenance, carts and inventory.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# - python -m flask --app storefront <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask --app storefront system init-db
#   Create all tables that do not exist yet.
# - python -m flask --app storefront system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog maintenance:
# - python -m flask --app storefront catalog audit-duplicates [--product-id 12] [--apply]
#   Report variants whose attribute values collide; --apply soft-deletes the removable ones.
#
# Carts:
# - python -m flask --app storefront carts purge-expired
#   Delete anonymous carts past their expiry.
#
# Inventory:
# - python -m flask --app storefront inventory adjust --variant-id 3 --delta 10 --note "Restock"
#   Receive (positive delta) or write off (negative delta) stock.
# - python -m flask --app storefront inventory show --variant-id 3 [--limit 20]
#   Print stock level and recent movements.

import click
from flask.cli import with_appcontext

from .errors import CommerceError
from .extensions import db
from .money import format_cents
from .services import catalog_service, cart_service, inventory_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Catalog maintenance commands."""


@catalog_group.command('audit-duplicates')
@click.option('--product-id', type=int, default=None, help='Limit the audit to one product')
@click.option('--apply', 'apply_changes', is_flag=True, help='Soft-delete removable duplicates')
@with_appcontext
def audit_duplicates(product_id, apply_changes):
    """Find variants of one product that share the same attribute values."""
    groups = catalog_service.audit_duplicates(product_id=product_id)
    if not groups:
        click.echo("PASS No duplicate variants found.")
        return

    for group in groups:
        click.echo(
            f"product={group.product_id} signature={group.signature or '(none)'} "
            f"variants={group.variant_ids} keep={group.keep_variant_id} "
            f"removable={group.removable_variant_ids}"
        )
        if group.referenced_duplicate_ids:
            click.echo(
                f"  WARN referenced by carts/orders/sales, left in place: {group.referenced_duplicate_ids}"
            )

    if apply_changes:
        removed = catalog_service.apply_duplicate_audit(groups)
        click.echo(f"PASS Soft-deleted {removed} duplicate variants.")
    else:
        click.echo("Dry run. Re-run with --apply to soft-delete removable variants.")


@click.group('carts')
def carts_group():
    """Cart maintenance commands."""


@carts_group.command('purge-expired')
@with_appcontext
def purge_expired():
    """Delete anonymous carts past their expiry."""
    removed = cart_service.purge_expired_carts()
    click.echo(f"Deleted {removed} expired carts.")


@click.group('inventory')
def inventory_group():
    """Stock inspection and manual adjustments."""


@inventory_group.command('adjust')
@click.option('--variant-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Positive to receive, negative to write off')
@click.option('--note', default=None)
@with_appcontext
def adjust(variant_id, delta, note):
    """Apply a manual stock adjustment."""
    try:
        stock = inventory_service.adjust_stock(variant_id, delta, note=note)
    except CommerceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Variant {variant_id} stock is now {stock}.")


@inventory_group.command('show')
@click.option('--variant-id', type=int, required=True)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def show(variant_id, limit):
    """Show stock level, price and recent movements for a variant."""
    try:
        stock = inventory_service.get_stock(variant_id)
    except CommerceError as e:
        raise click.ClickException(e.message)

    view = catalog_service.get_variant_view(variant_id, catalog_service.EVERYTHING)
    if view is not None:
        click.echo(f"{view.product_name} {view.variant_name}".strip())
        click.echo(f"  price: {format_cents(view.unit_price_cents)}")
    click.echo(f"  stock: {stock}")

    for movement in inventory_service.list_movements(variant_id, limit=limit):
        click.echo(
            f"  {movement.id:>6} {movement.reason:<12} {movement.quantity_delta:>+6} "
            f"{movement.reference or ''} {movement.note or ''}".rstrip()
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(carts_group)
    app.cli.add_command(inventory_group)
