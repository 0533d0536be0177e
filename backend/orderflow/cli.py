# Overview: Flask CLI command groups for bootstrap and order inspection.

# backend/orderflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to orderflow (PowerShell: $env:FLASK_APP="orderflow").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Order inspection:
# - python -m flask orders show 42
#   Print an order, its lines with status labels, and both bill totals.
# - python -m flask orders claims 42
#   Print who holds the storekeeper / checker / biller slots.
# - python -m flask orders list --flag SENT_TO_STOREKEEPER --limit 20
#   List recent orders, optionally filtered by approval flag.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import NotFound
from .flags import ApprovalFlag
from .models import Order
from .services import claim_service
from .services.billing_service import bill_for
from .services.line_rules import audit_trail
from .services.repository import load_lines, load_order


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
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


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('list')
@click.option('--flag', 'flag', type=click.Choice([f.value for f in ApprovalFlag]), default=None)
@click.option('--limit', default=20, show_default=True, type=int)
@with_appcontext
def list_orders(flag, limit):
    """List recent orders."""
    query = db.session.query(Order)
    if flag:
        query = query.filter(Order.approval_flag == ApprovalFlag(flag))
    orders = query.order_by(Order.id.desc()).limit(limit).all()

    if not orders:
        click.echo("No orders found.")
        return

    click.echo(f"{'ID':<6} {'Flag':<24} {'Salesman':<10} {'Customer':<16} {'Billed':<6}")
    click.echo("-" * 66)
    for order in orders:
        click.echo(
            f"{order.id:<6} {order.approval_flag.value:<24} {order.salesman_id:<10} "
            f"{(order.customer_ref or '-'):<16} {'yes' if order.is_billed else 'no':<6}"
        )


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
def show_order(order_id):
    """Show an order with its lines and totals."""
    try:
        order = load_order(order_id)
    except NotFound as e:
        raise click.ClickException(str(e))

    lines = load_lines(order.id)
    bill = bill_for(order, lines)

    click.echo(f"Order {order.id}  [{order.approval_flag.value}]  salesman={order.salesman_id}")
    if order.note:
        click.echo(f"  note: {order.note}")
    click.echo("")
    for entry in audit_trail(lines):
        line = entry.line
        suffix = f" -> line {entry.replaced_by.id}" if entry.replaced_by is not None else ""
        click.echo(
            f"  #{line.id:<5} {line.product_ref:<16} qty={line.ordered_qty} avail={line.available_qty} "
            f"rate={line.rate}  {entry.label}{suffix}"
        )
    click.echo("")
    summary = bill.to_dict()
    click.echo(f"  freight:   {summary['freight_charge']}")
    click.echo(f"  estimated: {summary['estimated_total']}")
    click.echo(f"  final:     {summary['final_total']}")


@orders_group.command('claims')
@click.argument('order_id', type=int)
@with_appcontext
def show_claims(order_id):
    """Show the current role-slot holders of an order."""
    try:
        tokens = claim_service.order_claims(order_id)
    except NotFound as e:
        raise click.ClickException(str(e))

    if not tokens:
        click.echo(f"Order {order_id} has no claimed slots.")
        return
    for token in tokens:
        click.echo(f"  {token.role.value:<12} actor={token.actor_id}  since={token.to_dict()['claimed_at']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
