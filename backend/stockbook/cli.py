# Overview: Flask CLI command groups for bootstrap, ledger inspection and invoice numbering.

# backend/stockbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection/repair:
# - python -m flask ledger verify
#   Compare every product's cached current_stock with opening_stock + SUM(ledger).
# - python -m flask ledger rebuild --product-id 7
# - python -m flask ledger rebuild --all
#   Reset cached current_stock to the replayed value (manual correction).
# - python -m flask ledger operations --status failed
#   List invoice intent records (interrupted or failed create/update/delete).
#
# Invoice numbering:
# - python -m flask invoices next-number --dry-run
#   Show the number (and allocator tier) the next invoice would get.
# - python -m flask invoices reset-sequence
#   Re-seed the invoice counter from the latest invoice number.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import balance_service, invoice_number_service, invoice_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection and repair."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Report products whose cached stock disagrees with the ledger. Exit 1 on drift."""
    drifted = balance_service.find_drift()
    total = db.session.query(Product).count()

    if not drifted:
        click.echo(f"PASS {total} products checked, no drift")
        return

    click.echo(f"FAIL {len(drifted)} of {total} products drifted:")
    for check in drifted:
        click.echo(
            f"   {check.sku:<16} id={check.product_id:<6} cached={check.cached} "
            f"replayed={check.replayed} drift={check.drift}"
        )
    raise SystemExit(1)


@ledger_group.command('rebuild')
@click.option('--product-id', type=int, help='Product to rebuild')
@click.option('--all', 'rebuild_all', is_flag=True, help='Rebuild every drifted product')
@with_appcontext
def rebuild_ledger(product_id, rebuild_all):
    """Reset cached current_stock to opening_stock + SUM(ledger)."""
    if not product_id and not rebuild_all:
        raise click.UsageError("Pass --product-id or --all")

    if rebuild_all:
        targets = [check.product_id for check in balance_service.find_drift()]
    else:
        targets = [product_id]

    if not targets:
        click.echo("PASS Nothing to rebuild")
        return

    for pid in targets:
        before = balance_service.rebuild_cached_balance(pid)
        if before.ok:
            click.echo(f"PASS {before.sku} already consistent ({before.cached})")
        else:
            click.echo(f"FIXED {before.sku}: {before.cached} -> {before.replayed}")


@ledger_group.command('operations')
@click.option('--status', type=click.Choice(['started', 'completed', 'failed']), help='Filter by status')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_operations(status, limit):
    """List invoice intent records, newest first."""
    ops = invoice_service.list_operations(status=status, limit=limit)
    if not ops:
        click.echo("No invoice operations found")
        return

    for op in ops:
        click.echo(
            f"{op.id:<6} {op.operation:<7} {op.invoice_number or '-':<14} {op.status:<10} "
            f"steps={','.join(op.steps) or '-'} failed_step={op.failed_step or '-'}"
        )
        if op.error:
            click.echo(f"       error: {op.error}")


@click.group('invoices')
def invoices_group():
    """Invoice numbering."""


@invoices_group.command('next-number')
@click.option('--dry-run', is_flag=True, help='Preview without consuming a number')
@with_appcontext
def next_number(dry_run):
    """Show (or consume) the next invoice number and the tier that produced it."""
    if dry_run:
        allocated = invoice_number_service.preview_invoice_number()
    else:
        allocated = invoice_number_service.allocate_invoice_number()
        db.session.commit()

    click.echo(f"{allocated.number} (source: {allocated.source.value})")
    for err in allocated.errors:
        click.echo(f"   WARN {err}")


@invoices_group.command('reset-sequence')
@with_appcontext
def reset_sequence():
    """Move the invoice counter past the latest issued number."""
    seq = invoice_number_service.reset_sequence()
    click.echo(f"PASS {seq.prefix} next number: {seq.next_number}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(invoices_group)
