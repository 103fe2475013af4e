# Overview: Flask CLI command groups for bootstrap and cashback batch jobs.

# backend/shopcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system seed-reasons
#   Create the default discount reasons (idempotent).
#
# Cashback batch jobs:
# - python -m flask cashback expire [--now 2026-01-31T00:00:00Z]
#   Expire every earned entry past its window. Safe to run from several schedulers.
# - python -m flask cashback reconcile [--fix]
#   Compare cached balances with the ledger; --fix resets drifted caches.
# - python -m flask cashback summary 42
#   Show one customer's balance, totals and what expires soon.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import DiscountReason
from .money import format_cents
from .services import cashback_service
from .services.discount_service import create_discount_reason
from .time_utils import parse_iso_datetime


DEFAULT_DISCOUNT_REASONS = [
    ("Regular customer", "Loyal returning customer", None),
    ("Bulk purchase", "Large quantity bought in one order", None),
    ("Promotion", "Running store promotion", None),
    ("Referral", "Customer referred a new customer", None),
    ("Damaged product", "Slightly damaged or opened packaging", 3000),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('seed-reasons')
@with_appcontext
def seed_reasons():
    """Create the default discount reasons; existing names are left alone."""
    existing = {name for (name,) in db.session.query(DiscountReason.name).all()}
    created = 0
    for name, description, max_bps in DEFAULT_DISCOUNT_REASONS:
        if name in existing:
            continue
        create_discount_reason(name, description, max_discount_bps=max_bps)
        created += 1
    click.echo(f"PASS {created} discount reason(s) created, {len(existing)} already present.")


@click.group('cashback')
def cashback_group():
    """Cashback ledger batch jobs."""


@cashback_group.command('expire')
@click.option('--now', 'now_text', default=None, help='Sweep as of this ISO-8601 instant (default: now, UTC)')
@with_appcontext
def expire_cmd(now_text):
    """Expire every earned entry whose window has passed."""
    try:
        now = parse_iso_datetime(now_text)
    except DomainError as exc:
        raise click.BadParameter(exc.message, param_hint="'--now'")

    expired = cashback_service.expire_sweep(now)
    total = -sum(e.amount_cents for e in expired)
    customers = len({e.customer_id for e in expired})
    click.echo(f"PASS Expired {len(expired)} entr(y/ies) for {customers} customer(s), total {format_cents(total)}.")


@cashback_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Reset drifted cached balances to the ledger value')
@with_appcontext
def reconcile_cmd(fix):
    """Compare every customer's cached balance with the ledger."""
    mismatches = cashback_service.reconcile_all(fix=fix)
    if not mismatches:
        click.echo("PASS All cached balances match the ledger.")
        return

    for m in mismatches:
        state = "fixed" if m.get("fixed") else "DRIFT"
        click.echo(
            f"  customer={m['customer_id']} cached={format_cents(m['cached_cents'])} "
            f"ledger={format_cents(m['ledger_cents'])} [{state}]"
        )
    if not fix:
        raise click.ClickException(f"{len(mismatches)} customer(s) out of sync. Re-run with --fix.")
    click.echo(f"PASS {len(mismatches)} customer(s) repaired.")


@cashback_group.command('summary')
@click.argument('customer_id', type=int)
@with_appcontext
def summary_cmd(customer_id):
    """Show one customer's cashback summary."""
    try:
        summary = cashback_service.get_cashback_summary(customer_id)
    except DomainError as exc:
        raise click.ClickException(exc.message)

    click.echo(f"Customer {customer_id}")
    click.echo(f"  balance        {format_cents(summary['balance_cents'])}")
    click.echo(f"  available      {format_cents(summary['available_cents'])}")
    click.echo(f"  earned total   {format_cents(summary['total_earned_cents'])}")
    click.echo(f"  used total     {format_cents(summary['total_used_cents'])}")
    click.echo(f"  expired total  {format_cents(summary['total_expired_cents'])}")
    click.echo(f"  expiring soon  {format_cents(summary['expiring_soon_cents'])}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cashback_group)
