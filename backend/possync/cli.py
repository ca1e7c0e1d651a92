# Overview: Flask CLI command groups for bootstrap, tenant management, and ledger inspection.

# backend/possync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations with entity and ledger counts.
# - python -m flask orgs create --name "Bistro Nord" --code "NORD"
#   Create a new organization (tenant).
#
# Ledger inspection:
# - python -m flask ledger tail --org-id 1 [--since 2025-01-01T00:00:00Z]
#   Print ledger entries newer than --since, oldest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, DiningTable, MenuItem, Order, Organization, SyncLogEntry
from .services import ledger_service
from .time_utils import parse_iso_datetime, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Database tables ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask orgs create' to add a tenant.")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Active':<8} {'Entities':<10} {'Orders':<8} {'Ledger'}")
    click.echo("="*80)

    for org in orgs:
        entity_count = sum(
            db.session.query(model).filter_by(org_id=org.id).count()
            for model in (DiningTable, MenuItem, Customer)
        )
        order_count = db.session.query(Order).filter_by(org_id=org.id).count()
        ledger_count = db.session.query(SyncLogEntry).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"

        click.echo(
            f"{org.id:<5} {org.name:<30} {org.code or '-':<12} {active_str:<8} "
            f"{entity_count:<10} {order_count:<8} {ledger_count}"
        )

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@click.group('ledger')
def ledger_group():
    """Sync ledger inspection commands."""


@ledger_group.command('tail')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--since', default=None, help='Only entries committed after this ISO-8601 time')
@with_appcontext
def tail_ledger(org_id, since):
    """Print ledger entries for one organization, oldest first."""
    try:
        since_dt = parse_iso_datetime(since)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--since")

    entries = ledger_service.list_since(org_id, since_dt)
    if not entries:
        click.echo("No ledger entries.")
        return

    for entry in entries:
        click.echo(
            f"{entry.id:<6} {to_utc_z(entry.committed_at)}  {entry.operation:<7} "
            f"{entry.entity_kind:<10} {entry.entity_id}  {entry.actor_id or '-'}"
        )


def register_commands(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(ledger_group)
