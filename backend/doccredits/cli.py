# Overview: Flask CLI command groups for bootstrap, inspection, and ledger audits.

# backend/doccredits/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to doccredits (PowerShell: $env:FLASK_APP="doccredits").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/onboarding:
# - python -m flask users list [--role PATIENT]
#   List users with role and balance.
# - python -m flask users set-role user_2abc PATIENT
#   Assign a role to a reconciled user (only PATIENT users receive allocations).
#
# Credit ledger:
# - python -m flask credits ledger 7 --limit 20
#   Print a user's newest ledger rows (--as-of 2026-03-31T23:59:59Z adds the balance at that instant).
# - python -m flask credits audit
#   Report users whose cached balance differs from their ledger sum (exit code 1 on drift).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models.users import VALID_ROLES
from .services import ledger_service, user_service
from .services.user_service import UserError
from .time_utils import parse_iso_datetime, to_utc_z


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

    This will DELETE ALL DATA, including the credit ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and onboarding commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES, case_sensitive=False), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with role and balance."""
    users = user_service.list_users(role.upper() if role else None)
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<6} {'EXTERNAL ID':<32} {'ROLE':<12} {'CREDITS':>8}  EMAIL")
    for u in users:
        click.echo(f"{u.id:<6} {u.external_id:<32} {u.role:<12} {u.credits:>8}  {u.email}")


@users_group.command('set-role')
@click.argument('external_id')
@click.argument('role', type=click.Choice(VALID_ROLES, case_sensitive=False))
@with_appcontext
def set_role_cli(external_id, role):
    """Assign ROLE to the user reconciled from EXTERNAL_ID."""
    try:
        user = user_service.set_role(external_id, role)
    except UserError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS User {user.id} ({user.external_id}) is now {user.role}")


@click.group('credits')
def credits_group():
    """Credit ledger inspection commands."""


@credits_group.command('ledger')
@click.argument('user_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True)
@click.option('--as-of', 'as_of', help='ISO-8601 datetime; also print the ledger balance at that instant')
@with_appcontext
def ledger_cli(user_id, limit, as_of):
    """Print the newest ledger rows for USER_ID."""
    try:
        as_of_dt = parse_iso_datetime(as_of)
    except ValueError:
        click.echo("FAIL --as-of must be an ISO-8601 datetime")
        raise SystemExit(1)

    user = user_service.get_user(user_id)
    if not user:
        click.echo(f"FAIL User {user_id} not found")
        raise SystemExit(1)

    click.echo(f"User {user.id} ({user.external_id}) balance={user.credits} ledger={ledger_service.ledger_balance(user.id)}")
    if as_of_dt is not None:
        click.echo(f"Ledger balance as of {to_utc_z(as_of_dt)}: {ledger_service.ledger_balance(user.id, as_of=as_of_dt)}")
    for row in ledger_service.get_user_transactions(user.id, limit=limit):
        click.echo(
            f"  #{row.id:<6} {to_utc_z(row.created_at)}  {row.transaction_type:<22} "
            f"{row.amount:>+5}  {row.package_id or ''}"
        )


@credits_group.command('audit')
@with_appcontext
def audit_cli():
    """Compare every cached balance against its ledger sum."""
    drift = ledger_service.find_balance_drift()
    if not drift:
        click.echo(f"PASS All balances match the ledger (total credits: {ledger_service.total_credits()}).")
        return

    click.echo(f"FAIL {len(drift)} user(s) with balance drift:")
    for d in drift:
        click.echo(f"  user {d.user_id}: cached={d.cached_credits} ledger={d.ledger_credits} diff={d.difference:+d}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(credits_group)
