# Overview: Flask CLI command groups for bootstrap, admin accounts, and maintenance.

# backend/gasbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the stock row and the settings row.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system cleanup-sessions
#   Delete long-expired or revoked session tokens.
#
# Admin accounts:
# - python -m flask admin create --email admin@gasagency.local --user-id admin --name "Agency Admin" --phone 9876543210 --address "Main Office" --password "Password123!"
#   Create a verified ADMIN (prompts for any omitted option).
# - python -m flask admin delete --email admin@gasagency.local [--yes]
#   Delete an ADMIN account. The last admin cannot be deleted.
# - python -m flask admin change-password --email admin@gasagency.local --password "NewPassword123!"
#   Set a new password and revoke every session of that admin.
# - python -m flask admin list
#   List all ADMIN accounts.
#
# Inventory:
# - python -m flask inventory reconcile [--fix]
#   Compare the stock total with the adjustment ledger; --fix rewrites a drifted total.
#
# Customers:
# - python -m flask users reset-quotas [--yes]
#   Reset every customer's remaining quota to the annual quota.

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import Booking, ContactReply, User
from .models.users import ROLE_ADMIN
from .services import auth_service, inventory_service, session_service, settings_service, user_admin_service


def _fail(exc: AppError):
    raise click.ClickException(exc.message)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables plus the stock and settings singletons.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing gas agency database...")
    db.create_all()

    stock = inventory_service.get_stock_locked(lock=False)
    settings = settings_service.ensure_settings_row()
    db.session.commit()

    click.echo(f"PASS Stock row ready (available: {stock.total_available})")
    click.echo(f"PASS Settings row ready (price per cylinder: {settings.price_per_cylinder})")

    admins = db.session.query(User).filter_by(role=ROLE_ADMIN).count()
    if not admins:
        click.echo("WARN No admin account yet. Create one with: flask admin create")
    click.echo("DONE System initialized")


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

    inventory_service.get_stock_locked(lock=False)
    settings_service.ensure_settings_row()
    db.session.commit()
    click.echo("DONE Database reset")


@system_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} session(s)")


@click.group('admin')
def admin_group():
    """Admin account management."""


def _get_admin(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower(), role=ROLE_ADMIN).first()
    if not user:
        raise click.ClickException(f"No admin with email {email}")
    return user


@admin_group.command('create')
@click.option('--email', prompt=True)
@click.option('--user-id', 'user_id', prompt='User ID')
@click.option('--name', prompt=True)
@click.option('--phone', prompt=True)
@click.option('--address', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin(email, user_id, name, phone, address, password):
    """Create a verified ADMIN account."""
    try:
        user = auth_service.create_user(
            name=name,
            user_id=user_id,
            email=email,
            phone=phone,
            address=address,
            password=password,
            role=ROLE_ADMIN,
            verified=True,
        )
        db.session.commit()
    except AppError as exc:
        db.session.rollback()
        _fail(exc)
    click.echo(f"PASS Created admin {user.user_id} <{user.email}> (ID: {user.id})")


@admin_group.command('delete')
@click.option('--email', required=True)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_admin(email, yes):
    """Delete an ADMIN account that has no bookings or support replies."""
    user = _get_admin(email)
    if db.session.query(User).filter_by(role=ROLE_ADMIN).count() <= 1:
        raise click.ClickException("Cannot delete the last admin account")
    if db.session.query(Booking.id).filter_by(user_id=user.id).first() is not None:
        raise click.ClickException("Admin has bookings; demote or deactivate instead")
    if db.session.query(ContactReply.id).filter_by(author_id=user.id).first() is not None:
        raise click.ClickException("Admin has replied to support messages; deactivate instead")
    if not yes:
        click.confirm(f"WARN Delete admin {user.email}?", abort=True)

    db.session.delete(user)
    db.session.commit()
    click.echo(f"DELETE Admin {email} deleted")


@admin_group.command('change-password')
@click.option('--email', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def change_admin_password(email, password):
    """Set a new password. Every open session of the admin is revoked."""
    user = _get_admin(email)
    try:
        user.password_hash = auth_service.hash_password(password)
    except AppError as exc:
        _fail(exc)
    revoked = session_service.revoke_all_user_sessions(user.id, "Password changed via CLI", commit=False)
    db.session.commit()
    click.echo(f"PASS Password updated for {user.email} ({revoked} session(s) revoked)")


@admin_group.command('list')
@with_appcontext
def list_admins():
    """List all ADMIN accounts."""
    admins = db.session.query(User).filter_by(role=ROLE_ADMIN).order_by(User.id.asc()).all()
    if not admins:
        click.echo("No admins found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'User ID':<20} {'Email':<35} {'Active':<8} {'Verified'}")
    click.echo("="*90)
    for user in admins:
        active_str = "Yes" if user.is_active else "No"
        verified_str = "Yes" if user.is_verified else "No"
        click.echo(f"{user.id:<5} {user.user_id:<20} {user.email:<35} {active_str:<8} {verified_str}")
    click.echo("="*90 + "\n")


@click.group('inventory')
def inventory_group():
    """Stock ledger maintenance."""


@inventory_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Rewrite a drifted stock total from the ledger')
@with_appcontext
def reconcile(fix):
    try:
        result = inventory_service.reconcile_stock(fix=fix)
    except AppError as exc:
        _fail(exc)

    click.echo(f"Stock total:  {result['materialized_total']}")
    click.echo(f"Ledger total: {result['ledger_total']}")
    if result["consistent"]:
        click.echo("PASS Stock matches the ledger")
    elif result["fixed"]:
        click.echo(f"FIXED Drift of {result['drift']} corrected")
    else:
        click.echo(f"FAIL Drift of {result['drift']} (re-run with --fix to correct)")


@click.group('users')
def users_group():
    """Customer account maintenance."""


@users_group.command('reset-quotas')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_quotas(yes):
    """Reset every customer's remaining quota (start of a new year)."""
    if not yes:
        click.confirm("WARN Reset the quota of every customer?", abort=True)
    count = user_admin_service.reset_all_quotas()
    click.echo(f"PASS Reset quota for {count} customer(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(admin_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(users_group)
