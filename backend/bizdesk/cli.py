# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bizdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@bizdesk.local --admin-password "Password123!"]
#   Idempotent bootstrap: creates all tables and the admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with admin and active flags.
# - python -m flask users create --name "Jane" --email jane@bizdesk.local --password "Password123!" [--admin]
#   Create a user (prompts if options are omitted).
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired sessions and sessions revoked more than 30 days ago.
# - python -m flask maintenance cleanup-login-history --retention-days 90
#   Delete login history older than the retention window.
# - python -m flask maintenance cleanup-subscriptions
#   Delete push subscriptions past their expiration time.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import AuthError, create_user, ensure_admin
from .services import maintenance_service, session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@bizdesk.local', show_default=True, help='Admin email')
@click.option('--admin-password', default='Password123!', show_default=True, help='Admin password')
@click.option('--admin-name', default='Administrator', show_default=True, help='Admin display name')
@with_appcontext
def init_system(admin_email, admin_password, admin_name):
    """
    Initialize the database and the admin account.

    Safe to run repeatedly: existing tables and users are kept.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing bizdesk...")

    db.create_all()
    click.echo("PASS Tables created")

    try:
        admin, created = ensure_admin(name=admin_name, email=admin_email, password=admin_password)
    except AuthError as e:
        raise click.ClickException(str(e))

    if created:
        click.echo(f"PASS Created admin user: {admin.email} (ID: {admin.id})")
    else:
        click.echo(f"PASS Using existing admin user: {admin.email} (ID: {admin.id})")

    click.echo("DONE System initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant admin rights')
@with_appcontext
def create_user_cli(name, email, password, is_admin):
    """Create a user."""
    try:
        user = create_user(name=name, email=email, password=password, is_admin=is_admin)
    except AuthError as e:
        raise click.ClickException(str(e))

    role = "admin" if user.is_admin else "user"
    click.echo(f"PASS Created {role} {user.email} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Admin':<7} {'Active'}")
    click.echo("="*90)

    for user in users:
        admin_str = "Yes" if user.is_admin else "No"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {admin_str:<7} {active_str}")

    click.echo("="*90 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired sessions and long-revoked sessions."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} sessions.")


@maintenance_group.command('cleanup-login-history')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_login_history_cli(retention_days):
    """
    Cleanup old login history.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_login_history(retention_days=retention_days)
    click.echo(f"Deleted {deleted} login history entries older than {retention_days} days.")


@maintenance_group.command('cleanup-subscriptions')
@with_appcontext
def cleanup_subscriptions_cli():
    """Delete push subscriptions whose expiration time has passed."""
    deleted = maintenance_service.cleanup_expired_subscriptions()
    click.echo(f"Deleted {deleted} expired push subscriptions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
