# Overview: Flask CLI command groups for bootstrap, account inspection, and maintenance.

# backend/nursery/cli.py
# Usage, from backend/ with FLASK_APP=wsgi.py exported:
#   flask <group> <command> [options]
#
# system
# - flask system init [--email admin@nursery.local] [--password "..."]
#   Idempotent bootstrap: creates tables and the first super admin.
# - flask system reset-db --yes
#   Local databases only: drops every table, then recreates the schema.
# - flask system run-sql schema.sql
#   Execute a SQL file statement by statement.
#
# users
# - flask users list [--role order_admin]
#   List accounts with role and active status.
# - flask users create-admin --email orders@nursery.local --password "..." --role order_admin
#   Create a back-office account (prompts if options are omitted).
#
# sessions, notifications (run these from cron or a worker):
# - flask sessions sweep
#   Delete sessions idle past SESSION_INACTIVITY_TIMEOUT_SECONDS.
# - flask notifications dispatch [--limit 100]
#   Deliver pending outbox emails.
# - flask notifications retry-failed
#   Requeue failed outbox emails with a fresh attempt budget.

from pathlib import Path

import click
from flask.cli import with_appcontext
from sqlalchemy import text

from .extensions import db
from .models import User
from .permissions import Role
from .services import auth_service, session_service, notification_service
from .services.auth_service import PasswordValidationError
from .validation import ValidationError, ConflictError


@click.group('system')
def system_group():
    """Schema bootstrap and repair."""


@system_group.command('init')
@click.option('--email', default='superadmin@nursery.local', show_default=True, help='Super admin email')
@click.option('--password', default='Password123!', show_default=True, help='Super admin password')
@with_appcontext
def init_system(email, password):
    """
    Create all tables and the first super admin.

    Safe to re-run: an existing super admin is left untouched.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing nursery backend...")
    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter(User.role == Role.SUPER_ADMIN.value).first()
    if existing:
        click.echo(f"PASS Using existing super admin: {existing.email} (ID: {existing.id})")
        return

    try:
        user = auth_service.create_admin(email, password, Role.SUPER_ADMIN.value)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created super admin: {user.email} (ID: {user.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. All orders, accounts and stock history are lost."""
    if not yes:
        click.confirm("WARN Every table will be dropped. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Schema recreated. Next: flask system init")


def split_sql_statements(script: str) -> list[str]:
    """Split a SQL script on `;`, dropping `--` comment lines and blanks."""
    lines = [line for line in script.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


@system_group.command('run-sql')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@with_appcontext
def run_sql(path):
    """Execute a SQL file in one transaction."""
    statements = split_sql_statements(path.read_text(encoding="utf-8"))
    try:
        for stmt in statements:
            db.session.execute(text(stmt))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        raise click.ClickException(f"FAIL {path.name}: {e}")
    click.echo(f"PASS Executed {len(statements)} statement(s) from {path.name}")


@click.group('users')
def users_group():
    """Account inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', help='Filter by role')
@with_appcontext
def list_users(role):
    """Print accounts with role, active and verified flags."""
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<18} {'Active':<8} {'Verified'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        verified_str = "Yes" if user.is_verified else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<18} {active_str:<8} {verified_str}")

    click.echo("="*80 + "\n")


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option(
    '--role',
    prompt=True,
    type=click.Choice([r.value for r in Role if r is not Role.CUSTOMER]),
    help='Admin role',
)
@with_appcontext
def create_admin_cli(email, password, role):
    """Create a back-office account (any admin role, including super_admin)."""
    try:
        user = auth_service.create_admin(email, password, role)
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except (ValidationError, ConflictError) as e:
        errors = getattr(e, "errors", None)
        detail = f" {errors}" if errors else ""
        raise click.ClickException(f"{e}{detail}")
    click.echo(f"PASS Created {user.role}: {user.email} (ID: {user.id})")


@click.group('sessions')
def sessions_group():
    """Login session maintenance."""


@sessions_group.command('sweep')
@with_appcontext
def sweep_sessions_cli():
    """Delete sessions idle past the inactivity timeout."""
    removed = session_service.sweep_stale_sessions()
    click.echo(f"Swept {removed} stale session(s).")


@click.group('notifications')
def notifications_group():
    """Email outbox delivery."""


@notifications_group.command('dispatch')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def dispatch_notifications_cli(limit):
    """Deliver pending outbox rows, oldest first."""
    counts = notification_service.dispatch_pending(limit=limit)
    click.echo(f"Sent {counts['sent']}, retrying {counts['retrying']}, failed {counts['failed']}.")


@notifications_group.command('retry-failed')
@with_appcontext
def retry_failed_cli():
    """Requeue failed rows with a fresh attempt budget."""
    count = notification_service.retry_failed()
    click.echo(f"Requeued {count} notification(s).")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(notifications_group)
