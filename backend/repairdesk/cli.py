# Overview: Flask CLI command groups for bootstrap, scheduled estimate jobs and ledger checks.

# backend/repairdesk/cli.py
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
# Locations:
# - python -m flask locations create --name "Berlin Mitte" --code "BER"
#   Create a repair shop branch.
# - python -m flask locations list
#
# Cost estimates (run from cron/scheduler):
# - python -m flask estimates send-reminders [--as-of 2026-05-01T08:00]
#   Remind customers about open estimates expiring within the reminder window.
# - python -m flask estimates expire [--as-of 2026-05-01T08:00]
#   Mark undecided estimates past their validity as EXPIRED.
#
# Stock ledger:
# - python -m flask ledger verify [--part-id 12]
#   Check on_hand == sum(movements) for every part. Exits 1 on mismatch.

import click
from flask.cli import with_appcontext

from .errors import WorkflowError
from .extensions import db
from .services import estimate_service, ledger_service, location_service
from .time_utils import parse_iso_datetime


def _parse_as_of(value):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO-8601 datetime", param_hint="--as-of")


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

    click.echo("PASS Database reset complete")


@click.group('locations')
def locations_group():
    """Repair shop branch management."""


@locations_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--code', prompt=True, help='Unique short code')
@with_appcontext
def create_location_cmd(name, code):
    try:
        location = location_service.create_location(name, code)
    except WorkflowError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created location: {location.name} (ID: {location.id}, Code: {location.code})")


@locations_group.command('list')
@with_appcontext
def list_locations_cmd():
    locations = location_service.list_locations()
    if not locations:
        click.echo("No locations found.")
        return

    click.echo(f"{'ID':<6} {'Code':<10} Name")
    click.echo("-" * 40)
    for loc in locations:
        click.echo(f"{loc.id:<6} {loc.code:<10} {loc.name}")


@click.group('estimates')
def estimates_group():
    """Scheduled cost estimate jobs."""


@estimates_group.command('send-reminders')
@click.option('--as-of', 'as_of', default=None, help='Reference time (ISO-8601, UTC). Defaults to now.')
@with_appcontext
def send_reminders_cmd(as_of):
    reminded = estimate_service.send_due_reminders(_parse_as_of(as_of))
    for est in reminded:
        click.echo(f"  order {est.order_id} v{est.version_number} (valid until {est.valid_until.isoformat()})")
    click.echo(f"PASS Sent {len(reminded)} reminder(s)")


@estimates_group.command('expire')
@click.option('--as-of', 'as_of', default=None, help='Reference time (ISO-8601, UTC). Defaults to now.')
@with_appcontext
def expire_cmd(as_of):
    expired = estimate_service.expire_overdue(_parse_as_of(as_of))
    for est in expired:
        click.echo(f"  order {est.order_id} v{est.version_number}")
    click.echo(f"PASS Expired {len(expired)} estimate(s)")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection."""


@ledger_group.command('verify')
@click.option('--part-id', type=int, default=None, help='Check a single part')
@with_appcontext
def verify_ledger_cmd(part_id):
    discrepancies = ledger_service.verify_ledger(part_id)
    if not discrepancies:
        click.echo("PASS Ledger consistent")
        return

    click.echo(f"FAIL {len(discrepancies)} part(s) out of balance:")
    for row in discrepancies:
        click.echo(
            f"  part {row['part_id']} ({row['sku']}): on_hand={row['on_hand']} "
            f"ledger={row['ledger_total']} diff={row['difference']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(estimates_group)
    app.cli.add_command(ledger_group)
