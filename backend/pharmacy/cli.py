# Overview: Flask CLI command groups for database targets and replication.

# backend/pharmacy/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Database targets:
# - python -m flask dbtargets health
#   Probe every configured target (primary, cloud, local, replica).
# - python -m flask dbtargets stats
#   Show pool status and limits per target.
# - python -m flask dbtargets init-schema
#   Create missing tables on primary, cloud and local. Never touches the replica.
#
# Replication (requires SYNC_ENABLED=true):
# - python -m flask sync run
#   Run one full-replace cycle now and print the per-target result.
# - python -m flask sync status
#   Show whether sync is enabled and the last cycle's report.
# - python -m flask sync start
#   Run the timer loop in the foreground until Ctrl-C.

import click
from flask.cli import with_appcontext

from .db_router import get_router
from .errors import DatabaseTargetError, SyncDisabledError
from .services.replication_service import get_synchronizer


@click.group('dbtargets')
def dbtargets_group():
    """Database target inspection and schema commands."""


@dbtargets_group.command('health')
@with_appcontext
def dbtargets_health():
    """Probe each configured database target."""
    results = get_router().health_check()
    for name, ok in results.items():
        click.echo(f"{'PASS' if ok else 'FAIL'} {name}")
    if not all(results.values()):
        raise SystemExit(1)


@dbtargets_group.command('stats')
@with_appcontext
def dbtargets_stats():
    """Show connection pool status for each target."""
    for name, info in get_router().stats().items():
        click.echo(
            f"{name}: {info['pool']} "
            f"(max_open={info['max_open']}, max_idle={info['max_idle']}, "
            f"max_lifetime={info['max_lifetime_seconds']}s)"
        )


@dbtargets_group.command('init-schema')
@with_appcontext
def dbtargets_init_schema():
    """Create missing tables on primary, cloud and local."""
    try:
        get_router().prepare_schemas()
    except DatabaseTargetError as exc:
        raise click.ClickException(exc.message)
    click.echo("PASS Schema ready on: " + ", ".join(
        t.value for t in get_router().configured_targets() if t.value != "replica"
    ))


@click.group('sync')
def sync_group():
    """Primary -> secondary replication commands."""


@sync_group.command('run')
@with_appcontext
def sync_run():
    """Run one replication cycle now."""
    try:
        report = get_synchronizer().sync_data()
    except SyncDisabledError as exc:
        raise click.ClickException(exc.message)
    except DatabaseTargetError as exc:
        raise click.ClickException(exc.message)

    if not report.results:
        click.echo("No secondary databases configured.")
        return
    for result in report.results:
        if result.success:
            click.echo(f"PASS {result.target}: {result.tables} tables, {result.rows} rows")
        else:
            click.echo(f"FAIL {result.target}: {result.error}")
    if not report.success:
        raise SystemExit(1)


@sync_group.command('status')
@with_appcontext
def sync_status():
    """Show replication settings and the last report."""
    sync = get_synchronizer()
    click.echo(f"enabled: {sync.enabled}")
    click.echo(f"interval: {sync.interval_seconds}s")
    click.echo(f"running: {sync.is_running}")
    report = sync.last_report
    if report is None:
        click.echo("last sync: never")
        return
    click.echo(f"last sync: {report.to_dict()['finished_at']} ({'ok' if report.success else 'failed'})")
    for result in report.results:
        click.echo(f"  {result.target}: {'ok' if result.success else result.error}")


@sync_group.command('start')
@with_appcontext
def sync_start():
    """Run the sync timer loop in the foreground."""
    sync = get_synchronizer()
    if not sync.enabled:
        raise click.ClickException("sync is not enabled")
    click.echo(f"Syncing every {sync.interval_seconds}s. Press Ctrl-C to stop.")
    try:
        sync.run_forever()
    except KeyboardInterrupt:
        sync.stop()
        click.echo("Stopped.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(dbtargets_group)
    app.cli.add_command(sync_group)
