"""
Command line interface.

    dumpkeeper dump run      Run one dump cycle
    dumpkeeper dump status   Show watermark, backups and lock state
    dumpkeeper dump prune    Apply the retention policy only
"""

import os
import sys

import click
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from dumpkeeper.dump.settings import ConfigurationError, load_settings
from dumpkeeper.dump.orchestrator import RunState, execute_configured_dump, format_elapsed
from dumpkeeper.dump.retention import RetentionManager
from dumpkeeper.dump.watermark import WatermarkStore
from dumpkeeper.utils.eventlog import DatabaseEventLog
from dumpkeeper.utils.lockfile import RunLock


dump_cli = AppGroup('dump', help='Incremental database dump commands.')


def _maybe_pause(pause):
    if pause or (pause is None and current_app.config.get('DEBUG', False)):
        click.pause('\n\nPress any key to exit.')


def _load_or_exit():
    try:
        return load_settings(current_app.config)
    except ConfigurationError as e:
        DatabaseEventLog().log_exception(e, "Invalid dump configuration")
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@dump_cli.command('run')
@click.option('--pause/--no-pause', default=None,
              help='Wait for a key press before exiting (default: on in DEBUG).')
def run_command(pause):
    """Run one dump cycle: check for new records, dump, rotate."""
    try:
        report = execute_configured_dump()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        _maybe_pause(pause)
        sys.exit(1)

    elapsed = format_elapsed(report.elapsed_seconds)
    if report.state == RunState.FAILED:
        click.echo(f"Dump failed after {elapsed}: {report.error}", err=True)
        _maybe_pause(pause)
        sys.exit(1)

    if report.outcome == 'dumped':
        retention = report.retention or {'deleted': [], 'errors': []}
        click.echo(f"Dump written to '{report.result.output_path}'.")
        click.echo(f"Lines written: {report.result.lines_written}")
        click.echo(f"Bytes written: {report.result.bytes_written}")
        click.echo(f"Retention: {len(retention['deleted'])} deleted, {len(retention['errors'])} failed")
    elif report.outcome == 'no_new_records':
        click.echo(f"No new records (high-water {report.high_water}, watermark {report.last_watermark}).")
    else:
        click.echo("Another dump run is in progress, skipped.")
    click.echo(f"Elapsed: {elapsed}")
    _maybe_pause(pause)


@dump_cli.command('status')
def status_command():
    """Show the stored watermark, matching backups and lock state."""
    settings = _load_or_exit()

    watermark = WatermarkStore().read(settings.watermark_path)
    backups = RetentionManager(protected_names=[settings.watermark_file]).list_backups(
        settings.backup_directory, settings.backup_file_mask
    )
    lock = RunLock(settings.backup_directory, settings.lock_stale_seconds)

    click.echo(f"Backup directory: {settings.backup_directory}")
    click.echo(f"Watermark:        {watermark}")
    click.echo(f"Retention:        {settings.retention.describe()}")
    click.echo(f"Backups:          {len(backups)} ({sum(b.size for b in backups)} bytes)")
    for backup in sorted(backups, key=lambda b: b.modified, reverse=True):
        click.echo(f"  {os.path.basename(backup.path)}  {backup.modified:%Y-%m-%d %H:%M:%S}  {backup.size}")
    if lock.path.exists():
        click.echo(f"Lock:             held by pid {lock.holder_pid()}")
    else:
        click.echo("Lock:             free")


@dump_cli.command('prune')
def prune_command():
    """Apply the retention policy without dumping."""
    settings = _load_or_exit()
    log = DatabaseEventLog()

    manager = RetentionManager(log=log, protected_names=[settings.watermark_file])
    summary = manager.apply(settings.backup_directory, settings.backup_file_mask, settings.retention)

    click.echo(f"Matched {summary['matched']}, deleted {len(summary['deleted'])}, failed {len(summary['errors'])}")


def main():
    """Console script entry point."""
    from dumpkeeper import create_app

    cli = FlaskGroup(create_app=create_app)
    cli.main()
