"""
Dump orchestrator - runs one incremental dump cycle.

Workflow:
1. Take the run lock (if enabled)
2. Compare the source high-water value with the stored watermark
3. Run the dump command, capturing its output into a timestamped file
4. Persist the new watermark
5. Apply the retention policy to the backup directory
6. Log a summary of the run
"""

import os
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from dumpkeeper.utils.eventlog import EventLogger, DatabaseEventLog
from dumpkeeper.utils.lockfile import RunLock
from .settings import DumpSettings, ConfigurationError, load_settings
from .datasource import HighWaterSource, DataSourceError
from .watermark import WatermarkStore
from .capture import ProcessCapture, CaptureResult, LaunchError, OutputWriteError
from .retention import RetentionManager


DATETIME_TOKEN = '{DateTime}'
DATETIME_FORMAT = '%Y%m%d_%H%M%S'


class DumpCommandError(Exception):
    """Raised when the dump command ran but its exit violates the configured policy."""
    pass


class RunState(Enum):
    IDLE = 'idle'
    DECIDING = 'deciding'
    DUMPING = 'dumping'
    UPDATING_WATERMARK = 'updating_watermark'
    ROTATING = 'rotating'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class DumpResult:
    lines_written: int
    bytes_written: int
    output_path: str


@dataclass
class RunReport:
    state: RunState = RunState.IDLE
    outcome: Optional[str] = None  # dumped, no_new_records, busy, failed
    high_water: Optional[int] = None
    last_watermark: Optional[int] = None
    result: Optional[DumpResult] = None
    watermark_updated: bool = False
    retention: Optional[Dict[str, Any]] = None
    elapsed_seconds: float = 0.0
    error: Optional[str] = None
    history: list = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE


def resolve_output_path(template: str, backup_directory: str, now: Optional[datetime] = None) -> str:
    """
    Expand the {DateTime} token and place relative names in the backup directory.

    Args:
        template: Output file template, e.g. 'dump_{DateTime}.sql'
        backup_directory: Directory relative templates resolve against
        now: Timestamp to expand (default: datetime.now())

    Returns:
        Full output file path
    """
    now = now or datetime.now()
    name = template.replace(DATETIME_TOKEN, now.strftime(DATETIME_FORMAT))
    return os.path.join(backup_directory, name)


def format_elapsed(seconds: float) -> str:
    """Format seconds as minutes:seconds.milliseconds (e.g. 2:05.120)."""
    millis = int(round(seconds * 1000))
    minutes, millis = divmod(millis, 60000)
    secs, millis = divmod(millis, 1000)
    return f"{minutes}:{secs:02d}.{millis:03d}"


class DumpOrchestrator:
    """
    Orchestrates one dump run.

    Collaborators are injected so a run can be assembled from settings by
    build_orchestrator() or from test doubles.
    """

    def __init__(
        self,
        settings: DumpSettings,
        high_water_source: HighWaterSource,
        watermark_store: WatermarkStore,
        capture: ProcessCapture,
        retention: RetentionManager,
        log: Optional[EventLogger] = None
    ):
        self.settings = settings
        self.high_water_source = high_water_source
        self.watermark_store = watermark_store
        self.capture = capture
        self.retention = retention
        self.log = log or EventLogger()
        self.report = RunReport()
        self.output_path = None

    def execute(self) -> RunReport:
        """
        Execute one dump run.

        Returns:
            RunReport describing the final state. A run never raises for
            dump, watermark or retention failures; those end in FAILED or
            are recorded in the report.
        """
        started = time.monotonic()
        self._transition(RunState.IDLE)

        lock = None
        if self.settings.lock_enabled:
            lock = RunLock(self.settings.backup_directory, self.settings.lock_stale_seconds)
            try:
                acquired = lock.acquire()
            except OSError as e:
                self._fail(e, "Could not create run lock")
                self.report.elapsed_seconds = time.monotonic() - started
                return self.report
            if not acquired:
                self.log.log_message(
                    f"Another dump run holds the lock (pid {lock.holder_pid()}). Skipping this run.",
                    logging.WARNING
                )
                self.report.outcome = 'busy'
                self._transition(RunState.DONE)
                self.report.elapsed_seconds = time.monotonic() - started
                return self.report

        try:
            self._execute_workflow()
        except (LaunchError, OutputWriteError, DumpCommandError, DataSourceError) as e:
            self._fail(e, "Dump run aborted")
            self._remove_partial_output()
        finally:
            if lock is not None:
                lock.release()
            self.report.elapsed_seconds = time.monotonic() - started

        if self.report.state == RunState.DONE:
            self._log_summary()

        return self.report

    def _execute_workflow(self):
        # Step 1: Decide
        self._transition(RunState.DECIDING)
        if self.settings.strict_data_source:
            high_water = self.high_water_source.fetch()
        else:
            high_water = self.high_water_source.current_high_water()
        last_watermark = self.watermark_store.read(self.settings.watermark_path)
        self.report.high_water = high_water
        self.report.last_watermark = last_watermark

        if high_water <= last_watermark:
            self.log.log_message(
                f"No new records since last dump (high-water {high_water}, watermark {last_watermark}). Nothing to do."
            )
            self.report.outcome = 'no_new_records'
            self._transition(RunState.DONE)
            return

        self.log.log_message(
            f"New records found (high-water {high_water}, watermark {last_watermark}). Starting dump."
        )

        # Step 2: Dump
        self._transition(RunState.DUMPING)
        self.report.result = self._dump()

        # Step 3: Persist watermark
        self._transition(RunState.UPDATING_WATERMARK)
        self.report.watermark_updated = self.watermark_store.write(self.settings.watermark_path, high_water)

        # Step 4: Rotate
        self._transition(RunState.ROTATING)
        try:
            self.report.retention = self.retention.apply(
                self.settings.backup_directory,
                self.settings.backup_file_mask,
                self.settings.retention
            )
        except OSError as e:
            self.log.log_exception(e, "Retention pass failed")
            self.report.retention = {'matched': 0, 'deleted': [], 'errors': [str(e)]}

        self.report.outcome = 'dumped'
        self._transition(RunState.DONE)

    def _dump(self) -> DumpResult:
        """
        Run the dump command into a fresh output file.

        Raises:
            LaunchError, OutputWriteError: From the capture
            DumpCommandError: If exit code or timeout policy is violated
        """
        settings = self.settings
        try:
            os.makedirs(settings.backup_directory, exist_ok=True)
        except OSError as e:
            raise OutputWriteError(f"Cannot create backup directory '{settings.backup_directory}': {e}") from e

        output_path = resolve_output_path(settings.output_template, settings.backup_directory)
        if os.path.exists(output_path):
            self.log.log_message(f"Removing existing file '{output_path}' before dump")
            try:
                os.remove(output_path)
            except OSError as e:
                raise OutputWriteError(f"Cannot remove stale output file '{output_path}': {e}") from e

        # Set only once the file at this path is ours to clean up
        self.output_path = output_path

        self.log.log_message(
            f"Running '{settings.command_path} {settings.masked_arguments}' "
            f"(timeout {settings.timeout_seconds}s)"
        )
        capture = self.capture.run(
            settings.command_path,
            settings.command_arguments,
            self.output_path,
            settings.timeout_seconds
        )
        self._check_exit(capture)

        if capture.lines_written == 0:
            self.log.log_message(f"Dump command produced no output for '{self.output_path}'", logging.WARNING)

        return DumpResult(
            lines_written=capture.lines_written,
            bytes_written=capture.bytes_written,
            output_path=self.output_path
        )

    def _check_exit(self, capture: CaptureResult):
        if capture.timed_out:
            message = f"Dump command did not finish within {self.settings.timeout_seconds}s"
            if self.settings.fail_on_timeout:
                raise DumpCommandError(message)
            if capture.exit_code is None:
                message = f"{message}; pid {capture.pid} left running"
            self.log.log_message(f"{message}; keeping partial output", logging.WARNING)
        elif capture.exit_code not in (0, None):
            message = f"Dump command exited with code {capture.exit_code}"
            if self.settings.fail_on_nonzero_exit:
                raise DumpCommandError(message)
            self.log.log_message(message, logging.WARNING)

    def _remove_partial_output(self):
        if self.output_path and os.path.exists(self.output_path):
            try:
                os.remove(self.output_path)
                self.log.log_message(f"Removed partial output file '{self.output_path}'")
            except OSError as e:
                self.log.log_message(f"Failed to remove partial output file '{self.output_path}': {e}", logging.WARNING)

    def _fail(self, exc: Exception, context: str):
        self.report.outcome = 'failed'
        self.report.error = str(exc)
        self.log.log_exception(exc, f"{context} in state {self.report.state.value}")
        self._transition(RunState.FAILED)

    def _transition(self, state: RunState):
        self.report.state = state
        self.report.history.append(state)

    def _log_summary(self):
        report = self.report
        elapsed = format_elapsed(report.elapsed_seconds)

        if report.outcome != 'dumped':
            self.log.log_message(f"Dump run finished ({report.outcome}) in {elapsed}.")
            return

        retention = report.retention or {'deleted': [], 'errors': []}
        self.log.log_message(
            f"Dump attempt completed.\n"
            f"File written to '{report.result.output_path}'.\n"
            f"Lines written: {report.result.lines_written}\n"
            f"Bytes written: {report.result.bytes_written}\n"
            f"Watermark: {report.last_watermark} -> {report.high_water}"
            f"{'' if report.watermark_updated else ' (not saved)'}\n"
            f"Elapsed: {elapsed}\n"
            f"Retention: {len(retention['deleted'])} deleted, {len(retention['errors'])} failed"
        )


def build_orchestrator(settings: DumpSettings, log: Optional[EventLogger] = None) -> DumpOrchestrator:
    """
    Assemble a DumpOrchestrator from settings.

    Args:
        settings: Validated dump settings
        log: Event logger shared by all components

    Returns:
        Ready-to-run DumpOrchestrator
    """
    log = log or EventLogger()
    return DumpOrchestrator(
        settings=settings,
        high_water_source=HighWaterSource(settings.source_url, settings.high_water_query, log=log),
        watermark_store=WatermarkStore(log=log),
        capture=ProcessCapture(kill_on_timeout=settings.kill_on_timeout, log=log),
        retention=RetentionManager(log=log, protected_names=[settings.watermark_file]),
        log=log
    )


def execute_dump(settings: DumpSettings, log: Optional[EventLogger] = None) -> RunReport:
    """
    Execute one dump run for the given settings.

    Args:
        settings: Validated dump settings
        log: Event logger

    Returns:
        RunReport of the run
    """
    return build_orchestrator(settings, log).execute()


def execute_configured_dump() -> RunReport:
    """
    Execute one dump run using the current Flask app's configuration.

    Must be called inside an app context. Entries go to the database event log.

    Returns:
        RunReport of the run

    Raises:
        ConfigurationError: If the dump settings are missing or invalid
    """
    from flask import current_app

    log = DatabaseEventLog()
    try:
        settings = load_settings(current_app.config)
    except ConfigurationError as e:
        log.log_exception(e, "Invalid dump configuration")
        raise

    return execute_dump(settings, log)
