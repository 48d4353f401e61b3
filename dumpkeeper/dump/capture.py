"""
Subprocess capture for dump commands.

Runs the dump tool with its standard output piped, writes each line to the
output file as it arrives and tallies lines and bytes. Reading happens on a
background thread that hands complete lines to a callback; the calling
thread only waits for the process, bounded by a timeout.
"""

import os
import shlex
import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from dumpkeeper.utils.eventlog import EventLogger


# How long to wait for the reader to see EOF after the process has exited.
# A process left running after a timeout keeps its reader thread and stdout
# pipe until it exits; CaptureResult.pid identifies it.
READER_DRAIN_SECONDS = 30


class LaunchError(Exception):
    """Raised when the dump command cannot be started."""
    pass


class OutputWriteError(Exception):
    """Raised when captured output cannot be written to the output file."""
    pass


@dataclass
class CaptureResult:
    lines_written: int
    bytes_written: int
    exit_code: Optional[int]
    timed_out: bool
    pid: Optional[int] = None


def split_arguments(arguments: str) -> List[str]:
    """Split an argument string the way the platform shell would quote it."""
    return shlex.split(arguments or '', posix=(os.name != 'nt'))


def _strip_terminator(raw: bytes) -> bytes:
    if raw.endswith(b'\n'):
        raw = raw[:-1]
    if raw.endswith(b'\r'):
        raw = raw[:-1]
    return raw


def _pump(stream, on_line: Callable[[bytes], None]):
    """Deliver complete lines from stream to on_line until EOF."""
    try:
        for raw in iter(stream.readline, b''):
            on_line(raw)
    finally:
        stream.close()


def _close_output(output, state: dict):
    """Flush, sync and close the output file, recording the first failure in state."""
    try:
        output.flush()
        os.fsync(output.fileno())
    except OSError as e:
        if state['error'] is None:
            state['error'] = e
    # close() retries a failed flush; the raw file is closed either way
    try:
        output.close()
    except OSError as e:
        if state['error'] is None:
            state['error'] = e


class ProcessCapture:
    """
    Runs an external command and captures its stdout into a file.
    """

    def __init__(self, kill_on_timeout: bool = False, log: Optional[EventLogger] = None):
        """
        Args:
            kill_on_timeout: Kill the process when the timeout expires instead
                of leaving it running
            log: Event logger
        """
        self.kill_on_timeout = kill_on_timeout
        self.log = log or EventLogger()

    def run(self, command_path: str, arguments: str, output_path: str, timeout: float) -> CaptureResult:
        """
        Run the command and append its output to output_path.

        Args:
            command_path: Executable to run
            arguments: Argument string, split with shell quoting rules
            output_path: File to append captured lines to (created if needed)
            timeout: Maximum seconds to wait for the process to exit

        Returns:
            CaptureResult with the counts written so far

        Raises:
            LaunchError: If the command cannot be started
            OutputWriteError: If the output file cannot be opened or written
        """
        try:
            output = open(output_path, 'ab')
        except OSError as e:
            raise OutputWriteError(f"Cannot open output file '{output_path}': {e}") from e

        # Per-invocation state shared with the reader thread
        counts = {'lines': 0, 'bytes': 0}
        state = {'error': None, 'detached': False}
        lock = threading.Lock()

        def on_line(raw: bytes):
            with lock:
                if state['detached'] or state['error'] is not None:
                    return
                line = _strip_terminator(raw)
                try:
                    output.write(line + b'\n')
                except OSError as e:
                    state['error'] = e
                    return
                counts['lines'] += 1
                counts['bytes'] += len(line)

        try:
            exit_code, timed_out, pid = self._run_process(command_path, arguments, output_path, timeout, on_line)
        finally:
            with lock:
                state['detached'] = True
                _close_output(output, state)

        if state['error'] is not None:
            raise OutputWriteError(
                f"Failed writing to output file '{output_path}': {state['error']}"
            ) from state['error']

        return CaptureResult(
            lines_written=counts['lines'],
            bytes_written=counts['bytes'],
            exit_code=exit_code,
            timed_out=timed_out,
            pid=pid
        )

    def _run_process(self, command_path, arguments, output_path, timeout, on_line):
        """
        Start the command, pump its stdout to on_line and wait for it.

        Returns:
            (exit_code or None, timed_out, pid)
        """
        command = [command_path] + split_arguments(arguments)
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                shell=False
            )
        except (OSError, ValueError) as e:
            raise LaunchError(f"Failed to start '{command_path}': {e}") from e

        self.log.log_message(f"Started '{command_path}' (pid {process.pid}), writing to '{output_path}'")

        reader = threading.Thread(
            target=_pump,
            args=(process.stdout, on_line),
            name=f'capture-{process.pid}',
            daemon=True
        )
        reader.start()

        timed_out = False
        try:
            exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            exit_code = None
            if self.kill_on_timeout:
                self.log.log_message(
                    f"Process {process.pid} still running after {timeout}s, killing it",
                    logging.WARNING
                )
                process.kill()
                exit_code = process.wait()
            else:
                self.log.log_message(
                    f"Process {process.pid} still running after {timeout}s, leaving it running",
                    logging.WARNING
                )

        if exit_code is not None:
            reader.join(READER_DRAIN_SECONDS)
            if reader.is_alive():
                self.log.log_message(
                    f"Output pipe of process {process.pid} still open after exit, detaching",
                    logging.WARNING
                )

        return exit_code, timed_out, process.pid
