"""
Shared pytest fixtures for dumpkeeper tests.

This module provides fixtures for:
- Flask app, test client and CLI runner
- Database setup with in-memory SQLite
- A backup directory and a fake dump command
- A SQLite source database for high-water queries
- Dump settings and an event logger that records messages
"""

import sys
import shlex
import sqlite3
import textwrap
from unittest.mock import MagicMock, patch

import pytest

from dumpkeeper import create_app, db as _db
from dumpkeeper.config import TestingConfig
from dumpkeeper.dump.settings import DumpSettings, RetentionPolicy
from dumpkeeper.utils.eventlog import EventLogger


class RecordingEventLog(EventLogger):
    """EventLogger that keeps every recorded message for assertions."""

    def __init__(self):
        super().__init__('dumpkeeper.test')
        self.messages = []

    def _record(self, level, message):
        self.messages.append(message)

    def contains(self, text):
        return any(text.lower() in message.lower() for message in self.messages)


def write_dump_script(directory, lines, exit_code=0, sleep_seconds=0, name='fake_dump.py'):
    """
    Write a python script that prints lines like a dump tool would.

    Returns:
        Argument string that runs the script with sys.executable
    """
    script = directory / name
    script.write_text(textwrap.dedent(f"""
        import sys, time
        for line in {list(lines)!r}:
            sys.stdout.write(line + '\\n')
        sys.stdout.flush()
        time.sleep({sleep_seconds})
        sys.exit({exit_code})
    """))
    return shlex.quote(str(script))


@pytest.fixture
def event_log():
    """Event logger capturing messages in memory."""
    return RecordingEventLog()


@pytest.fixture
def backup_dir(tmp_path):
    """Empty backup directory."""
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def dump_lines():
    """Three dump lines totalling 42 bytes."""
    return ['SET NAMES utf8;', 'INSERT INTO t VALUES (1);', '--']


@pytest.fixture
def dump_script(tmp_path):
    """Factory writing fake dump scripts; returns the argument string."""
    def make(lines, exit_code=0, sleep_seconds=0, name='custom_dump.py'):
        return write_dump_script(tmp_path, lines, exit_code, sleep_seconds, name)
    return make


@pytest.fixture
def dump_arguments(tmp_path, dump_lines):
    """Argument string for a fake dump command emitting dump_lines."""
    return write_dump_script(tmp_path, dump_lines)


@pytest.fixture
def source_db(tmp_path):
    """
    SQLite source database with an events table.

    Returns:
        (url, insert) where insert(n) adds rows with ids 1..n
    """
    path = tmp_path / 'source.db'
    connection = sqlite3.connect(str(path))
    connection.execute('CREATE TABLE events (id INTEGER PRIMARY KEY, payload TEXT)')
    connection.commit()
    connection.close()

    def insert(count):
        conn = sqlite3.connect(str(path))
        conn.executemany(
            'INSERT OR IGNORE INTO events (id, payload) VALUES (?, ?)',
            [(i, f'row {i}') for i in range(1, count + 1)]
        )
        conn.commit()
        conn.close()

    return f'sqlite:///{path}', insert


@pytest.fixture
def settings(backup_dir, dump_arguments, source_db):
    """Dump settings running the fake dump command."""
    url, _ = source_db
    return DumpSettings(
        command_path=sys.executable,
        command_arguments=dump_arguments,
        output_template='dump_{DateTime}.sql',
        backup_directory=str(backup_dir),
        backup_file_mask='dump_*.sql',
        retention=RetentionPolicy(mode='count', value=5),
        watermark_file='last_dumped_id.txt',
        source_url=url,
        high_water_query='SELECT MAX(id) FROM events',
        timeout_seconds=30
    )


@pytest.fixture
def dump_config(backup_dir, dump_arguments, source_db):
    """DUMP_* configuration keys for the Flask app."""
    url, _ = source_db
    return {
        'DUMP_COMMAND_PATH': sys.executable,
        'DUMP_COMMAND_ARGUMENTS': dump_arguments,
        'DUMP_OUTPUT_FILE': 'dump_{DateTime}.sql',
        'DUMP_BACKUP_DIRECTORY': str(backup_dir),
        'DUMP_BACKUP_FILE_MASK': 'dump_*.sql',
        'DUMP_RETENTION_MODE': 'count',
        'DUMP_RETENTION_VALUE': '5',
        'DUMP_WATERMARK_FILE': 'last_dumped_id.txt',
        'DUMP_SOURCE_URL': url,
        'DUMP_HIGH_WATER_QUERY': 'SELECT MAX(id) FROM events',
        'DUMP_TIMEOUT_SECONDS': '30',
    }


@pytest.fixture(scope='function')
def app(tmp_path, monkeypatch):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    monkeypatch.setattr(TestingConfig, 'DATA_DIR', str(tmp_path / 'data'))
    monkeypatch.setattr(TestingConfig, 'LOG_DIR', str(tmp_path / 'data' / 'logs'))

    app = create_app('testing')

    yield app


@pytest.fixture(scope='function')
def configured_app(app, dump_config):
    """Flask app with a complete dump configuration."""
    app.config.update(dump_config)
    return app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('dumpkeeper.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
