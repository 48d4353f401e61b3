"""
Unit tests for HTTP routes (dumpkeeper/routes/status_routes.py and /health).
"""

import os

import pytest

from dumpkeeper import scheduler as scheduler_module
from dumpkeeper.utils.eventlog import DatabaseEventLog


@pytest.fixture
def running_scheduler(mock_scheduler):
    mock_scheduler.running = True
    scheduler_module.scheduler = mock_scheduler
    yield mock_scheduler
    scheduler_module.scheduler = None


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestStatus:
    """Test GET /api/status."""

    def test_status_unconfigured(self, client):
        response = client.get('/api/status')

        data = response.get_json()
        assert response.status_code == 200
        assert data['configured'] is False
        assert 'DUMP_COMMAND_PATH' in data['error']
        assert data['scheduler_status'] == 'stopped'

    def test_status_configured(self, configured_app, client, backup_dir):
        (backup_dir / 'last_dumped_id.txt').write_text('150')
        (backup_dir / 'dump_1.sql').write_text('abc')
        newest = backup_dir / 'dump_2.sql'
        newest.write_text('defgh')
        os.utime(backup_dir / 'dump_1.sql', (1000000000, 1000000000))

        response = client.get('/api/status')

        data = response.get_json()
        assert data['configured'] is True
        assert data['watermark'] == 150
        assert data['retention'] == 'keep newest 5'
        assert data['backups']['count'] == 2
        assert data['backups']['total_size_bytes'] == 8
        assert data['backups']['newest']['name'] == 'dump_2.sql'
        assert data['scheduled_jobs'] == []

    def test_status_shows_last_event(self, configured_app, client, db):
        DatabaseEventLog().log_message('first')
        DatabaseEventLog().log_message('second')

        data = client.get('/api/status').get_json()

        assert data['last_event']['message'] == 'second'

    def test_status_empty_directory(self, configured_app, client):
        data = client.get('/api/status').get_json()

        assert data['watermark'] == 0
        assert data['backups']['count'] == 0
        assert data['backups']['newest'] is None
        assert data['last_event'] is None


class TestEvents:
    """Test GET /api/events."""

    @pytest.fixture
    def events(self, db):
        log = DatabaseEventLog()
        log.log_message('started')
        log.log_message('slow disk', 30)
        log.log_exception(RuntimeError('boom'), 'Dump run aborted')

    def test_list_events_newest_first(self, client, events):
        data = client.get('/api/events').get_json()

        assert data['total'] == 3
        assert [r['level'] for r in data['records']] == ['ERROR', 'WARNING', 'INFO']
        assert data['limit'] == 50
        assert data['offset'] == 0

    def test_filter_by_level(self, client, events):
        data = client.get('/api/events?level=warning').get_json()

        assert data['total'] == 1
        assert data['records'][0]['message'] == 'slow disk'

    def test_invalid_level(self, client, events):
        response = client.get('/api/events?level=LOUD')

        assert response.status_code == 400

    def test_pagination(self, client, events):
        data = client.get('/api/events?limit=1&offset=1').get_json()

        assert data['total'] == 3
        assert len(data['records']) == 1
        assert data['records'][0]['level'] == 'WARNING'

    @pytest.mark.parametrize('query,limit,offset', [
        ('limit=1000', 200, 0),
        ('limit=0', 1, 0),
        ('offset=-4', 50, 0),
    ])
    def test_limits_clamped(self, client, events, query, limit, offset):
        data = client.get(f'/api/events?{query}').get_json()

        assert data['limit'] == limit
        assert data['offset'] == offset


class TestManualRun:
    """Test POST /api/dump/run."""

    def test_run_without_scheduler(self, client):
        response = client.post('/api/dump/run')

        assert response.status_code == 503

    def test_run_queues_job(self, client, running_scheduler):
        response = client.post('/api/dump/run')

        data = response.get_json()
        assert response.status_code == 202
        assert data['job_id'].startswith('manual_')
        running_scheduler.add_job.assert_called_once()
