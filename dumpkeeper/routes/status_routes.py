"""
Status routes - watermark, event log and manual trigger endpoints.
"""

import os

from flask import Blueprint, jsonify, request, current_app

from dumpkeeper.models import EventLogEntry
from dumpkeeper.dump.settings import ConfigurationError, load_settings
from dumpkeeper.dump.watermark import WatermarkStore
from dumpkeeper.dump.retention import RetentionManager
from dumpkeeper.scheduler import get_scheduled_jobs, is_scheduler_running, trigger_dump_now


bp = Blueprint('status', __name__, url_prefix='/api')

VALID_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


def _entry_to_dict(entry: EventLogEntry) -> dict:
    return {
        'id': entry.id,
        'created_at': entry.created_at.isoformat(),
        'level': entry.level,
        'source': entry.source,
        'message': entry.message
    }


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get dump status overview.

    Returns:
        JSON with:
        - configured: Whether dump settings are valid
        - watermark: Stored watermark value
        - backups: Number and total size of matching backup files
        - last_event: Most recent event log entry
        - scheduler_status: Scheduler running status
    """
    try:
        settings = load_settings(current_app.config)
    except ConfigurationError as e:
        return jsonify({
            'configured': False,
            'error': str(e),
            'scheduler_status': 'running' if is_scheduler_running() else 'stopped'
        })

    # Default EventLogger: status reads do not add event log entries
    watermark = WatermarkStore().read(settings.watermark_path)
    backups = RetentionManager(protected_names=[settings.watermark_file]).list_backups(
        settings.backup_directory, settings.backup_file_mask
    )
    newest = max(backups, key=lambda b: b.modified) if backups else None

    last_event = EventLogEntry.query.order_by(EventLogEntry.id.desc()).first()

    return jsonify({
        'configured': True,
        'watermark': watermark,
        'retention': settings.retention.describe(),
        'backups': {
            'count': len(backups),
            'total_size_bytes': sum(b.size for b in backups),
            'newest': {
                'name': os.path.basename(newest.path),
                'modified': newest.modified.isoformat(),
                'size_bytes': newest.size
            } if newest else None
        },
        'last_event': _entry_to_dict(last_event) if last_event else None,
        'scheduler_status': 'running' if is_scheduler_running() else 'stopped',
        'scheduled_jobs': get_scheduled_jobs()
    })


@bp.route('/events', methods=['GET'])
def list_events():
    """
    Get event log entries, newest first.

    Query params:
        - level: Filter by level (DEBUG/INFO/WARNING/ERROR)
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with entries and metadata
    """
    level_filter = request.args.get('level')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    # Enforce limits
    if limit > 200:
        limit = 200
    if limit < 1:
        limit = 1
    if offset < 0:
        offset = 0

    query = EventLogEntry.query

    if level_filter:
        level_filter = level_filter.upper()
        if level_filter not in VALID_LEVELS:
            return jsonify({'error': 'Invalid level filter'}), 400
        query = query.filter(EventLogEntry.level == level_filter)

    total_count = query.count()

    entries = query.order_by(EventLogEntry.id.desc()).limit(limit).offset(offset).all()

    return jsonify({
        'records': [_entry_to_dict(entry) for entry in entries],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/dump/run', methods=['POST'])
def run_dump_now():
    """
    Queue an immediate dump run on the scheduler.

    Returns:
        202 with the one-time job id, or 503 if the scheduler is not running
    """
    if not is_scheduler_running():
        return jsonify({'error': 'Scheduler is not running in this process'}), 503

    job_id = trigger_dump_now()
    return jsonify({'message': 'Dump queued', 'job_id': job_id}), 202

