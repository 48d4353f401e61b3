"""
Event log channel shared by the dump components.

Components receive an EventLogger instance instead of reaching for a global
logger. The base class writes through the standard logging module; the
database variant also records each entry in the event_log table so that the
status API can show what the last runs did.
"""

import logging
import traceback
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError


MAX_MESSAGE_LENGTH = 32766


def truncate_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut a message down to the event log's maximum entry length."""
    return message[:limit]


class EventLogger:
    """
    Logger interface injected into every dump component.
    """

    def __init__(self, source: str = 'dumpkeeper'):
        self.source = source
        self.logger = logging.getLogger(source)

    def log_message(self, message: str, level: int = logging.INFO):
        """
        Record a diagnostic or summary message.

        Args:
            message: Free-text message, truncated to MAX_MESSAGE_LENGTH
            level: Logging level
        """
        text = truncate_message(message)
        self.logger.log(level, text)
        self._record(level, text)

    def log_exception(self, exc: BaseException, context: Optional[str] = None):
        """
        Record an exception with its traceback.

        Args:
            exc: The exception to record
            context: Optional description of what was being attempted
        """
        headline = f"{context}: {exc}" if context else str(exc)
        detail = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        text = truncate_message(f"{headline}\n{detail}".rstrip())
        self.logger.error(truncate_message(headline), exc_info=exc)
        self._record(logging.ERROR, text)

    def _record(self, level: int, message: str):
        """Hook for subclasses that persist entries. Base logger keeps nothing."""
        pass


class DatabaseEventLog(EventLogger):
    """
    EventLogger that also stores entries in the event_log table.

    Must be used inside a Flask app context.
    """

    def _record(self, level: int, message: str):
        from dumpkeeper import db
        from dumpkeeper.models import EventLogEntry

        try:
            db.session.add(EventLogEntry(
                level=logging.getLevelName(level),
                source=self.source,
                message=message
            ))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            self.logger.warning(f"Failed to record event log entry: {e}")
