"""
High-water value lookup against the source database.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, text

from dumpkeeper.utils.eventlog import EventLogger


class DataSourceError(Exception):
    """Raised when the high-water value cannot be determined."""
    pass


class HighWaterSource:
    """
    Runs a single scalar query returning the highest record id in the source.
    """

    def __init__(self, url: str, query: str, log: Optional[EventLogger] = None):
        """
        Args:
            url: SQLAlchemy database URL of the source
            query: SQL returning one integer (e.g. SELECT MAX(id) FROM events)
            log: Event logger
        """
        self.url = url
        self.query = query
        self.log = log or EventLogger()

    def fetch(self) -> int:
        """
        Query the current high-water value.

        Returns:
            Highest record id, 0 if the source holds no records

        Raises:
            DataSourceError: On connection, authorization, query or
                conversion failure
        """
        engine = None
        try:
            engine = create_engine(self.url)
            with engine.connect() as connection:
                value = connection.execute(text(self.query)).scalar()
        except Exception as e:
            # Drivers can raise outside the SQLAlchemyError hierarchy
            raise DataSourceError(f"High-water query failed: {e}") from e
        finally:
            if engine is not None:
                engine.dispose()

        if value is None:
            return 0

        try:
            return int(value)
        except (TypeError, ValueError, OverflowError) as e:
            raise DataSourceError(f"High-water value {value!r} is not an integer") from e

    def current_high_water(self) -> int:
        """
        Query the high-water value, substituting 0 on failure.

        Returns:
            Highest record id, or 0 if it could not be determined
        """
        try:
            return self.fetch()
        except DataSourceError as e:
            self.log.log_message(f"{e}. Using 0.", logging.WARNING)
            return 0
