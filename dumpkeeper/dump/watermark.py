"""
Watermark persistence.

The watermark is the highest source record id already captured by a
successful dump. It is stored as decimal text in a small file next to the
backups and is the only state carried between runs.
"""

import os
import logging
import tempfile
from typing import Optional

from dumpkeeper.utils.eventlog import EventLogger


class WatermarkPersistError(Exception):
    """Raised when the watermark file cannot be written."""
    pass


class WatermarkStore:
    """
    Reads and writes the watermark file.

    Neither operation raises: a watermark that cannot be read counts as 0 and
    a watermark that cannot be written only risks a redundant dump next run.
    """

    def __init__(self, log: Optional[EventLogger] = None):
        self.log = log or EventLogger()

    def read(self, path: str) -> int:
        """
        Read the watermark.

        Args:
            path: Watermark file path

        Returns:
            Stored watermark, or 0 if the file is missing, unreadable or not
            a non-negative integer
        """
        if not os.path.exists(path):
            self.log.log_message(f"Watermark file '{path}' not found. Using 0.")
            return 0

        try:
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read().strip()
        except (OSError, UnicodeDecodeError) as e:
            self.log.log_message(f"Failed to read watermark file '{path}': {e}. Using 0.", logging.WARNING)
            return 0

        if not (content.isascii() and content.isdigit()):
            self.log.log_message(
                f"Watermark file '{path}' content {content[:40]!r} is not a non-negative integer. Using 0.",
                logging.WARNING
            )
            return 0

        try:
            return int(content)
        except ValueError as e:
            # Digit strings beyond the interpreter's int conversion limit
            self.log.log_message(f"Watermark file '{path}' value could not be converted: {e}. Using 0.", logging.WARNING)
            return 0

    def write(self, path: str, value: int) -> bool:
        """
        Overwrite the watermark.

        Args:
            path: Watermark file path
            value: New watermark

        Returns:
            True if written, False if the write failed (the previous value is
            left on disk)
        """
        try:
            self._persist(path, value)
        except WatermarkPersistError as e:
            self.log.log_exception(e, "Watermark not updated")
            return False

        self.log.log_message(f"Watermark updated to {value}")
        return True

    def _persist(self, path: str, value: int):
        """
        Write value to a temporary file and move it over the watermark.

        Raises:
            WatermarkPersistError: If any file operation fails
        """
        directory = os.path.dirname(os.path.abspath(path))
        temp_path = None
        try:
            fd, temp_path = tempfile.mkstemp(prefix='.watermark_', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(str(int(value)))
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
            raise WatermarkPersistError(f"Failed to write watermark file '{path}': {e}") from e
