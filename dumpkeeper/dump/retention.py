"""
Retention policy enforcement for dump files.

Scans the backup directory for files matching the backup file mask and
deletes the ones that fall outside the configured policy: either everything
but the newest N files, or everything older than N days.
"""

import os
import logging
from dataclasses import dataclass
from datetime import datetime
from fnmatch import fnmatch
from typing import Any, Dict, Iterable, List, Optional

from dumpkeeper.dump.settings import RetentionPolicy
from dumpkeeper.utils.eventlog import EventLogger
from dumpkeeper.utils.lockfile import LOCK_FILE_NAME


SECONDS_PER_DAY = 86400


class RetentionDeleteError(Exception):
    """Raised when a backup file cannot be deleted."""
    pass


@dataclass(frozen=True)
class BackupFile:
    path: str
    modified: datetime
    created: datetime
    size: int


def _created_time(stat) -> datetime:
    # st_birthtime exists on macOS/BSD and Windows (3.12+); st_ctime otherwise
    return datetime.fromtimestamp(getattr(stat, 'st_birthtime', stat.st_ctime))


class RetentionManager:
    """
    Applies a retention policy to the dump files in a directory.

    Deletion is best effort: a file that cannot be removed is logged and the
    remaining files are still processed.
    """

    def __init__(self, log: Optional[EventLogger] = None, protected_names: Iterable[str] = ()):
        """
        Args:
            log: Event logger
            protected_names: File names never considered for deletion (the
                watermark file, for example)
        """
        self.log = log or EventLogger()
        self.protected_names = set(protected_names) | {LOCK_FILE_NAME}

    def list_backups(self, directory: str, name_mask: str) -> List[BackupFile]:
        """
        List files in directory whose name matches name_mask.

        Args:
            directory: Backup directory (not searched recursively)
            name_mask: Glob with * and ? wildcards

        Returns:
            BackupFile entries, read fresh from the file system
        """
        if not os.path.isdir(directory):
            return []

        backups = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name in self.protected_names:
                    continue
                if not fnmatch(entry.name, name_mask):
                    continue
                try:
                    if not entry.is_file():
                        continue
                    stat = entry.stat()
                except FileNotFoundError:
                    # Removed while scanning
                    continue
                backups.append(BackupFile(
                    path=entry.path,
                    modified=datetime.fromtimestamp(stat.st_mtime),
                    created=_created_time(stat),
                    size=stat.st_size
                ))
        return backups

    def select_expired(self, backups: List[BackupFile], policy: RetentionPolicy,
                       now: Optional[datetime] = None) -> List[BackupFile]:
        """
        Pick the files a policy would delete.

        Args:
            backups: Candidate files
            policy: Retention policy
            now: Reference time for the age policy (default: datetime.now())

        Returns:
            Files to delete
        """
        if policy.mode == 'count':
            # Newest first; equal times ordered by path
            ordered = sorted(backups, key=lambda b: b.path)
            ordered.sort(key=lambda b: b.modified, reverse=True)
            return ordered[policy.value:]

        if policy.mode == 'age':
            now = now or datetime.now()
            return [
                b for b in sorted(backups, key=lambda b: b.path)
                if (now - b.modified).total_seconds() / SECONDS_PER_DAY > policy.value
            ]

        raise ValueError(f"Invalid retention mode: {policy.mode}")

    def apply(self, directory: str, name_mask: str, policy: RetentionPolicy,
              now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Enforce a retention policy on a backup directory.

        Args:
            directory: Backup directory
            name_mask: Glob selecting the dump files
            policy: Retention policy
            now: Reference time for the age policy

        Returns:
            Dict with summary of cleanup:
            {
                'matched': int,
                'deleted': List[str],
                'errors': List[str]
            }
        """
        backups = self.list_backups(directory, name_mask)
        expired = self.select_expired(backups, policy, now)

        self.log.log_message(
            f"Retention ({policy.describe()}): {len(backups)} file(s) match '{name_mask}', "
            f"{len(expired)} to delete"
        )

        summary = {
            'matched': len(backups),
            'deleted': [],
            'errors': []
        }

        for backup in expired:
            self.log.log_message(
                f"Deleting file '{backup.path}'.\n"
                f"Last Written: {backup.modified:%Y-%m-%d %H:%M:%S}\n"
                f"Create Date:  {backup.created:%Y-%m-%d %H:%M:%S}\n"
                f"Size:         {backup.size}"
            )
            try:
                self._delete(backup)
                summary['deleted'].append(backup.path)
            except RetentionDeleteError as e:
                self.log.log_message(str(e), logging.ERROR)
                summary['errors'].append(str(e))

        return summary

    def _delete(self, backup: BackupFile):
        """
        Remove one backup file.

        Raises:
            RetentionDeleteError: If the file cannot be removed
        """
        try:
            os.remove(backup.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise RetentionDeleteError(f"Failed to delete '{backup.path}': {e}") from e
