"""
Dump settings resolved from the application configuration.

Settings are validated once, when the run starts, and are immutable
afterwards. Required keys are checked by a pure resolver that returns the
value or the reason it failed, so every missing key is reported together.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple


logger = logging.getLogger(__name__)

DEFAULT_RETENTION_VALUE = 14
DEFAULT_TIMEOUT_SECONDS = 3600
DEFAULT_LOCK_STALE_SECONDS = 21600

RETENTION_MODES = ('age', 'count')

REQUIRED_KEYS = (
    'DUMP_COMMAND_PATH',
    'DUMP_COMMAND_ARGUMENTS',
    'DUMP_OUTPUT_FILE',
    'DUMP_BACKUP_DIRECTORY',
    'DUMP_BACKUP_FILE_MASK',
    'DUMP_RETENTION_VALUE',
    'DUMP_WATERMARK_FILE',
    'DUMP_SOURCE_URL',
    'DUMP_HIGH_WATER_QUERY',
)


class ConfigurationError(Exception):
    """Raised when required settings are missing, blank or malformed."""
    pass


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep the newest N files ('count') or drop files older than N days ('age')."""
    mode: str
    value: int

    def describe(self) -> str:
        if self.mode == 'count':
            return f"keep newest {self.value}"
        return f"delete older than {self.value} days"


@dataclass(frozen=True)
class DumpSettings:
    command_path: str
    command_arguments: str
    output_template: str
    backup_directory: str
    backup_file_mask: str
    retention: RetentionPolicy
    watermark_file: str
    source_url: str
    high_water_query: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    kill_on_timeout: bool = False
    fail_on_nonzero_exit: bool = False
    fail_on_timeout: bool = False
    strict_data_source: bool = False
    lock_enabled: bool = True
    lock_stale_seconds: int = DEFAULT_LOCK_STALE_SECONDS

    @property
    def watermark_path(self) -> str:
        return os.path.join(self.backup_directory, self.watermark_file)

    @property
    def masked_arguments(self) -> str:
        """Command arguments safe to log: first token only."""
        return mask_arguments(self.command_arguments)


def mask_arguments(arguments: str) -> str:
    parts = arguments.split()
    if not parts:
        return ''
    if len(parts) == 1:
        return '***'
    return f"{parts[0]} ***"


def resolve_setting(source: Mapping, key: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Resolve a required string setting.

    A <key>_FILE entry naming a readable file takes precedence over the plain
    key; the file content is trimmed.

    Args:
        source: Settings mapping (Flask config or plain dict)
        key: Setting name

    Returns:
        (value, None) on success, (None, reason) on failure
    """
    file_path = source.get(f'{key}_FILE')
    if file_path:
        try:
            value = Path(file_path).read_text().strip()
        except OSError as e:
            return None, f"{key}_FILE '{file_path}' could not be read: {e.strerror or e}"
        if not value:
            return None, f"{key}_FILE '{file_path}' is empty"
        return value, None

    value = source.get(key)
    if value is None or not str(value).strip():
        return None, f'Missing or empty setting "{key}"'
    return str(value).strip(), None


def parse_flag(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(value, default: int, key: str, minimum: int = 0) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        parsed = None

    if parsed is None or parsed < minimum:
        logger.warning(f'Setting "{key}" value {value!r} is not a valid integer. Using default of {default}.')
        return default
    return parsed


def load_settings(source: Mapping) -> DumpSettings:
    """
    Build DumpSettings from a configuration mapping.

    Args:
        source: Mapping with DUMP_* keys (usually app.config)

    Returns:
        Validated, immutable DumpSettings

    Raises:
        ConfigurationError: If any required key is missing or blank, or if the
            retention mode is unknown
    """
    if source is None:
        raise ConfigurationError("No settings provided")

    values = {}
    failures = []
    for key in REQUIRED_KEYS:
        value, reason = resolve_setting(source, key)
        if reason:
            failures.append(reason)
        else:
            values[key] = value

    mode = str(source.get('DUMP_RETENTION_MODE') or 'age').strip().lower()
    if mode not in RETENTION_MODES:
        failures.append(f'Setting "DUMP_RETENTION_MODE" must be one of {list(RETENTION_MODES)}, got {mode!r}')

    if failures:
        raise ConfigurationError('; '.join(failures))

    retention_value = _parse_int(values['DUMP_RETENTION_VALUE'], DEFAULT_RETENTION_VALUE, 'DUMP_RETENTION_VALUE')

    timeout_raw = source.get('DUMP_TIMEOUT_SECONDS')
    try:
        timeout_seconds = float(timeout_raw) if timeout_raw not in (None, '') else DEFAULT_TIMEOUT_SECONDS
    except (TypeError, ValueError):
        timeout_seconds = None
    if timeout_seconds is None or timeout_seconds <= 0:
        logger.warning(f'Setting "DUMP_TIMEOUT_SECONDS" value {timeout_raw!r} is not valid. Using default of {DEFAULT_TIMEOUT_SECONDS}.')
        timeout_seconds = DEFAULT_TIMEOUT_SECONDS

    return DumpSettings(
        command_path=values['DUMP_COMMAND_PATH'],
        command_arguments=values['DUMP_COMMAND_ARGUMENTS'],
        output_template=values['DUMP_OUTPUT_FILE'],
        backup_directory=values['DUMP_BACKUP_DIRECTORY'],
        backup_file_mask=values['DUMP_BACKUP_FILE_MASK'],
        retention=RetentionPolicy(mode=mode, value=retention_value),
        watermark_file=values['DUMP_WATERMARK_FILE'],
        source_url=values['DUMP_SOURCE_URL'],
        high_water_query=values['DUMP_HIGH_WATER_QUERY'],
        timeout_seconds=timeout_seconds,
        kill_on_timeout=parse_flag(source.get('DUMP_KILL_ON_TIMEOUT')),
        fail_on_nonzero_exit=parse_flag(source.get('DUMP_FAIL_ON_NONZERO_EXIT')),
        fail_on_timeout=parse_flag(source.get('DUMP_FAIL_ON_TIMEOUT')),
        strict_data_source=parse_flag(source.get('DUMP_STRICT_DATA_SOURCE')),
        lock_enabled=parse_flag(source.get('DUMP_LOCK_ENABLED'), default=True),
        lock_stale_seconds=_parse_int(
            source.get('DUMP_LOCK_STALE_SECONDS', DEFAULT_LOCK_STALE_SECONDS),
            DEFAULT_LOCK_STALE_SECONDS,
            'DUMP_LOCK_STALE_SECONDS'
        ),
    )
