"""
Unit tests for dump settings (dumpkeeper/dump/settings.py).
"""

import dataclasses

import pytest

from dumpkeeper.dump.settings import (
    ConfigurationError,
    DumpSettings,
    RetentionPolicy,
    load_settings,
    resolve_setting,
    mask_arguments,
    parse_flag,
    REQUIRED_KEYS
)


class TestResolveSetting:
    """Test single-key resolution."""

    def test_resolve_plain_value(self):
        assert resolve_setting({'KEY': '  value  '}, 'KEY') == ('value', None)

    def test_resolve_missing(self):
        value, reason = resolve_setting({}, 'KEY')
        assert value is None
        assert 'KEY' in reason

    def test_resolve_blank(self):
        value, reason = resolve_setting({'KEY': '   '}, 'KEY')
        assert value is None
        assert 'Missing or empty' in reason

    def test_resolve_from_file(self, tmp_path):
        """Test <key>_FILE takes precedence and is trimmed."""
        secret = tmp_path / 'secret'
        secret.write_text('--password=s3cret\n')

        value, reason = resolve_setting({'KEY': 'plain', 'KEY_FILE': str(secret)}, 'KEY')

        assert value == '--password=s3cret'
        assert reason is None

    def test_resolve_from_missing_file(self, tmp_path):
        value, reason = resolve_setting({'KEY_FILE': str(tmp_path / 'nope')}, 'KEY')
        assert value is None
        assert 'could not be read' in reason

    def test_resolve_from_empty_file(self, tmp_path):
        secret = tmp_path / 'secret'
        secret.write_text('\n')

        value, reason = resolve_setting({'KEY_FILE': str(secret)}, 'KEY')

        assert value is None
        assert 'is empty' in reason


class TestLoadSettings:
    """Test building DumpSettings from configuration."""

    def test_load_complete_config(self, dump_config, backup_dir):
        settings = load_settings(dump_config)

        assert isinstance(settings, DumpSettings)
        assert settings.backup_directory == str(backup_dir)
        assert settings.retention == RetentionPolicy(mode='count', value=5)
        assert settings.timeout_seconds == 30
        assert settings.watermark_path == str(backup_dir / 'last_dumped_id.txt')

    def test_load_defaults(self, dump_config):
        """Test optional settings fall back to their defaults."""
        del dump_config['DUMP_RETENTION_MODE']
        del dump_config['DUMP_TIMEOUT_SECONDS']

        settings = load_settings(dump_config)

        assert settings.retention.mode == 'age'
        assert settings.timeout_seconds == 3600
        assert settings.kill_on_timeout is False
        assert settings.fail_on_nonzero_exit is False
        assert settings.fail_on_timeout is False
        assert settings.strict_data_source is False
        assert settings.lock_enabled is True
        assert settings.lock_stale_seconds == 21600

    def test_load_reports_every_missing_key(self):
        """Test all missing required keys are listed in one error."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings({})

        message = str(exc_info.value)
        for key in REQUIRED_KEYS:
            assert key in message

    def test_load_blank_key_is_fatal(self, dump_config):
        dump_config['DUMP_BACKUP_DIRECTORY'] = ''

        with pytest.raises(ConfigurationError, match='DUMP_BACKUP_DIRECTORY'):
            load_settings(dump_config)

    def test_load_none_source(self):
        with pytest.raises(ConfigurationError):
            load_settings(None)

    def test_load_invalid_retention_mode(self, dump_config):
        dump_config['DUMP_RETENTION_MODE'] = 'size'

        with pytest.raises(ConfigurationError, match='DUMP_RETENTION_MODE'):
            load_settings(dump_config)

    @pytest.mark.parametrize('raw', ['abc', '-3', '1.5'])
    def test_load_invalid_retention_value_uses_default(self, dump_config, raw):
        """Test an unparsable retention value falls back to 14."""
        dump_config['DUMP_RETENTION_VALUE'] = raw

        settings = load_settings(dump_config)

        assert settings.retention.value == 14

    @pytest.mark.parametrize('raw', ['soon', '0', '-5'])
    def test_load_invalid_timeout_uses_default(self, dump_config, raw):
        dump_config['DUMP_TIMEOUT_SECONDS'] = raw

        settings = load_settings(dump_config)

        assert settings.timeout_seconds == 3600

    def test_load_flags(self, dump_config):
        dump_config.update({
            'DUMP_KILL_ON_TIMEOUT': 'true',
            'DUMP_FAIL_ON_NONZERO_EXIT': '1',
            'DUMP_FAIL_ON_TIMEOUT': 'yes',
            'DUMP_STRICT_DATA_SOURCE': True,
            'DUMP_LOCK_ENABLED': 'false',
        })

        settings = load_settings(dump_config)

        assert settings.kill_on_timeout is True
        assert settings.fail_on_nonzero_exit is True
        assert settings.fail_on_timeout is True
        assert settings.strict_data_source is True
        assert settings.lock_enabled is False

    def test_load_arguments_from_file(self, dump_config, tmp_path):
        secret = tmp_path / 'args'
        secret.write_text('--user=backup --password=hunter2 shop\n')
        dump_config['DUMP_COMMAND_ARGUMENTS'] = ''
        dump_config['DUMP_COMMAND_ARGUMENTS_FILE'] = str(secret)

        settings = load_settings(dump_config)

        assert settings.command_arguments == '--user=backup --password=hunter2 shop'

    def test_settings_are_immutable(self, settings):
        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.backup_directory = '/elsewhere'


class TestHelpers:
    """Test small parsing helpers."""

    @pytest.mark.parametrize('arguments,expected', [
        ('', ''),
        ('--all-databases', '***'),
        ('--user=root --password=secret shop', '--user=root ***'),
    ])
    def test_mask_arguments(self, arguments, expected):
        assert mask_arguments(arguments) == expected

    @pytest.mark.parametrize('value,expected', [
        (None, False),
        (True, True),
        ('ON', True),
        ('no', False),
        ('0', False),
    ])
    def test_parse_flag(self, value, expected):
        assert parse_flag(value) is expected

    def test_parse_flag_default(self):
        assert parse_flag(None, default=True) is True

    def test_retention_describe(self):
        assert RetentionPolicy('count', 5).describe() == 'keep newest 5'
        assert RetentionPolicy('age', 30).describe() == 'delete older than 30 days'
