import os


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration"""

    # Data directory holding the event log database and application logs
    DATA_DIR = os.environ.get('DATA_DIR') or '/data'
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')

    # Database (event log)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "dumpkeeper.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Dump command. Any key below may instead be given as <KEY>_FILE
    # pointing at a file that holds the value.
    DUMP_COMMAND_PATH = os.environ.get('DUMP_COMMAND_PATH')
    DUMP_COMMAND_PATH_FILE = os.environ.get('DUMP_COMMAND_PATH_FILE')
    DUMP_COMMAND_ARGUMENTS = os.environ.get('DUMP_COMMAND_ARGUMENTS')
    DUMP_COMMAND_ARGUMENTS_FILE = os.environ.get('DUMP_COMMAND_ARGUMENTS_FILE')
    DUMP_OUTPUT_FILE = os.environ.get('DUMP_OUTPUT_FILE') or 'dump_{DateTime}.sql'
    DUMP_TIMEOUT_SECONDS = os.environ.get('DUMP_TIMEOUT_SECONDS') or '3600'
    DUMP_KILL_ON_TIMEOUT = _env_flag('DUMP_KILL_ON_TIMEOUT')
    DUMP_FAIL_ON_NONZERO_EXIT = _env_flag('DUMP_FAIL_ON_NONZERO_EXIT')
    DUMP_FAIL_ON_TIMEOUT = _env_flag('DUMP_FAIL_ON_TIMEOUT')

    # Backup directory and retention
    DUMP_BACKUP_DIRECTORY = os.environ.get('DUMP_BACKUP_DIRECTORY')
    DUMP_BACKUP_FILE_MASK = os.environ.get('DUMP_BACKUP_FILE_MASK') or 'dump_*.sql'
    DUMP_RETENTION_MODE = os.environ.get('DUMP_RETENTION_MODE') or 'age'
    DUMP_RETENTION_VALUE = os.environ.get('DUMP_RETENTION_VALUE') or '14'
    DUMP_WATERMARK_FILE = os.environ.get('DUMP_WATERMARK_FILE') or 'last_dumped_id.txt'

    # High-water query against the source database
    DUMP_SOURCE_URL = os.environ.get('DUMP_SOURCE_URL')
    DUMP_SOURCE_URL_FILE = os.environ.get('DUMP_SOURCE_URL_FILE')
    DUMP_HIGH_WATER_QUERY = os.environ.get('DUMP_HIGH_WATER_QUERY')
    DUMP_STRICT_DATA_SOURCE = _env_flag('DUMP_STRICT_DATA_SOURCE')

    # Cross-run lock
    DUMP_LOCK_ENABLED = _env_flag('DUMP_LOCK_ENABLED', 'true')
    DUMP_LOCK_STALE_SECONDS = os.environ.get('DUMP_LOCK_STALE_SECONDS') or '21600'

    # Scheduler
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED')
    SCHEDULER_TIMEZONE = 'UTC'
    DUMP_SCHEDULE_CRON = os.environ.get('DUMP_SCHEDULE_CRON')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "dumpkeeper.db")}'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Test configuration - in-memory database, no scheduler"""
    TESTING = True
    DEBUG = False
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data', 'test')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
