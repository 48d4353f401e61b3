"""
Dump module for dumpkeeper.

This module handles the core dump functionality including:
- Settings validation
- High-water lookup and watermark persistence
- Subprocess output capture
- Retention policy enforcement
- Run orchestration
"""

from .settings import DumpSettings, RetentionPolicy, ConfigurationError, load_settings
from .watermark import WatermarkStore
from .capture import ProcessCapture, LaunchError, OutputWriteError
from .retention import RetentionManager
from .datasource import HighWaterSource
from .orchestrator import DumpOrchestrator, RunState, execute_dump

__all__ = [
    'DumpSettings',
    'RetentionPolicy',
    'ConfigurationError',
    'load_settings',
    'WatermarkStore',
    'ProcessCapture',
    'LaunchError',
    'OutputWriteError',
    'RetentionManager',
    'HighWaterSource',
    'DumpOrchestrator',
    'RunState',
    'execute_dump'
]
