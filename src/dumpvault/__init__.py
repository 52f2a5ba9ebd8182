"""dumpvault - scheduled database backups with safe restore"""

from .core.config_manager import BackupSettings, ConfigManager
from .core.errors import (
    BackupError,
    ConfigurationError,
    DirectoryError,
    IntegrityError,
    NotFoundError,
    ProcessError,
)
from .core.models import BackupMetadata, BackupResult, Cadence, RestoreResult
from .core.service import BackupService

__version__ = "0.1.0"

__all__ = [
    "BackupError",
    "BackupMetadata",
    "BackupResult",
    "BackupService",
    "BackupSettings",
    "Cadence",
    "ConfigManager",
    "ConfigurationError",
    "DirectoryError",
    "IntegrityError",
    "NotFoundError",
    "ProcessError",
    "RestoreResult",
]
