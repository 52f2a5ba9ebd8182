"""Error hierarchy for backup and restore operations"""


class BackupError(RuntimeError):
    """Base exception for backup related failures"""


class ConfigurationError(BackupError):
    """Raised when the database locator or settings are malformed"""


class DirectoryError(BackupError):
    """Raised when the backup directory cannot be created"""


class ProcessError(BackupError):
    """Raised when a dump or restore subprocess exits with a non-zero status"""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class IntegrityError(BackupError):
    """Raised when a backup artifact fails the integrity probe"""


class NotFoundError(BackupError):
    """Raised when a restore target is missing or unreadable"""


__all__ = [
    "BackupError",
    "ConfigurationError",
    "DirectoryError",
    "IntegrityError",
    "NotFoundError",
    "ProcessError",
]
