"""Dataclasses shared across backup modules"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Cadence(str, Enum):
    """Backup classification, each with its own retention quota"""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BackupMetadata:
    """Snapshot of a backup artifact on disk.

    Built by the executor when a backup completes, or reconstructed from the
    filesystem by the catalog. ``verified`` is only ever true for the former.
    """

    filename: str
    filepath: Path
    size: int
    created: datetime
    cadence: Cadence
    compressed: bool
    verified: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "filename": self.filename,
            "filepath": str(self.filepath),
            "size": self.size,
            "created": self.created.isoformat(),
            "cadence": self.cadence.value,
            "compressed": self.compressed,
            "verified": self.verified,
        }


@dataclass
class BackupResult:
    success: bool
    metadata: BackupMetadata | None = None
    error: str | None = None
    exception: Exception | None = field(default=None, repr=False)
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class RestoreResult:
    success: bool
    restored_from: str
    error: str | None = None
    exception: Exception | None = field(default=None, repr=False)
    safety_backup: str | None = None
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class RotationReport:
    """Outcome of a retention pass"""

    deleted: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    freed_bytes: int = 0
    dry_run: bool = False


@dataclass
class BackupStats:
    total_backups: int
    total_size: int
    oldest: datetime | None
    newest: datetime | None
    by_cadence: dict[str, int]


__all__ = [
    "BackupMetadata",
    "BackupResult",
    "BackupStats",
    "Cadence",
    "RestoreResult",
    "RotationReport",
]
