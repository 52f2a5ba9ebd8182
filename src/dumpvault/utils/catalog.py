"""Backup catalog: metadata reconstructed from the backup directory"""

import logging
import os
from datetime import datetime
from pathlib import Path

from ..core.errors import NotFoundError
from ..core.models import BackupMetadata, BackupStats, Cadence

ARTIFACT_SUFFIXES = (".sql.gz", ".sql", ".db.gz", ".db")


def classify_filename(filename: str) -> Cadence:
    """Cadence encoded in a backup filename, manual when none is"""
    for cadence in (Cadence.DAILY, Cadence.WEEKLY, Cadence.MONTHLY):
        if f"-{cadence.value}-" in filename:
            return cadence
    return Cadence.MANUAL


class BackupCatalog:
    """Lists backup artifacts from filesystem state"""

    def __init__(self, backup_dir: Path):
        self.backup_dir = Path(backup_dir)
        self.logger = logging.getLogger("BackupCatalog")

    def _metadata_for(self, path: Path) -> BackupMetadata:
        stat = path.stat()
        return BackupMetadata(
            filename=path.name,
            filepath=path.resolve(),
            size=stat.st_size,
            created=datetime.fromtimestamp(stat.st_mtime),
            cadence=classify_filename(path.name),
            compressed=path.name.endswith(".gz"),
            verified=False,
        )

    def list(self) -> list[BackupMetadata]:
        """All artifacts, newest first"""
        if not self.backup_dir.is_dir():
            return []

        backups = []
        for entry in self.backup_dir.iterdir():
            # Dotfiles are in-flight snapshots and staging files
            if entry.name.startswith(".") or not entry.name.endswith(ARTIFACT_SUFFIXES):
                continue
            if entry.is_symlink() or not entry.is_file():
                continue
            try:
                backups.append(self._metadata_for(entry))
            except OSError as e:
                # Removed between listing and stat
                self.logger.debug(f"Skipping {entry.name}: {e}")

        backups.sort(key=lambda b: (b.created, b.filename), reverse=True)
        return backups

    @staticmethod
    def validate_filename(filename: str) -> None:
        """Reject anything that is not a plain filename inside the backup directory"""
        path = Path(filename)
        if not filename or path.name != filename or ".." in path.parts:
            raise NotFoundError(f"Invalid backup filename: '{filename}'. Must be a plain filename with no path components.")

    def resolve(self, filename: str) -> Path:
        """Path of an existing, readable artifact"""
        self.validate_filename(filename)
        path = self.backup_dir / filename
        if not path.is_file() or not os.access(path, os.R_OK):
            raise NotFoundError(f"Backup file not found: {filename}")
        return path

    def get(self, filename: str) -> BackupMetadata:
        return self._metadata_for(self.resolve(filename))

    def delete(self, filename: str) -> bool:
        """Delete a specific backup"""
        try:
            path = self.resolve(filename)
            path.unlink()
        except (NotFoundError, OSError) as e:
            self.logger.error(f"Failed to delete backup {filename}: {e}")
            return False

        self.logger.info(f"Deleted backup: {filename}")
        return True

    def stats(self) -> BackupStats:
        backups = self.list()
        by_cadence = {cadence.value: 0 for cadence in Cadence}
        for backup in backups:
            by_cadence[backup.cadence.value] += 1

        return BackupStats(
            total_backups=len(backups),
            total_size=sum(b.size for b in backups),
            oldest=backups[-1].created if backups else None,
            newest=backups[0].created if backups else None,
            by_cadence=by_cadence,
        )
