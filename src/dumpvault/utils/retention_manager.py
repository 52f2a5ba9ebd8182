"""Per-cadence retention for backup artifacts"""

import logging
from collections import defaultdict
from typing import Any

from ..core.config_manager import DEFAULT_RETENTION_QUOTAS
from ..core.models import BackupMetadata, Cadence, RotationReport
from .catalog import BackupCatalog


class RetentionManager:
    """Keep the newest N artifacts of each scheduled cadence.

    Manual backups (including restore safety backups) are never rotated.
    """

    def __init__(self, catalog: BackupCatalog, quotas: dict[str, int] | None = None):
        self.catalog = catalog
        self.quotas = dict(quotas) if quotas else dict(DEFAULT_RETENTION_QUOTAS)
        self.logger = logging.getLogger("RetentionManager")

    def _group(self, backups: list[BackupMetadata]) -> dict[Cadence, list[BackupMetadata]]:
        grouped: dict[Cadence, list[BackupMetadata]] = defaultdict(list)
        for backup in backups:
            grouped[backup.cadence].append(backup)
        return grouped

    def _cadences_to_rotate(self, cadence: Cadence | str | None) -> list[Cadence]:
        if cadence is None:
            return [Cadence(name) for name in self.quotas]
        cadence = Cadence(cadence)
        return [cadence] if cadence.value in self.quotas else []

    def rotate(self, cadence: Cadence | str | None = None, dry_run: bool = False) -> RotationReport:
        """Delete the oldest artifacts beyond each cadence's quota

        Args:
            cadence: Only rotate this cadence family (all scheduled cadences if None)
            dry_run: Report what would be deleted without deleting

        Returns:
            Report of kept, deleted and failed artifacts. Never raises.
        """
        report = RotationReport(dry_run=dry_run)

        try:
            grouped = self._group(self.catalog.list())

            for family in self._cadences_to_rotate(cadence):
                keep_count = self.quotas[family.value]
                backups = sorted(grouped.get(family, []), key=lambda b: (b.created, b.filename), reverse=True)

                report.kept.extend(b.filename for b in backups[:keep_count])
                if len(backups) <= keep_count:
                    continue

                for backup in backups[keep_count:]:
                    if dry_run:
                        report.deleted.append(backup.filename)
                        report.freed_bytes += backup.size
                        continue
                    try:
                        backup.filepath.unlink()
                        report.deleted.append(backup.filename)
                        report.freed_bytes += backup.size
                        self.logger.info(f"Deleted old {family.value} backup: {backup.filename}")
                    except OSError as e:
                        report.failed.append({"filename": backup.filename, "error": str(e)})
                        self.logger.error(f"Failed to delete {backup.filename}: {e}")

        except Exception as e:
            self.logger.error(f"Failed to rotate backups: {e}", exc_info=True)
            report.failed.append({"filename": "*", "error": str(e)})

        return report

    def get_retention_status(self) -> dict[str, Any]:
        """Current artifact count per cadence against its quota"""
        grouped = self._group(self.catalog.list())
        status: dict[str, Any] = {"cadences": {}, "total_backups": 0, "total_size": 0}

        for cadence in Cadence:
            backups = grouped.get(cadence, [])
            quota = self.quotas.get(cadence.value)
            status["cadences"][cadence.value] = {
                "count": len(backups),
                "quota": quota,
                "over_quota": max(0, len(backups) - quota) if quota is not None else 0,
                "size": sum(b.size for b in backups),
                "newest": backups[0].created.isoformat() if backups else None,
                "oldest": backups[-1].created.isoformat() if backups else None,
            }
            status["total_backups"] += len(backups)
            status["total_size"] += sum(b.size for b in backups)

        return status
