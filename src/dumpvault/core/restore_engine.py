"""Restore executor: replaces the live database with a backup artifact"""

import logging
from collections.abc import Callable

from ..utils.catalog import BackupCatalog
from ..utils.verifier import IntegrityVerifier
from .backup_engine import BackupExecutor
from .config_manager import BackupSettings
from .database import DatabaseHandle
from .engines import StorageEngine, resolve_engine
from .errors import IntegrityError
from .models import Cadence, RestoreResult


class RestoreExecutor:
    """Safe restore: verify, take a safety backup, then overwrite.

    The live database is only touched after a manual safety backup of the
    current state has succeeded, and the shared database handle is always
    reconnected once it has been disconnected.
    """

    def __init__(
        self,
        settings: BackupSettings,
        catalog: BackupCatalog,
        verifier: IntegrityVerifier,
        backups: BackupExecutor,
        database: DatabaseHandle,
        engine_factory: Callable[[BackupSettings], StorageEngine] = resolve_engine,
    ):
        self.settings = settings
        self.catalog = catalog
        self.verifier = verifier
        self.backups = backups
        self.database = database
        self.engine_factory = engine_factory
        self.logger = logging.getLogger("RestoreExecutor")

    async def restore(self, filename: str) -> RestoreResult:
        """Restore the database from a backup file; never raises"""
        async with self.backups.lock:
            return await self._restore_locked(filename)

    async def _restore_locked(self, filename: str) -> RestoreResult:
        diagnostics: list[str] = []

        try:
            backup_path = self.catalog.resolve(filename)

            if not self.verifier.verify(backup_path):
                raise IntegrityError(f"Backup file is corrupted or invalid: {filename}")

            engine = self.engine_factory(self.settings)
            if not engine.accepts(filename):
                raise IntegrityError(f"Backup {filename} was not produced by the configured {engine.name} database")

            self.logger.warning(f"Restoring database from backup: {filename}")
            self.logger.warning("This will overwrite the current database!")

            safety = await self.backups.create_locked(Cadence.MANUAL)
            if not safety.success:
                self.logger.error(f"Safety backup failed, restore aborted: {safety.error}")
                return RestoreResult(
                    success=False,
                    restored_from=filename,
                    error=f"Failed to create safety backup before restore: {safety.error}",
                    exception=safety.exception,
                )
            assert safety.metadata is not None
            self.logger.info(f"Safety backup created: {safety.metadata.filename}")

            try:
                await self.database.disconnect()
                diagnostics.extend(await engine.terminate_sessions())
                await engine.restore(backup_path, compressed=filename.endswith(".gz"))
            finally:
                await self.database.connect()

            self.logger.info(f"Database restored successfully from: {filename}")
            return RestoreResult(
                success=True,
                restored_from=filename,
                safety_backup=safety.metadata.filename,
                diagnostics=diagnostics,
            )

        except Exception as e:
            self.logger.error(f"Failed to restore backup {filename}: {e}", exc_info=True)
            return RestoreResult(
                success=False,
                restored_from=filename,
                error=str(e),
                exception=e,
                diagnostics=diagnostics,
            )
