"""Backup service: wires the backup components together once per process"""

import asyncio
import logging
from collections.abc import Callable
from logging.handlers import RotatingFileHandler

from ..utils.catalog import BackupCatalog
from ..utils.notifications import EventBroadcaster, NotificationManager
from ..utils.retention_manager import RetentionManager
from ..utils.scheduler import BackupScheduler
from ..utils.verifier import IntegrityVerifier
from .backup_engine import BackupExecutor
from .config_manager import BackupSettings
from .database import DatabaseHandle, NullDatabaseHandle
from .engines import StorageEngine, resolve_engine
from .models import BackupMetadata, BackupResult, BackupStats, Cadence, RestoreResult, RotationReport
from .restore_engine import RestoreExecutor

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB max per log file
LOG_BACKUP_COUNT = 5  # Number of rotated log files to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LOGGER_NAMES = (
    "BackupService",
    "BackupExecutor",
    "RestoreExecutor",
    "RetentionManager",
    "BackupCatalog",
    "BackupScheduler",
    "IntegrityVerifier",
    "EventBroadcaster",
    "NotificationManager",
    "DatabaseHandle",
    "StorageEngine",
    "Pipeline",
)


def setup_logging(settings: BackupSettings, console: bool = True) -> None:
    """Attach rotating file and console handlers to every component logger"""
    loggers = [logging.getLogger(name) for name in _LOGGER_NAMES]
    for logger in loggers:
        logger.setLevel(settings.log_level)

    # Already configured earlier in this process
    pending = [logger for logger in loggers if not logger.handlers]
    if not pending:
        return

    handlers: list[logging.Handler] = []
    formatter = logging.Formatter(LOG_FORMAT)

    if settings.log_file is not None:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                settings.log_file,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            fh.setLevel(settings.log_level)
            handlers.append(fh)
        except OSError as e:
            logging.warning(f"File logging disabled, cannot open {settings.log_file}: {e}")

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(settings.log_level)
        handlers.append(ch)

    for handler in handlers:
        handler.setFormatter(formatter)

    for logger in pending:
        for handler in handlers:
            logger.addHandler(handler)


class BackupService:
    """Main entry point for hosts (CLI, web application) of the backup engine"""

    def __init__(
        self,
        settings: BackupSettings,
        database: DatabaseHandle | None = None,
        events: EventBroadcaster | None = None,
        engine_factory: Callable[[BackupSettings], StorageEngine] = resolve_engine,
    ):
        self.settings = settings
        self.logger = logging.getLogger("BackupService")
        self.database = database or NullDatabaseHandle()
        self.events = events or EventBroadcaster()

        if settings.desktop_notifications:
            self.notifier = NotificationManager()
            self.events.subscribe(self.notifier.handle_event)

        self.lock = asyncio.Lock()
        self.catalog = BackupCatalog(settings.backup_dir)
        self.verifier = IntegrityVerifier()
        self.retention = RetentionManager(self.catalog, settings.retention_quotas)
        self.backups = BackupExecutor(
            settings,
            self.catalog,
            self.verifier,
            self.retention,
            self.events,
            self.database,
            lock=self.lock,
            engine_factory=engine_factory,
        )
        self.restores = RestoreExecutor(
            settings, self.catalog, self.verifier, self.backups, self.database, engine_factory=engine_factory
        )
        self.scheduler = BackupScheduler(
            self.backups,
            hour=settings.schedule_hour,
            minute=settings.schedule_minute,
            enabled=settings.production,
        )

    async def create_backup(self, cadence: Cadence | str = Cadence.MANUAL) -> BackupResult:
        return await self.backups.create(cadence)

    async def restore_backup(self, filename: str) -> RestoreResult:
        return await self.restores.restore(filename)

    def list_backups(self) -> list[BackupMetadata]:
        return self.catalog.list()

    def get_stats(self) -> BackupStats:
        return self.catalog.stats()

    def delete_backup(self, filename: str) -> bool:
        return self.catalog.delete(filename)

    def verify_backup(self, filename: str) -> bool:
        return self.verifier.verify(self.catalog.resolve(filename))

    def rotate(self, cadence: Cadence | str | None = None, dry_run: bool = False) -> RotationReport:
        return self.retention.rotate(cadence, dry_run=dry_run)

    def start_scheduler(self) -> asyncio.Task | None:
        return self.scheduler.start()

    async def stop_scheduler(self) -> None:
        await self.scheduler.stop()
