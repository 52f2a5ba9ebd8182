"""Backup executor: one database snapshot per call"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from ..utils.catalog import BackupCatalog
from ..utils.formatting import format_bytes
from ..utils.notifications import BACKUP_COMPLETED, BACKUP_ERROR, BACKUP_PROGRESS, BACKUP_STARTED, EventBroadcaster
from ..utils.retention_manager import RetentionManager
from ..utils.verifier import IntegrityVerifier
from .config_manager import BackupSettings
from .database import DatabaseHandle
from .engines import StorageEngine, resolve_engine
from .errors import DirectoryError
from .models import BackupMetadata, BackupResult, Cadence


def generate_backup_filename(cadence: Cadence | str, extension: str, compressed: bool = True, now: datetime | None = None) -> str:
    """backup-<cadence>-<UTC ISO-8601 timestamp, ':' and '.' replaced by '-'>.<ext>[.gz]"""
    now = now or datetime.now(timezone.utc)
    timestamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    timestamp = timestamp.replace(":", "-").replace(".", "-")
    suffix = f"{extension}.gz" if compressed else extension
    return f"backup-{Cadence(cadence).value}-{timestamp}{suffix}"


class ProgressMonitor:
    """Polls the growing artifact and publishes progress events.

    Runs as a background task for the duration of an ``async with`` block;
    leaving the block cancels the task exactly once.
    """

    def __init__(
        self,
        path: Path,
        filename: str,
        events: EventBroadcaster,
        interval: float = 1.0,
        initial_delay: float = 0.5,
        threshold: int = 1024,
    ):
        self.path = path
        self.filename = filename
        self.events = events
        self.interval = interval
        self.initial_delay = initial_delay
        self.threshold = threshold
        self.reported_bytes = 0
        self.reports = 0
        self._task: asyncio.Task | None = None

    async def __aenter__(self) -> "ProgressMonitor":
        self._task = asyncio.create_task(self._watch())
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def poll(self) -> bool:
        """Publish a progress event if the artifact grew enough; True if one was sent"""
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return False

        grown = size - self.reported_bytes
        if grown <= 0 or (self.reported_bytes and grown < self.threshold):
            return False

        self.reported_bytes = size
        self.reports += 1
        self.events.publish(
            BACKUP_PROGRESS,
            {"filename": self.filename, "sizeText": format_bytes(size), "status": "in_progress"},
        )
        return True

    async def _watch(self) -> None:
        # Skip the tiny initial writes
        await asyncio.sleep(self.initial_delay)
        while True:
            self.poll()
            await asyncio.sleep(self.interval)


class BackupExecutor:
    """Creates compressed, verified snapshots of the configured database"""

    def __init__(
        self,
        settings: BackupSettings,
        catalog: BackupCatalog,
        verifier: IntegrityVerifier,
        retention: RetentionManager,
        events: EventBroadcaster,
        database: DatabaseHandle,
        lock: asyncio.Lock | None = None,
        engine_factory: Callable[[BackupSettings], StorageEngine] = resolve_engine,
    ):
        self.settings = settings
        self.catalog = catalog
        self.verifier = verifier
        self.retention = retention
        self.events = events
        self.database = database
        # Shared with the restore executor: backups and restores never overlap
        self.lock = lock or asyncio.Lock()
        self.engine_factory = engine_factory
        self.logger = logging.getLogger("BackupExecutor")

    def _ensure_backup_dir(self) -> None:
        try:
            self.settings.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryError(f"Cannot create backup directory {self.settings.backup_dir}: {e}") from e

    def _discard_partial(self, path: Path | None) -> None:
        if path is None or not path.exists():
            return
        try:
            path.unlink()
            self.logger.info(f"Cleaned up partial backup: {path.name}")
        except OSError as e:
            self.logger.warning(f"Could not remove partial backup {path.name}: {e}")

    async def create(self, cadence: Cadence | str = Cadence.MANUAL) -> BackupResult:
        """Create a backup; never raises, failures come back as an unsuccessful result"""
        async with self.lock:
            return await self.create_locked(cadence)

    async def create_locked(self, cadence: Cadence | str = Cadence.MANUAL) -> BackupResult:
        """Body of ``create``; the caller must already hold ``self.lock``"""
        filename = f"backup-{cadence}"
        backup_path: Path | None = None

        try:
            cadence = Cadence(cadence)
            self._ensure_backup_dir()
            engine = self.engine_factory(self.settings)

            filename = generate_backup_filename(cadence, engine.extension, self.settings.compress)
            backup_path = self.settings.backup_dir / filename

            self.logger.info(f"Creating {cadence.value} backup: {filename}")
            self.events.publish(BACKUP_STARTED, {"filename": filename, "cadence": cadence.value, "status": "starting"})

            monitor = ProgressMonitor(
                backup_path,
                filename,
                self.events,
                interval=self.settings.progress_interval,
                initial_delay=self.settings.progress_initial_delay,
                threshold=self.settings.progress_threshold,
            )
            async with monitor:
                await engine.dump(backup_path, self.settings.compress, self.database)

            size = backup_path.stat().st_size
            verified = self.verifier.verify(backup_path)
            metadata = BackupMetadata(
                filename=filename,
                filepath=backup_path.resolve(),
                size=size,
                created=datetime.now(),
                cadence=cadence,
                compressed=self.settings.compress,
                verified=verified,
            )

            size_text = format_bytes(size)
            self.logger.info(f"Backup created successfully: {filename} ({size_text})")
            if not verified:
                self.logger.warning(f"Backup {filename} did not pass the integrity probe")

            self.events.publish(
                BACKUP_COMPLETED,
                {
                    "filename": filename,
                    "sizeText": size_text,
                    "cadence": cadence.value,
                    "verified": verified,
                    "status": "completed",
                },
            )

            report = self.retention.rotate(cadence)
            if report.deleted:
                self.logger.info(f"Rotated {len(report.deleted)} old {cadence.value} backup(s)")
            diagnostics = [f"{failure['filename']}: {failure['error']}" for failure in report.failed]
            if diagnostics:
                self.logger.warning(f"Rotation left {len(diagnostics)} {cadence.value} backup(s) in place")

            return BackupResult(success=True, metadata=metadata, diagnostics=diagnostics)

        except Exception as e:
            self.logger.error(f"Failed to create backup {filename}: {e}", exc_info=True)
            self._discard_partial(backup_path)
            self.events.publish(BACKUP_ERROR, {"filename": filename, "error": str(e), "status": "error"})
            return BackupResult(success=False, error=str(e), exception=e)
