"""Backup creation end to end against a real SQLite database and scripted dump tools"""

import asyncio
import dataclasses
import gzip
import sqlite3
import time
from pathlib import Path

import pytest

from conftest import ScriptEngine, read_rows, script_service, write_artifact
from dumpvault.core.backup_engine import ProgressMonitor
from dumpvault.core.config_manager import BackupSettings
from dumpvault.core.errors import ConfigurationError, DirectoryError, ProcessError
from dumpvault.core.models import Cadence
from dumpvault.utils.notifications import (
    BACKUP_COMPLETED,
    BACKUP_ERROR,
    BACKUP_PROGRESS,
    BACKUP_STARTED,
    EventBroadcaster,
)

SLOW_DUMP = """
import sys, time
for _ in range(5):
    sys.stdout.buffer.write(b"x" * 20000)
    sys.stdout.flush()
    time.sleep(0.1)
"""

VERSION_MISMATCH = """
import sys
sys.stdout.write("-- partial dump\\n" * 100)
sys.stdout.flush()
sys.stderr.write("pg_dump: error: aborting because of server version mismatch")
sys.exit(1)
"""


def _artifacts(backup_dir):
    return sorted(p.name for p in backup_dir.iterdir() if p.is_file())


@pytest.mark.asyncio
async def test_manual_backup(service, settings, handle, tmp_path):
    result = await service.create_backup()

    assert result.success, result.error
    meta = result.metadata
    assert meta.cadence is Cadence.MANUAL
    assert meta.filename.startswith("backup-manual-")
    assert meta.filename.endswith(".db.gz")
    assert meta.compressed is True
    assert meta.verified is True
    assert meta.size == (settings.backup_dir / meta.filename).stat().st_size
    assert "checkpoint" in handle.calls
    assert handle.connected

    restored = tmp_path / "check.db"
    restored.write_bytes(gzip.decompress(meta.filepath.read_bytes()))
    assert read_rows(restored) == [(1, "Alien"), (2, "Heat"), (3, "Ran")]


@pytest.mark.asyncio
async def test_uncompressed_backup(settings, handle, events):
    from dumpvault.core.service import BackupService

    service = BackupService(dataclasses.replace(settings, compress=False), database=handle, events=events)

    result = await service.create_backup("daily")

    assert result.success
    assert result.metadata.filename.endswith(".db")
    assert result.metadata.compressed is False
    assert result.metadata.verified is True


@pytest.mark.asyncio
async def test_snapshot_files_do_not_linger(service, settings):
    await service.create_backup()

    assert [p.name for p in settings.backup_dir.iterdir() if p.name.startswith(".")] == []


@pytest.mark.asyncio
async def test_lifecycle_events(service, recorder):
    result = await service.create_backup("weekly")

    names = [name for name in recorder.names() if name != BACKUP_PROGRESS]
    assert names == [BACKUP_STARTED, BACKUP_COMPLETED]

    started = recorder.of(BACKUP_STARTED)[0]
    completed = recorder.of(BACKUP_COMPLETED)[0]
    assert started == {"filename": result.metadata.filename, "cadence": "weekly", "status": "starting"}
    assert completed["filename"] == result.metadata.filename
    assert completed["verified"] is True
    assert completed["status"] == "completed"
    assert completed["sizeText"].endswith(("Bytes", "KB", "MB"))


@pytest.mark.asyncio
async def test_unsupported_locator_is_a_failed_result(settings, handle, events, recorder):
    from dumpvault.core.service import BackupService

    service = BackupService(dataclasses.replace(settings, locator="mongodb://localhost/app"), database=handle, events=events)

    result = await service.create_backup()

    assert result.success is False
    assert isinstance(result.exception, ConfigurationError)
    assert recorder.names() == [BACKUP_ERROR]
    assert recorder.of(BACKUP_ERROR)[0]["status"] == "error"


@pytest.mark.asyncio
async def test_missing_sqlite_database(settings, handle, events, tmp_path, recorder):
    from dumpvault.core.service import BackupService

    missing = dataclasses.replace(settings, locator=f"sqlite://{tmp_path / 'gone.db'}")
    result = await BackupService(missing, database=handle, events=events).create_backup()

    assert result.success is False
    assert "not found" in result.error
    assert _artifacts(settings.backup_dir) == []
    assert recorder.names()[-1] == BACKUP_ERROR


@pytest.mark.asyncio
async def test_version_mismatch_discards_partial_file(settings, handle, events, recorder):
    service = script_service(settings, handle, events, ScriptEngine(VERSION_MISMATCH))

    result = await service.create_backup()

    assert result.success is False
    assert isinstance(result.exception, ProcessError)
    assert "version mismatch" in result.error
    assert "upgrade your local client tools" in result.error
    assert _artifacts(settings.backup_dir) == []
    assert recorder.of(BACKUP_ERROR)[0]["error"] == result.error


@pytest.mark.asyncio
async def test_non_zero_exit(settings, handle, events):
    engine = ScriptEngine("import sys; sys.stderr.write('FATAL: password authentication failed'); sys.exit(1)")

    result = await script_service(settings, handle, events, engine).create_backup()

    assert result.success is False
    assert result.error == "dump-script failed with code 1: FATAL: password authentication failed"
    assert result.exception.returncode == 1


@pytest.mark.asyncio
async def test_progress_events_while_dump_grows(settings, handle, events, recorder):
    engine = ScriptEngine(SLOW_DUMP)
    service = script_service(dataclasses.replace(settings, compress=False), handle, events, engine)

    result = await service.create_backup()

    assert result.success, result.error
    assert result.metadata.size == 100_000
    progress = recorder.of(BACKUP_PROGRESS)
    assert progress
    assert all(p["filename"] == result.metadata.filename for p in progress)
    assert all(p["status"] == "in_progress" for p in progress)

    # Nothing is published once the backup has returned
    count = len(recorder.events)
    await asyncio.sleep(0.1)
    assert len(recorder.events) == count


@pytest.mark.asyncio
async def test_concurrent_backups_of_different_cadences(service, settings, tmp_path):
    daily, weekly = await asyncio.gather(service.create_backup("daily"), service.create_backup("weekly"))

    assert daily.success, daily.error
    assert weekly.success, weekly.error
    assert daily.metadata.filename != weekly.metadata.filename
    assert set(_artifacts(settings.backup_dir)) == {daily.metadata.filename, weekly.metadata.filename}

    for result in (daily, weekly):
        assert service.verify_backup(result.metadata.filename)
        assert result.metadata.size == result.metadata.filepath.stat().st_size
        copy = tmp_path / f"{result.metadata.cadence.value}.db"
        copy.write_bytes(gzip.decompress(result.metadata.filepath.read_bytes()))
        assert read_rows(copy) == [(1, "Alien"), (2, "Heat"), (3, "Ran")]


@pytest.mark.asyncio
async def test_empty_database(tmp_path, handle, events):
    from dumpvault.core.service import BackupService

    db_path = tmp_path / "empty.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE media (id INTEGER PRIMARY KEY, title TEXT NOT NULL)")
    conn.commit()
    conn.close()
    settings = BackupSettings(locator=f"sqlite://{db_path}", backup_dir=tmp_path / "backups", log_file=None)

    result = await BackupService(settings, database=handle, events=events).create_backup("manual")

    assert result.success, result.error
    assert result.metadata.verified is True
    assert result.metadata.size > 0


@pytest.mark.asyncio
async def test_failed_rotation_deletes_are_returned(service, settings, monkeypatch):
    settings.backup_dir.mkdir()
    start = time.time() - 86400
    old = [f"backup-daily-2026-10-{day:02d}T02-00-00-000000Z.db.gz" for day in range(1, 9)]
    for i, name in enumerate(old):
        write_artifact(settings.backup_dir, name, start + i * 60)
    original_unlink = Path.unlink

    def unlink(self, *args, **kwargs):
        if self.name in old:
            raise PermissionError("read-only")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", unlink)

    result = await service.create_backup("daily")

    assert result.success, result.error
    assert sorted(result.diagnostics) == [f"{old[0]}: read-only", f"{old[1]}: read-only"]
    assert (settings.backup_dir / old[0]).exists()


@pytest.mark.asyncio
async def test_clean_backup_has_no_diagnostics(service):
    result = await service.create_backup("daily")

    assert result.success
    assert result.diagnostics == []


@pytest.mark.asyncio
async def test_scheduled_backup_rotates_its_cadence(service, settings):
    settings.backup_dir.mkdir()
    start = time.time() - 86400
    old = [f"backup-daily-2026-10-{day:02d}T02-00-00-000000Z.db.gz" for day in range(1, 8)]
    for i, name in enumerate(old):
        write_artifact(settings.backup_dir, name, start + i * 60)
    write_artifact(settings.backup_dir, "backup-manual-2026-10-01T09-00-00-000000Z.db.gz", start - 60)

    result = await service.create_backup("daily")

    remaining = _artifacts(settings.backup_dir)
    assert result.metadata.filename in remaining
    assert old[0] not in remaining
    assert old[1] in remaining
    assert len([n for n in remaining if "-daily-" in n]) == 7
    assert "backup-manual-2026-10-01T09-00-00-000000Z.db.gz" in remaining


@pytest.mark.asyncio
async def test_backup_dir_that_cannot_be_created(settings, handle, events, tmp_path):
    from dumpvault.core.service import BackupService

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    service = BackupService(dataclasses.replace(settings, backup_dir=blocker / "backups"), database=handle, events=events)

    result = await service.create_backup()

    assert result.success is False
    assert isinstance(result.exception, DirectoryError)


@pytest.mark.asyncio
async def test_invalid_cadence(service):
    result = await service.create_backup("hourly")

    assert result.success is False
    assert isinstance(result.exception, ValueError)


class TestProgressMonitor:
    def test_poll_threshold(self, tmp_path):
        path = tmp_path / "growing.sql"
        seen = []
        events = EventBroadcaster()
        events.subscribe(lambda event, payload: seen.append(payload["sizeText"]))
        monitor = ProgressMonitor(path, "growing.sql", events, threshold=1024)

        assert monitor.poll() is False  # not created yet

        path.write_bytes(b"x" * 10)
        assert monitor.poll() is True  # first growth always reported

        path.write_bytes(b"x" * 500)
        assert monitor.poll() is False  # below threshold

        path.write_bytes(b"x" * 2048)
        assert monitor.poll() is True
        assert monitor.poll() is False  # no growth

        assert seen == ["10 Bytes", "2.00 KB"]
        assert monitor.reported_bytes == 2048

    @pytest.mark.asyncio
    async def test_stops_on_exit(self, tmp_path):
        path = tmp_path / "growing.sql"
        path.write_bytes(b"x" * 4096)
        monitor = ProgressMonitor(path, "growing.sql", EventBroadcaster(), interval=0.01, initial_delay=0.0)

        async with monitor:
            assert monitor.running
            await asyncio.sleep(0.05)

        assert not monitor.running
        assert monitor.reports == 1
        await monitor.stop()  # second stop is a no-op

    @pytest.mark.asyncio
    async def test_stops_when_body_raises(self, tmp_path):
        monitor = ProgressMonitor(tmp_path / "x.sql", "x.sql", EventBroadcaster(), interval=0.01, initial_delay=0.0)

        with pytest.raises(RuntimeError):
            async with monitor:
                raise RuntimeError("dump failed")

        assert not monitor.running
