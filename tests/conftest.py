"""Shared fixtures: a real SQLite database and script-driven process engines."""

import gzip
import os
import sqlite3
import sys
from pathlib import Path

import pytest

from dumpvault.core.config_manager import BackupSettings
from dumpvault.core.engines import ProcessEngine
from dumpvault.core.service import BackupService
from dumpvault.utils.notifications import EventBroadcaster


class EventRecorder:
    """EventBroadcaster subscriber that keeps everything it sees"""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event, payload):
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict]:
        return [payload for event, payload in self.events if event == name]


class RecordingHandle:
    """Database handle that only records what was asked of it"""

    def __init__(self):
        self.connected = True
        self.calls: list[str] = []

    async def connect(self):
        self.calls.append("connect")
        self.connected = True

    async def disconnect(self):
        self.calls.append("disconnect")
        self.connected = False

    async def checkpoint(self):
        self.calls.append("checkpoint")


class ScriptEngine(ProcessEngine):
    """Process engine whose dump/restore tools are small python scripts"""

    name = "script"
    dump_tool = "dump-script"
    restore_tool = "restore-script"

    def __init__(self, dump_script: str, restore_script: str = "import sys; sys.stdin.buffer.read()"):
        self.dump_script = dump_script
        self.restore_script = restore_script

    def dump_command(self) -> list[str]:
        return [sys.executable, "-c", self.dump_script]

    def restore_command(self) -> list[str]:
        return [sys.executable, "-c", self.restore_script]


def write_artifact(directory: Path, filename: str, mtime: float, payload: bytes = b"-- dump\n") -> Path:
    """Place a well-formed artifact with a given modification time"""
    path = directory / filename
    path.write_bytes(gzip.compress(payload) if filename.endswith(".gz") else payload)
    os.utime(path, (mtime, mtime))
    return path


def read_rows(db_path: Path) -> list[tuple]:
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute("SELECT id, title FROM media ORDER BY id").fetchall()
    finally:
        conn.close()


@pytest.fixture
def sqlite_db(tmp_path):
    db_path = tmp_path / "app.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE media (id INTEGER PRIMARY KEY, title TEXT NOT NULL)")
    conn.executemany("INSERT INTO media (title) VALUES (?)", [("Alien",), ("Heat",), ("Ran",)])
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / "backups"


@pytest.fixture
def settings(sqlite_db, backup_dir):
    return BackupSettings(
        locator=f"sqlite://{sqlite_db}",
        backup_dir=backup_dir,
        progress_interval=0.01,
        progress_initial_delay=0.01,
        log_file=None,
    )


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def events(recorder):
    broadcaster = EventBroadcaster()
    broadcaster.subscribe(recorder)
    return broadcaster


@pytest.fixture
def handle():
    return RecordingHandle()


@pytest.fixture
def service(settings, handle, events):
    return BackupService(settings, database=handle, events=events)


def script_service(settings: BackupSettings, handle, events, engine: ScriptEngine) -> BackupService:
    """Service whose engine is replaced by ``engine``, keeping the configured settings"""
    return BackupService(settings, database=handle, events=events, engine_factory=lambda _settings: engine)
