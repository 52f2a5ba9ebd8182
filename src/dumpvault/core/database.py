"""Shared database-handle collaborators.

The handle is process-wide state: only the restore path changes its
connectivity, the backup path merely asks it to checkpoint.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class DatabaseHandle(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def checkpoint(self) -> None: ...


class NullDatabaseHandle:
    """Handle for processes that hold no long-lived connection of their own (e.g. the CLI)"""

    def __init__(self):
        self.logger = logging.getLogger("DatabaseHandle")
        self.connected = True

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def checkpoint(self) -> None:
        self.logger.debug("No checkpoint required")


class SqliteDatabaseHandle:
    """Owns the application's connection to an embedded SQLite database"""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.logger = logging.getLogger("DatabaseHandle")
        self._conn: sqlite3.Connection | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Not connected to {self.path}")
        return self._conn

    async def connect(self) -> None:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self.logger.debug(f"Connected to {self.path}")

    async def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self.logger.debug(f"Disconnected from {self.path}")

    async def checkpoint(self) -> None:
        """Fold the write-ahead log into the main database file"""
        if self._conn is None:
            return
        await asyncio.to_thread(self._conn.execute, "PRAGMA wal_checkpoint(TRUNCATE)")
