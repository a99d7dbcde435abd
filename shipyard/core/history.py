"""Deployment history storage.

Records are created in ``running`` state when a pipeline starts and updated
exactly once to a terminal status when it ends. There is no delete.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator
from uuid import UUID

from shipyard.config import settings
from shipyard.core.exceptions import (
    HistoryRecordFinalizedError,
    HistoryRecordNotFoundError,
)
from shipyard.models.deployment import (
    DeploymentHistoryRecord,
    DeploymentKind,
    DeploymentStatus,
    HistoryPatch,
)
from shipyard.utils.logging import get_logger

logger = get_logger("history")

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _resolve_db_path(db_path: str | Path) -> Path:
    """Resolve database path relative to project root when not absolute."""
    path = Path(db_path)
    return path if path.is_absolute() else PROJECT_ROOT / path


class DeploymentHistoryStore(ABC):
    """Append-only log of deployment attempts with one terminal update each."""

    @abstractmethod
    async def _insert(self, record: DeploymentHistoryRecord) -> None:
        pass

    @abstractmethod
    async def _replace(self, record: DeploymentHistoryRecord) -> None:
        pass

    @abstractmethod
    async def get(self, record_id: UUID) -> DeploymentHistoryRecord | None:
        """Get a record by ID."""
        pass

    @abstractmethod
    async def list_records(self, limit: int | None = None) -> list[DeploymentHistoryRecord]:
        """List records, most recent first."""
        pass

    async def create(
        self,
        kind: DeploymentKind,
        target: str | None = None,
        host: str | None = None,
        domain: str | None = None,
    ) -> DeploymentHistoryRecord:
        """Create a ``running`` record for a new attempt."""
        record = DeploymentHistoryRecord(
            kind=kind,
            target=target,
            host=host,
            domain=domain,
        )
        await self._insert(record)
        logger.info(
            "history.created",
            record_id=str(record.id),
            kind=kind.value,
            target=target,
        )
        return record

    async def update(self, record_id: UUID, patch: HistoryPatch) -> DeploymentHistoryRecord:
        """Apply the terminal update to a running record."""
        record = await self.get(record_id)
        if record is None:
            raise HistoryRecordNotFoundError(str(record_id))
        if record.status != DeploymentStatus.RUNNING:
            raise HistoryRecordFinalizedError(str(record_id), record.status.value)

        updated = record.model_copy(update=patch.model_dump(exclude_none=True))
        await self._replace(updated)
        logger.info(
            "history.updated",
            record_id=str(record_id),
            status=updated.status.value,
            duration=updated.duration,
        )
        return updated


class InMemoryHistoryStore(DeploymentHistoryStore):
    """Keeps history in process memory; lost on restart."""

    def __init__(self):
        self._records: dict[UUID, DeploymentHistoryRecord] = {}

    async def _insert(self, record: DeploymentHistoryRecord) -> None:
        self._records[record.id] = record

    async def _replace(self, record: DeploymentHistoryRecord) -> None:
        self._records[record.id] = record

    async def get(self, record_id: UUID) -> DeploymentHistoryRecord | None:
        return self._records.get(record_id)

    async def list_records(self, limit: int | None = None) -> list[DeploymentHistoryRecord]:
        records = sorted(
            self._records.values(), key=lambda r: r.start_time, reverse=True
        )
        return records[:limit] if limit is not None else records


class SqliteHistoryStore(DeploymentHistoryStore):
    """History persisted in a SQLite database."""

    def __init__(self, db_path: Path | str):
        self.db_path = _resolve_db_path(db_path)
        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS deployment_history (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    target TEXT,
                    host TEXT,
                    domain TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER,
                    error TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_start
                ON deployment_history(start_time DESC)
            """)
            conn.commit()

        logger.debug("history.initialized", db_path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _row_to_record(self, row: sqlite3.Row) -> DeploymentHistoryRecord:
        return DeploymentHistoryRecord(
            id=UUID(row["id"]),
            kind=DeploymentKind(row["kind"]),
            status=DeploymentStatus(row["status"]),
            target=row["target"],
            host=row["host"],
            domain=row["domain"],
            start_time=datetime.fromisoformat(row["start_time"]),
            end_time=datetime.fromisoformat(row["end_time"]) if row["end_time"] else None,
            duration=row["duration"],
            error=row["error"],
        )

    async def _insert(self, record: DeploymentHistoryRecord) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO deployment_history
                (id, kind, status, target, host, domain, start_time, end_time,
                 duration, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(record.id),
                    record.kind.value,
                    record.status.value,
                    record.target,
                    record.host,
                    record.domain,
                    record.start_time.isoformat(),
                    record.end_time.isoformat() if record.end_time else None,
                    record.duration,
                    record.error,
                ),
            )
            conn.commit()

    async def _replace(self, record: DeploymentHistoryRecord) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE deployment_history
                SET status = ?, end_time = ?, duration = ?, error = ?
                WHERE id = ?
                """,
                (
                    record.status.value,
                    record.end_time.isoformat() if record.end_time else None,
                    record.duration,
                    record.error,
                    str(record.id),
                ),
            )
            conn.commit()

    async def get(self, record_id: UUID) -> DeploymentHistoryRecord | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM deployment_history WHERE id = ?",
                (str(record_id),),
            ).fetchone()
        return self._row_to_record(row) if row else None

    async def list_records(self, limit: int | None = None) -> list[DeploymentHistoryRecord]:
        query = "SELECT * FROM deployment_history ORDER BY start_time DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]


# Singleton instance
_history_store: DeploymentHistoryStore | None = None


def get_history_store() -> DeploymentHistoryStore:
    """Get the configured history store singleton."""
    global _history_store
    if _history_store is None:
        if settings.history_db_path:
            _history_store = SqliteHistoryStore(settings.history_db_path)
        else:
            _history_store = InMemoryHistoryStore()
    return _history_store
