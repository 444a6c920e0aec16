#!/usr/bin/env python3
"""
SQLite cache for time entries, projects and sync metadata.
"""

from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from .models import Project, TimeEntry, format_timestamp, parse_timestamp

DATA_DIR_ENV_VAR = "TIMEGURU_DATA_DIR"
DATABASE_NAME = "timeguru.db"
CONNECT_TIMEOUT = 10.0

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS time_entries (
        id INTEGER PRIMARY KEY,
        workspace_id INTEGER NOT NULL,
        project_id INTEGER,
        task_id INTEGER,
        billable INTEGER NOT NULL,
        start TEXT NOT NULL,
        stop TEXT,
        duration INTEGER NOT NULL,
        description TEXT,
        tags TEXT,
        tag_ids TEXT,
        user_id INTEGER NOT NULL,
        at TEXT NOT NULL,
        synced_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_time_entries_start ON time_entries(start)",
    "CREATE INDEX IF NOT EXISTS idx_time_entries_project_id ON time_entries(project_id)",
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY,
        workspace_id INTEGER NOT NULL,
        client_id INTEGER,
        name TEXT NOT NULL,
        is_private INTEGER NOT NULL,
        active INTEGER NOT NULL,
        at TEXT,
        created_at TEXT,
        color TEXT NOT NULL,
        billable INTEGER,
        synced_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_metadata (
        resource_type TEXT PRIMARY KEY,
        last_sync TEXT NOT NULL,
        last_entry_id INTEGER
    )
    """,
)

ENTRY_COLUMNS = (
    "id, workspace_id, project_id, task_id, billable, start, stop, duration, "
    "description, tags, tag_ids, user_id, at"
)
PROJECT_COLUMNS = (
    "id, workspace_id, client_id, name, is_private, active, at, created_at, color, billable"
)


def get_data_dir() -> Path:
    """
    Return the directory holding the cache database.

    Returns
    -------
    Path
        Data directory path.
    """
    override = os.environ.get(DATA_DIR_ENV_VAR, "").strip()
    if override:
        return Path(os.path.expandvars(os.path.expanduser(override)))
    return Path.home() / ".local" / "share" / "timeguru"


def get_database_path() -> Path:
    return get_data_dir() / DATABASE_NAME


def _dump_list(values: Optional[Sequence[Any]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(list(values))


def _load_list(value: Optional[str], cast) -> Optional[tuple]:
    if value is None:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, list):
        return None
    return tuple(cast(item) for item in data)


def _now_text() -> str:
    return format_timestamp(datetime.now(timezone.utc))


@dataclass(frozen=True)
class SyncMetadata:
    resource_type: str
    last_sync: Optional[datetime]
    last_entry_id: Optional[int]


class TimeGuruStore:
    """
    SQLite-backed cache of remote data.

    Each operation opens its own connection and commits its own
    transaction, so separate CLI processes serialize through SQLite locks.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_database_path()

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path, timeout=CONNECT_TIMEOUT)

    def ensure_schema(self) -> None:
        """
        Ensure the SQLite schema exists.
        """
        with self._connect() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.commit()

    def save_time_entries(self, entries: Iterable[TimeEntry]) -> int:
        """
        Upsert time entries keyed by id.

        Parameters
        ----------
        entries : Iterable[TimeEntry]
            Entries to persist.

        Returns
        -------
        int
            Number of entries written.
        """
        self.ensure_schema()
        synced_at = _now_text()
        rows = [
            (
                entry.id,
                entry.workspace_id,
                entry.project_id,
                entry.task_id,
                int(entry.billable),
                format_timestamp(entry.start),
                format_timestamp(entry.stop) if entry.stop else None,
                entry.duration,
                entry.description,
                _dump_list(entry.tags),
                _dump_list(entry.tag_ids),
                entry.user_id,
                format_timestamp(entry.at),
                synced_at,
            )
            for entry in entries
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO time_entries (
                    id, workspace_id, project_id, task_id, billable, start, stop,
                    duration, description, tags, tag_ids, user_id, at, synced_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    def get_time_entries(
        self,
        range_start: datetime,
        range_end: datetime,
        user_id: Optional[int] = None,
    ) -> List[TimeEntry]:
        """
        Fetch entries starting within a range, newest first.

        Parameters
        ----------
        range_start : datetime
            Range start (inclusive).
        range_end : datetime
            Range end (inclusive).
        user_id : Optional[int], optional
            Restrict to one user's entries.

        Returns
        -------
        List[TimeEntry]
            Matching entries ordered by descending start.

        Raises
        ------
        ValueError
            If a stored row cannot be parsed.
        """
        self.ensure_schema()
        query = f"SELECT {ENTRY_COLUMNS} FROM time_entries WHERE start >= ? AND start <= ?"
        params: List[Any] = [format_timestamp(range_start), format_timestamp(range_end)]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY start DESC"
        with self._connect() as conn:
            return [self._entry_from_row(row) for row in conn.execute(query, params)]

    @staticmethod
    def _entry_from_row(row: Sequence[Any]) -> TimeEntry:
        start = parse_timestamp(row[5])
        if start is None:
            raise ValueError(f"Stored time entry {row[0]} has an invalid start timestamp.")
        return TimeEntry(
            id=int(row[0]),
            workspace_id=int(row[1]),
            project_id=row[2],
            task_id=row[3],
            billable=bool(row[4]),
            start=start,
            stop=parse_timestamp(row[6]),
            duration=int(row[7]),
            description=row[8],
            tags=_load_list(row[9], str),
            tag_ids=_load_list(row[10], int),
            user_id=int(row[11]),
            at=parse_timestamp(row[12]) or start,
        )

    def save_projects(self, projects: Iterable[Project]) -> int:
        self.ensure_schema()
        synced_at = _now_text()
        rows = [
            (
                project.id,
                project.workspace_id,
                project.client_id,
                project.name,
                int(project.is_private),
                int(project.active),
                format_timestamp(project.at) if project.at else None,
                format_timestamp(project.created_at) if project.created_at else None,
                project.color,
                None if project.billable is None else int(project.billable),
                synced_at,
            )
            for project in projects
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO projects (
                    id, workspace_id, client_id, name, is_private, active, at,
                    created_at, color, billable, synced_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    @staticmethod
    def _project_from_row(row: Sequence[Any]) -> Project:
        return Project(
            id=int(row[0]),
            workspace_id=int(row[1]),
            client_id=row[2],
            name=str(row[3]),
            is_private=bool(row[4]),
            active=bool(row[5]),
            at=parse_timestamp(row[6]),
            created_at=parse_timestamp(row[7]),
            color=str(row[8]),
            billable=None if row[9] is None else bool(row[9]),
        )

    def get_projects(self, include_inactive: bool = False) -> List[Project]:
        """
        Return cached projects ordered by name.

        Parameters
        ----------
        include_inactive : bool, optional
            Include archived projects (default: False).

        Returns
        -------
        List[Project]
            Cached projects.
        """
        self.ensure_schema()
        query = f"SELECT {PROJECT_COLUMNS} FROM projects"
        if not include_inactive:
            query += " WHERE active = 1"
        query += " ORDER BY name"
        with self._connect() as conn:
            return [self._project_from_row(row) for row in conn.execute(query)]

    def get_project(self, project_id: int) -> Optional[Project]:
        self.ensure_schema()
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return self._project_from_row(row) if row else None

    def update_sync_metadata(
        self,
        resource_type: str,
        last_entry_id: Optional[int] = None,
    ) -> None:
        self.ensure_schema()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sync_metadata (resource_type, last_sync, last_entry_id)
                VALUES (?, ?, ?)
                """,
                (resource_type, _now_text(), last_entry_id),
            )
            conn.commit()

    def get_sync_metadata(self, resource_type: str) -> Optional[SyncMetadata]:
        self.ensure_schema()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT resource_type, last_sync, last_entry_id FROM sync_metadata "
                "WHERE resource_type = ?",
                (resource_type,),
            ).fetchone()
        if not row:
            return None
        return SyncMetadata(
            resource_type=str(row[0]),
            last_sync=parse_timestamp(row[1]),
            last_entry_id=row[2],
        )

    def _update_entry_column(self, entry_id: int, column: str, value: Any) -> bool:
        self.ensure_schema()
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE time_entries SET {column} = ?, synced_at = ? WHERE id = ?",
                (value, _now_text(), entry_id),
            )
            conn.commit()
            return bool(cursor.rowcount)

    def update_time_entry_project(self, entry_id: int, project_id: Optional[int]) -> bool:
        """
        Rewrite one entry's project in place.

        Returns
        -------
        bool
            True when a cached row was updated.
        """
        return self._update_entry_column(entry_id, "project_id", project_id)

    def update_time_entry_description(self, entry_id: int, description: str) -> bool:
        return self._update_entry_column(entry_id, "description", description)
