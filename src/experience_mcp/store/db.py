"""SQLite access layer for records, links, builder app files and work items."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Mapping, Sequence

from experience_mcp.store.models import (
    AppFile,
    Record,
    RecordLink,
    WorkItem,
    normalize_name,
)
from experience_mcp.utils.serialization import json_default
from experience_mcp.utils.time import utc_now_iso

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


def _dumps(value: object) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=json_default, ensure_ascii=False)


def _loads(value: str | None) -> object:
    if value is None:
        return None
    return json.loads(value)


def _new_id() -> str:
    return uuid.uuid4().hex


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS records (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                type TEXT NOT NULL,
                subtype TEXT,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL,
                custom_properties TEXT NOT NULL,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS record_links (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                from_id TEXT NOT NULL,
                to_id TEXT NOT NULL,
                link_type TEXT NOT NULL,
                created_by TEXT,
                created_at TEXT NOT NULL,
                UNIQUE(from_id, to_id, link_type),
                FOREIGN KEY(from_id) REFERENCES records(id),
                FOREIGN KEY(to_id) REFERENCES records(id)
            );

            CREATE TABLE IF NOT EXISTS app_files (
                app_id TEXT NOT NULL,
                path TEXT NOT NULL,
                content TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY(app_id, path),
                FOREIGN KEY(app_id) REFERENCES records(id)
            );

            CREATE TABLE IF NOT EXISTS work_items (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                conversation_id TEXT,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                preview_data TEXT NOT NULL,
                results TEXT,
                progress TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_records_org_type_updated
                ON records(organization_id, type, updated_at);
            CREATE INDEX IF NOT EXISTS idx_records_natural_key
                ON records(organization_id, type, name_key);
            CREATE INDEX IF NOT EXISTS idx_record_links_from ON record_links(from_id);
            CREATE INDEX IF NOT EXISTS idx_work_items_org_status
                ON work_items(organization_id, status);
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> int:
        with self._lock:
            cursor = self._conn.execute(query, params)
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    # Records

    def create_record(
        self,
        organization_id: str,
        type: str,
        name: str,
        *,
        subtype: str | None = None,
        description: str = "",
        status: str = "draft",
        custom_properties: dict[str, object] | None = None,
        created_by: str | None = None,
    ) -> Record:
        now = utc_now_iso()
        record = Record(
            id=_new_id(),
            organization_id=organization_id,
            type=type,
            subtype=subtype,
            name=name,
            description=description or "",
            status=status,
            custom_properties=dict(custom_properties or {}),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.execute(
            """
            INSERT INTO records (
                id, organization_id, type, subtype, name, name_key, description,
                status, custom_properties, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.organization_id,
                record.type,
                record.subtype,
                record.name,
                record.name_key,
                record.description,
                record.status,
                _dumps(record.custom_properties),
                record.created_by,
                record.created_at,
                record.updated_at,
            ),
        )
        return record

    def get_record(self, organization_id: str, record_id: str) -> Record | None:
        row = self.fetch_one(
            "SELECT * FROM records WHERE id = ? AND organization_id = ?",
            (record_id, organization_id),
        )
        return _row_to_record(row) if row is not None else None

    def list_records(
        self,
        organization_id: str,
        type: str,
        limit: int | None = None,
    ) -> list[Record]:
        query = (
            "SELECT * FROM records WHERE organization_id = ? AND type = ? "
            "ORDER BY updated_at DESC, rowid DESC"
        )
        params: list[_SqlValue] = [organization_id, type]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [_row_to_record(row) for row in self.fetch_all(query, params)]

    def find_records_by_name_key(
        self,
        organization_id: str,
        type: str,
        name: str,
    ) -> list[Record]:
        rows = self.fetch_all(
            (
                "SELECT * FROM records WHERE organization_id = ? AND type = ? "
                "AND name_key = ? ORDER BY updated_at DESC, rowid DESC"
            ),
            (organization_id, type, normalize_name(name)),
        )
        return [_row_to_record(row) for row in rows]

    def find_record_by_signature(
        self,
        organization_id: str,
        type: str,
        signature: str,
    ) -> Record | None:
        row = self.fetch_one(
            (
                "SELECT * FROM records WHERE organization_id = ? AND type = ? "
                "AND json_extract(custom_properties, '$.orchestration.signature') = ? "
                "ORDER BY updated_at DESC LIMIT 1"
            ),
            (organization_id, type, signature),
        )
        return _row_to_record(row) if row is not None else None

    def update_record(
        self,
        organization_id: str,
        record_id: str,
        *,
        status: str | None = None,
        custom_properties: dict[str, object] | None = None,
    ) -> Record | None:
        """Update status and/or customProperties; returns None if not found."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM records WHERE id = ? AND organization_id = ?",
                (record_id, organization_id),
            ).fetchone()
            if row is None:
                return None
            record = _row_to_record(row)
            if status is not None:
                record.status = status
            if custom_properties is not None:
                record.custom_properties = dict(custom_properties)
            record.updated_at = utc_now_iso()
            self._conn.execute(
                """
                UPDATE records SET status = ?, custom_properties = ?, updated_at = ?
                WHERE id = ? AND organization_id = ?
                """,
                (
                    record.status,
                    _dumps(record.custom_properties),
                    record.updated_at,
                    record_id,
                    organization_id,
                ),
            )
            self._conn.commit()
            return record

    # Links

    def link_records(
        self,
        organization_id: str,
        from_id: str,
        to_ids: Sequence[str],
        link_type: str,
        created_by: str | None = None,
    ) -> int:
        """Create missing links; returns the number of new links."""
        now = utc_now_iso()
        created = 0
        with self._lock:
            for to_id in to_ids:
                cursor = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO record_links (
                        id, organization_id, from_id, to_id, link_type,
                        created_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (_new_id(), organization_id, from_id, to_id, link_type, created_by, now),
                )
                created += cursor.rowcount
            self._conn.commit()
        return created

    def list_links(
        self,
        organization_id: str,
        from_id: str,
        link_type: str | None = None,
    ) -> list[RecordLink]:
        query = "SELECT * FROM record_links WHERE organization_id = ? AND from_id = ?"
        params: list[_SqlValue] = [organization_id, from_id]
        if link_type is not None:
            query += " AND link_type = ?"
            params.append(link_type)
        query += " ORDER BY created_at, rowid"
        return [RecordLink(**dict(row)) for row in self.fetch_all(query, params)]

    # Builder app files

    def put_app_files(self, app_id: str, files: Sequence[AppFile]) -> None:
        now = utc_now_iso()
        with self._lock:
            self._conn.executemany(
                """
                INSERT INTO app_files (app_id, path, content, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(app_id, path) DO UPDATE SET
                    content = excluded.content, updated_at = excluded.updated_at
                """,
                [(app_id, f.path, f.content, now) for f in files],
            )
            self._conn.commit()

    def get_app_files(self, app_id: str) -> list[AppFile]:
        rows = self.fetch_all(
            "SELECT path, content FROM app_files WHERE app_id = ? ORDER BY path",
            (app_id,),
        )
        return [AppFile(path=row["path"], content=row["content"]) for row in rows]

    # Work items

    def create_work_item(self, item: WorkItem) -> None:
        self.execute(
            """
            INSERT INTO work_items (
                id, organization_id, user_id, conversation_id, type, name, status,
                preview_data, results, progress, created_at, updated_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.organization_id,
                item.user_id,
                item.conversation_id,
                item.type,
                item.name,
                item.status,
                _dumps(item.preview_data),
                _dumps(item.results),
                _dumps(item.progress),
                item.created_at,
                item.updated_at,
                item.completed_at,
            ),
        )

    def get_work_item(self, work_item_id: str) -> WorkItem | None:
        row = self.fetch_one("SELECT * FROM work_items WHERE id = ?", (work_item_id,))
        if row is None:
            return None
        data = dict(row)
        return WorkItem(
            id=data["id"],
            organization_id=data["organization_id"],
            user_id=data["user_id"],
            conversation_id=data["conversation_id"],
            type=data["type"],
            name=data["name"],
            status=data["status"],
            preview_data=_loads(data["preview_data"]) or [],
            results=_loads(data["results"]),
            progress=_loads(data["progress"]),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            completed_at=data["completed_at"],
        )

    def update_work_item(
        self,
        work_item_id: str,
        *,
        status: str,
        results: dict[str, object] | None,
        progress: dict[str, int] | None,
        completed_at: str | None,
    ) -> None:
        # completed_at is written only while it is still NULL.
        self.execute(
            """
            UPDATE work_items
            SET status = ?,
                results = COALESCE(?, results),
                progress = COALESCE(?, progress),
                updated_at = ?,
                completed_at = COALESCE(completed_at, ?)
            WHERE id = ?
            """,
            (
                status,
                _dumps(results),
                _dumps(progress),
                utc_now_iso(),
                completed_at,
                work_item_id,
            ),
        )

    def claim_work_item(self, work_item_id: str) -> bool:
        """Atomically transition a preview work item to approved.

        Returns True if exactly one row was updated (the caller won the
        race), False otherwise.
        """
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE work_items SET status = 'approved', updated_at = ? "
                "WHERE id = ? AND status = 'preview'",
                (utc_now_iso(), work_item_id),
            )
            self._conn.commit()
            return cursor.rowcount == 1


def _row_to_record(row: sqlite3.Row) -> Record:
    data = dict(row)
    data.pop("name_key", None)
    data["custom_properties"] = _loads(data["custom_properties"]) or {}
    return Record(**data)
