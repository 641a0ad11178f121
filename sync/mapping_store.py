"""Persistence for (site, external id) -> remote product mappings."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Dict, Optional, Protocol, Tuple

from core.types import SyncMapping, SyncStatus
from utils.serialization import json_dumps


class SyncMappingStore(Protocol):
    def get(self, site_id: str, external_id: str) -> Optional[SyncMapping]:
        ...

    def save(self, mapping: SyncMapping) -> None:
        ...


class InMemorySyncMappingStore:
    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], SyncMapping] = {}

    def get(self, site_id: str, external_id: str) -> Optional[SyncMapping]:
        return self._rows.get((site_id, external_id))

    def save(self, mapping: SyncMapping) -> None:
        self._rows[(mapping.site_id, mapping.external_id)] = mapping

    def __len__(self) -> int:
        return len(self._rows)


class SqliteSyncMappingStore:
    """Thin CRUD layer over the ``sync_mapping`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._ensure_table()

    @classmethod
    def from_path(cls, db_path: str = ":memory:") -> "SqliteSyncMappingStore":
        return cls(sqlite3.connect(db_path))

    def _ensure_table(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_mapping (
                site_id TEXT NOT NULL,
                external_id TEXT NOT NULL,
                remote_product_id INTEGER,
                last_sync_status TEXT,
                last_synced_at TEXT,
                last_payload_snapshot TEXT,
                PRIMARY KEY (site_id, external_id)
            )
            """
        )
        self._conn.commit()

    def save(self, mapping: SyncMapping) -> None:
        self._conn.execute(
            """
            INSERT INTO sync_mapping (
                site_id, external_id, remote_product_id,
                last_sync_status, last_synced_at, last_payload_snapshot
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(site_id, external_id) DO UPDATE SET
                remote_product_id = excluded.remote_product_id,
                last_sync_status = excluded.last_sync_status,
                last_synced_at = excluded.last_synced_at,
                last_payload_snapshot = excluded.last_payload_snapshot
            """,
            (
                mapping.site_id,
                mapping.external_id,
                mapping.remote_product_id,
                mapping.last_sync_status.value if mapping.last_sync_status else None,
                mapping.last_synced_at.isoformat() if mapping.last_synced_at else None,
                json_dumps(mapping.last_payload_snapshot or {}),
            ),
        )
        self._conn.commit()

    def get(self, site_id: str, external_id: str) -> Optional[SyncMapping]:
        cur = self._conn.execute(
            """
            SELECT remote_product_id, last_sync_status, last_synced_at, last_payload_snapshot
            FROM sync_mapping WHERE site_id = ? AND external_id = ?
            """,
            (site_id, external_id),
        )
        row = cur.fetchone()
        if not row:
            return None
        remote_id, status, synced_at, snapshot = row
        return SyncMapping(
            site_id=site_id,
            external_id=external_id,
            remote_product_id=remote_id,
            last_sync_status=SyncStatus(status) if status else None,
            last_synced_at=datetime.fromisoformat(synced_at) if synced_at else None,
            last_payload_snapshot=json.loads(snapshot) if snapshot else {},
        )

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM sync_mapping").fetchone()[0]
