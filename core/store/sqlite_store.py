from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.restore.result import RestoreResult


class RestoreState:
    """Petit helper pour stocker l'état des restaurations dans SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def ensure_schema(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS restores (
                    name TEXT PRIMARY KEY,
                    backup_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    message TEXT,
                    warnings TEXT NOT NULL DEFAULT '{}',
                    errors TEXT NOT NULL DEFAULT '{}'
                )
                """
            )

    def upsert_status(self, name: str, backup_name: str, status: str, message: str) -> None:
        timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO restores(name, backup_name, status, updated_at, message)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    backup_name=excluded.backup_name,
                    status=excluded.status,
                    updated_at=excluded.updated_at,
                    message=excluded.message
                """,
                (name, backup_name, status, timestamp, message),
            )

    def record_result(self, name: str, warnings: RestoreResult, errors: RestoreResult) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE restores SET warnings = ?, errors = ? WHERE name = ?",
                (
                    json.dumps(warnings.to_dict(), ensure_ascii=False),
                    json.dumps(errors.to_dict(), ensure_ascii=False),
                    name,
                ),
            )

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT name, backup_name, status, updated_at, message, warnings, errors FROM restores WHERE name = ?",
                (name,),
            ).fetchone()
            return _decode_row(row) if row else None

    def list_restores(self) -> List[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT name, backup_name, status, updated_at, message, warnings, errors FROM restores ORDER BY updated_at DESC"
            ).fetchall()
            return [_decode_row(row) for row in rows]


def _decode_row(row: sqlite3.Row) -> Dict[str, Any]:
    payload = dict(row)
    payload["warnings"] = RestoreResult.from_dict(json.loads(payload["warnings"] or "{}"))
    payload["errors"] = RestoreResult.from_dict(json.loads(payload["errors"] or "{}"))
    return payload
