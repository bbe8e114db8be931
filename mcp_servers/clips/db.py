import json
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, "data")
DEFAULT_DB_PATH = os.path.join(DEFAULT_DATA_DIR, "sqlite", "clips.db")
SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def _ensure_dir(path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)


class ClipDB:
    """Upsert-by-id record store, one table shared by all collections."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or os.getenv("CLIP_DB_PATH", DEFAULT_DB_PATH)
        _ensure_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                conn.executescript(f.read())

    def upsert(self, record: Dict[str, Any], collection: str = "clips") -> Dict[str, Any]:
        data = dict(record)
        record_id = str(data.get("id") or "").strip() or str(uuid.uuid4())
        now = _now_iso()
        data["id"] = record_id
        with self._connect() as conn:
            row = conn.execute(
                "SELECT created_at FROM clips WHERE id = ? AND collection = ?",
                (record_id, collection),
            ).fetchone()
            created_at = row["created_at"] if row else (data.get("created_at") or now)
            data["created_at"] = created_at
            data["updated_at"] = now
            conn.execute(
                """
                INSERT INTO clips(id, collection, status, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at
                """,
                (record_id, collection, data.get("status"), json.dumps(data), created_at, now),
            )
        return data

    def get(self, record_id: str, collection: str = "clips") -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data_json FROM clips WHERE id = ? AND collection = ?",
                (record_id, collection),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data_json"])

    def list(
        self,
        collection: str = "clips",
        status: Optional[str] = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        params: List[Any] = [collection]
        where = "collection = ?"
        if status:
            where += " AND status = ?"
            params.append(status)
        params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data_json FROM clips WHERE {where} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [json.loads(row["data_json"]) for row in rows]

    def delete(self, record_id: str, collection: str = "clips") -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM clips WHERE id = ? AND collection = ?",
                (record_id, collection),
            )
            return cur.rowcount > 0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
