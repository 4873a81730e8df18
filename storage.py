"""
Local storage for produced videos and avatar images (SQLite)
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from config import DB_PATH

KINDS = ("video", "fullclip", "shorts", "avatar")

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    filename TEXT NOT NULL,
    original_filename TEXT NOT NULL DEFAULT '',
    display_name TEXT,
    language TEXT NOT NULL DEFAULT '',
    duration REAL NOT NULL DEFAULT 0,
    mime_type TEXT NOT NULL,
    created_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    data BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_records_kind ON records (kind, created_at);
"""


@dataclass
class StoredRecord:
    id: int
    kind: str
    filename: str
    mime_type: str
    created_at: str
    original_filename: str = ""
    display_name: Optional[str] = None
    language: str = ""
    duration: float = 0.0
    metadata: Dict = field(default_factory=dict)
    data: Optional[bytes] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data) if self.data is not None else 0

    def to_dict(self, include_data: bool = False) -> dict:
        result = {
            "id": self.id,
            "kind": self.kind,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "display_name": self.display_name,
            "language": self.language,
            "duration": self.duration,
            "mime_type": self.mime_type,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }
        if include_data:
            result["data"] = self.data
        return result


def _check_kind(kind: str):
    if kind not in KINDS:
        raise ValueError(f"Unknown record kind {kind!r}; expected one of {', '.join(KINDS)}")


class VideoStore:
    """save / list_by_kind / get / delete over one SQLite file"""

    def __init__(self, db_path=DB_PATH):
        self.db_path = Path(db_path)
        if self.db_path.parent != Path("."):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def save(self, kind: str, metadata: dict, data: bytes) -> int:
        """
        Store an artifact and return its id.

        Well-known metadata keys (filename, original_filename, display_name,
        language, duration, mime_type) become columns; everything else is
        kept as JSON.
        """
        _check_kind(kind)
        metadata = dict(metadata)
        filename = metadata.pop("filename", None) or f"{kind}-{datetime.now():%Y%m%d-%H%M%S}"
        columns = (
            kind,
            filename,
            metadata.pop("original_filename", ""),
            metadata.pop("display_name", None),
            metadata.pop("language", ""),
            float(metadata.pop("duration", 0.0)),
            metadata.pop("mime_type", "application/octet-stream"),
            datetime.now().isoformat(timespec="microseconds"),
            json.dumps(metadata),
            sqlite3.Binary(data),
        )
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO records (kind, filename, original_filename, display_name, language,"
                " duration, mime_type, created_at, metadata, data)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                columns,
            )
            record_id = cursor.lastrowid
        print(f"      [Storage] Saved {kind} #{record_id} ({filename}, {len(data) / 1024:.1f} KB)")
        return record_id

    def list_by_kind(self, kind: str, include_data: bool = False) -> List[StoredRecord]:
        """Newest first"""
        _check_kind(kind)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM records WHERE kind = ? ORDER BY created_at DESC, id DESC", (kind,)
            ).fetchall()
        return [self._to_record(row, include_data) for row in rows]

    def get(self, record_id: int) -> Optional[StoredRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        return self._to_record(row, True) if row is not None else None

    def delete(self, record_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            print(f"      [Storage] Deleted record #{record_id}")
        return deleted

    def clear_kind(self, kind: str) -> int:
        _check_kind(kind)
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM records WHERE kind = ?", (kind,))
            return cursor.rowcount

    def stats(self) -> Dict[str, int]:
        """Record count per kind plus the total stored bytes"""
        counts = {kind: 0 for kind in KINDS}
        with self._connect() as conn:
            for row in conn.execute("SELECT kind, COUNT(*) AS n FROM records GROUP BY kind"):
                counts[row["kind"]] = row["n"]
            size = conn.execute("SELECT COALESCE(SUM(LENGTH(data)), 0) FROM records").fetchone()[0]
        counts["total_bytes"] = size
        return counts

    @staticmethod
    def _to_record(row: sqlite3.Row, include_data: bool) -> StoredRecord:
        return StoredRecord(
            id=row["id"],
            kind=row["kind"],
            filename=row["filename"],
            original_filename=row["original_filename"],
            display_name=row["display_name"],
            language=row["language"],
            duration=row["duration"],
            mime_type=row["mime_type"],
            created_at=row["created_at"],
            metadata=json.loads(row["metadata"] or "{}"),
            data=bytes(row["data"]) if include_data else None,
        )
