import uuid
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cloudstore.db import Database

logger = logging.getLogger(__name__)

@dataclass
class FileRecord:
    file_name: str
    file_path: str
    owner_id: str
    mime_type: Optional[str] = None
    size: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    upload_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ai_tags: List[str] = field(default_factory=list)

    @property
    def is_tagged(self) -> bool:
        return bool(self.ai_tags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "mime_type": self.mime_type,
            "size": self.size,
            "upload_date": self.upload_date.isoformat(),
            "owner_id": self.owner_id,
            "ai_tags": list(self.ai_tags),
        }

def _row_to_record(row) -> FileRecord:
    # sqlite3.Row and psycopg2 RealDictRow both support access by column name
    try:
        tags = json.loads(row["ai_tags"] or "[]")
    except (TypeError, ValueError):
        logger.warning(f"File {row['id']}: unreadable ai_tags column, treating as untagged")
        tags = []

    return FileRecord(
        id=row["id"],
        file_name=row["file_name"],
        file_path=row["file_path"],
        mime_type=row["mime_type"],
        size=row["size"] or 0,
        upload_date=datetime.fromisoformat(row["upload_date"]),
        owner_id=row["owner_id"],
        ai_tags=tags,
    )

class FileRepository:
    """
    File Record persistence on top of a connected Database.
    save() is an upsert by id that rewrites every column.
    """

    def __init__(self, database: Database):
        self.database = database

    def find_by_id(self, file_id: str) -> Optional[FileRecord]:
        with self.database.connection() as conn:
            row = conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        if not row:
            return None
        return _row_to_record(row)

    def save(self, record: FileRecord) -> FileRecord:
        args = (
            record.id,
            record.file_name,
            record.file_path,
            record.mime_type,
            record.size,
            record.upload_date.isoformat(),
            record.owner_id,
            json.dumps(record.ai_tags),
        )
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO files (id, file_name, file_path, mime_type, size, upload_date, owner_id, ai_tags)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    file_name = excluded.file_name,
                    file_path = excluded.file_path,
                    mime_type = excluded.mime_type,
                    size = excluded.size,
                    upload_date = excluded.upload_date,
                    owner_id = excluded.owner_id,
                    ai_tags = excluded.ai_tags
                """,
                args
            )
            conn.commit()
        return record

    def list_by_owner(self, owner_id: str) -> List[FileRecord]:
        """Newest upload first."""
        with self.database.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE owner_id = ? ORDER BY upload_date DESC",
                (owner_id,)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def delete(self, file_id: str) -> bool:
        with self.database.connection() as conn:
            cursor = conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"File {file_id} deleted from result store.")
        return deleted
