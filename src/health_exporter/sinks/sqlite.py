"""
SQLite Sink - applies export documents to a local SQLite database.

The ``records`` table is keyed by ``(record_type, record_id)`` so applying
the same document twice leaves the database unchanged. Every delivered
document is also logged in the ``exports`` table.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from health_exporter.core.errors import DeliveryError
from health_exporter.models.document import ExportDocument, ExportKind

logger = logging.getLogger(__name__)


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS records (
    record_type TEXT NOT NULL,
    record_id TEXT NOT NULL,
    timestamp TEXT,
    start_time TEXT,
    end_time TEXT,
    source TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (record_type, record_id)
);
CREATE TABLE IF NOT EXISTS exports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    export_type TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    record_count INTEGER NOT NULL,
    deletion_count INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);
"""

UPSERT_SQL = """
INSERT OR REPLACE INTO records
(record_type, record_id, timestamp, start_time, end_time, source, data, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

DELETE_SQL = "DELETE FROM records WHERE record_id = ?"

LOG_EXPORT_SQL = """
INSERT INTO exports (export_type, generated_at, record_count, deletion_count, applied_at)
VALUES (?, ?, ?, ?, ?)
"""


class SQLiteSink:
    """
    Mirrors exported records into a SQLite database.

    Deletions carry no type, so they remove the id from every type.
    """

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.executescript(CREATE_TABLES_SQL)
        self.conn.commit()
        self.count = 0

    async def deliver(self, document: ExportDocument) -> None:
        """Apply the document in a single transaction."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self.conn:
                for record_type, records in document.sections.items():
                    self.conn.executemany(
                        UPSERT_SQL,
                        [
                            (
                                record_type.value,
                                r.record_id,
                                r.timestamp,
                                r.start_time,
                                r.end_time,
                                r.source,
                                json.dumps(r.to_dict()),
                                now,
                            )
                            for r in records
                        ],
                    )
                if document.kind is ExportKind.DIFFERENTIAL:
                    self.conn.executemany(DELETE_SQL, [(rid,) for rid in document.deletions])
                self.conn.execute(
                    LOG_EXPORT_SQL,
                    (
                        document.kind.value,
                        document.generated_at.isoformat(),
                        document.total_records,
                        len(document.deletions),
                        now,
                    ),
                )
        except sqlite3.Error as e:
            raise DeliveryError(f"SQLite apply failed: {e}", sink=self.name) from e

        self.count += 1
        logger.info(
            f"[SQLite] Applied {document.kind.value} export: "
            f"{document.total_records} upserts, {len(document.deletions)} deletions"
        )

    def last_export(self) -> dict | None:
        """Most recent row of the exports log."""
        row = self.conn.execute(
            "SELECT export_type, generated_at, record_count, deletion_count, applied_at "
            "FROM exports ORDER BY id DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        keys = ("export_type", "generated_at", "record_count", "deletion_count", "applied_at")
        return dict(zip(keys, row))

    async def close(self) -> None:
        """Close the connection."""
        self.conn.close()
        logger.info(f"[SQLite] {self.count} exports applied to {self.db_path}")
