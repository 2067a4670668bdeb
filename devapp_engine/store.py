from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from .types import DevelopmentRecord

logger = logging.getLogger(__name__)

CREATE_TABLE = (
    "create table if not exists [data] ("
    "[council_reference] text primary key, [address] text, [description] text, "
    "[info_url] text, [comment_url] text, [date_scraped] text, [date_received] text)"
)
INSERT_ROW = "insert or ignore into [data] values (?, ?, ?, ?, ?, ?, ?)"


class RecordStore:
    """sqlite sink keyed by application number; re-inserting a known record is a no-op."""

    def __init__(self, db_path: str | Path = "data.sqlite"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.execute(CREATE_TABLE)
        self._conn.commit()

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def upsert(self, record: DevelopmentRecord) -> bool:
        """Insert ``record`` unless its application number is already stored."""
        cur = self._conn.execute(
            INSERT_ROW,
            (
                record.application_number,
                record.address,
                record.description,
                record.information_url,
                record.comment_url,
                record.scrape_date,
                record.received_date,
            ),
        )
        self._conn.commit()
        inserted = cur.rowcount > 0
        if inserted:
            logger.info("Inserted: application %r with address %r", record.application_number, record.address)
        else:
            logger.info("Skipped: application %r was already present", record.application_number)
        return inserted

    def count(self) -> int:
        return int(self._conn.execute("select count(*) from [data]").fetchone()[0])

    def get(self, application_number: str) -> dict[str, Any] | None:
        cur = self._conn.execute("select * from [data] where [council_reference] = ?", (application_number,))
        row = cur.fetchone()
        if row is None:
            return None
        return dict(zip([d[0] for d in cur.description], row))
