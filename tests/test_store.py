from __future__ import annotations

from pathlib import Path

from devapp_engine.store import RecordStore
from devapp_engine.types import DevelopmentRecord


def _record(number: str = "123/2017", address: str = "Smith Road, Callington") -> DevelopmentRecord:
    return DevelopmentRecord(
        application_number=number,
        address=address,
        description="New Dwelling",
        information_url="http://example.test/report.pdf",
        comment_url="mailto:council@example.test",
        scrape_date="2026-01-05",
        received_date="2017-02-01",
    )


class TestRecordStore:
    def test_upsert_is_idempotent(self, tmp_path: Path):
        with RecordStore(tmp_path / "db" / "data.sqlite") as store:
            assert store.upsert(_record()) is True
            assert store.upsert(_record()) is False
            assert store.count() == 1

    def test_existing_row_not_overwritten(self):
        with RecordStore(":memory:") as store:
            store.upsert(_record())
            store.upsert(_record(address="Other Street, Callington"))
            row = store.get("123/2017")
        assert row["address"] == "Smith Road, Callington"
        assert row["date_received"] == "2017-02-01"
        assert row["info_url"] == "http://example.test/report.pdf"

    def test_rows_persist_across_connections(self, tmp_path: Path):
        db = tmp_path / "data.sqlite"
        with RecordStore(db) as store:
            store.upsert(_record("1/2017"))
            store.upsert(_record("2/2017"))
        with RecordStore(db) as store:
            assert store.count() == 2
            assert store.get("3/2017") is None
