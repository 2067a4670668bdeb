from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .job import job_paths, record_error
from .utils import load_json

CSV_COLUMNS = [
    "council_reference",
    "address",
    "description",
    "info_url",
    "comment_url",
    "date_scraped",
    "date_received",
    "page_id",
]


@dataclass
class ExportStats:
    records_seen: int = 0
    records_exported: int = 0
    records_invalid: int = 0


def _row(record: dict[str, Any]) -> dict[str, str]:
    return {
        "council_reference": str(record.get("application_number") or ""),
        "address": str(record.get("address") or ""),
        "description": str(record.get("description") or ""),
        "info_url": str(record.get("information_url") or ""),
        "comment_url": str(record.get("comment_url") or ""),
        "date_scraped": str(record.get("scrape_date") or ""),
        "date_received": str(record.get("received_date") or ""),
        "page_id": str(record.get("page_id") or ""),
    }


def export_csv(*, job_dir: str | Path, out_path: str | Path) -> ExportStats:
    """Export the records of a finished job to CSV.

    Column names follow the sqlite table. Records without an application
    number or address are skipped and logged to errors.jsonl. Raises
    RuntimeError if nothing is exportable.
    """
    paths = job_paths(job_dir)
    out_path = Path(out_path)
    stats = ExportStats()

    result = load_json(paths.result_json)
    records = result.get("records", []) if isinstance(result, dict) else []

    rows: list[dict[str, str]] = []
    for r in records:
        stats.records_seen += 1
        if not isinstance(r, dict):
            stats.records_invalid += 1
            continue
        row = _row(r)
        if not row["council_reference"] or not row["address"]:
            stats.records_invalid += 1
            record_error(paths, page_id=row["page_id"], stage="export", message="record_missing_number_or_address")
            continue
        rows.append(row)

    if not rows:
        raise RuntimeError("No exportable records (all invalid or job empty)")

    # Deterministic order: page, then application number.
    rows.sort(key=lambda r: (r["page_id"], r["council_reference"]))

    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            stats.records_exported += 1

    return stats
