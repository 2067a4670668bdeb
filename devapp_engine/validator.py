from __future__ import annotations

from pathlib import Path
from typing import Any

from .utils import load_json, parse_iso_date

CONTRACT_FILES = ("result.json", "review_queue.json", "metrics.json", "errors.jsonl")
RECORD_FIELDS = (
    "application_number",
    "address",
    "description",
    "information_url",
    "comment_url",
    "scrape_date",
    "received_date",
)
REQUIRED_NON_EMPTY = ("application_number", "address", "description", "information_url")


def _validate_records_schema(obj: Any, errors: list[str]) -> int:
    invalid = 0
    records = (obj or {}).get("records", []) if isinstance(obj, dict) else []
    seen: set[str] = set()
    for idx, r in enumerate(records):
        if not isinstance(r, dict):
            errors.append(f"result.json: invalid record[{idx}]: not an object")
            invalid += 1
            continue

        number = str(r.get("application_number") or "")
        problems: list[str] = []
        for k in RECORD_FIELDS:
            if k not in r:
                problems.append(f"missing field {k}")
        for k in REQUIRED_NON_EMPTY:
            if k in r and not str(r.get(k) or "").strip():
                problems.append(f"empty field {k}")

        if parse_iso_date(str(r.get("scrape_date") or "")) is None:
            problems.append(f"scrape_date not YYYY-MM-DD: {r.get('scrape_date')!r}")
        received = str(r.get("received_date") or "")
        if received and parse_iso_date(received) is None:
            problems.append(f"received_date not YYYY-MM-DD: {received!r}")

        if number and number in seen:
            problems.append("duplicate application_number")
        seen.add(number)

        for p in problems:
            errors.append(f"result.json: invalid record[{idx}] application_number={number}: {p}")
        if problems:
            invalid += 1
    return invalid


def _validate_review_schema(obj: Any, errors: list[str]) -> int:
    invalid = 0
    items = (obj or {}).get("items", []) if isinstance(obj, dict) else None
    if items is None:
        errors.append("review_queue.json: missing items list")
        return 1
    for idx, it in enumerate(items):
        if not isinstance(it, dict):
            errors.append(f"review_queue.json: invalid item[{idx}]: not an object")
            invalid += 1
            continue
        for k in ("page_id", "review_reason"):
            if not str(it.get(k) or "").strip():
                errors.append(f"review_queue.json: invalid item[{idx}]: missing field {k}")
                invalid += 1
    return invalid


def _validate_metrics(metrics: Any, errors: list[str]) -> None:
    if not isinstance(metrics, dict):
        errors.append("metrics.json: must be an object")
        return
    for k in ("created_at", "pages_total", "pages_processed", "records_total"):
        if k not in metrics:
            errors.append(f"metrics.json: missing field {k}")
    if metrics.get("finished") is not True:
        errors.append("metrics.json: job not finished (finished!=true)")
    completed_at = metrics.get("completed_at")
    if not isinstance(completed_at, str) or not completed_at.strip():
        errors.append("metrics.json: missing/invalid completed_at")
    try:
        pt = int(metrics.get("pages_total") or 0)
        pp = int(metrics.get("pages_processed") or 0)
    except (TypeError, ValueError):
        errors.append("metrics.json: pages_total/pages_processed must be ints")
        return
    if pp < 0 or pt < 0 or pp > pt:
        errors.append(f"metrics.json: invalid pages_processed/pages_total: {pp}/{pt}")


def validate_job_dir(job_dir: str | Path) -> tuple[bool, dict[str, Any]]:
    """Check a job directory against the output contract.

    Returns ``(ok, summary)``; ``summary["errors"]`` lists every problem found.
    """
    job_dir = Path(job_dir)
    errors: list[str] = []

    missing_contract_files = 0
    invalid_records = 0
    invalid_review_items = 0

    for f in CONTRACT_FILES:
        p = job_dir / f
        if not p.exists():
            missing_contract_files += 1
            errors.append(f"missing: {p}")

    try:
        result = load_json(job_dir / "result.json")
        job_obj = result.get("job") if isinstance(result, dict) else None
        if not isinstance(job_obj, dict):
            errors.append("result.json: missing/invalid job object")
        else:
            for k in ("job_id", "input", "created_at"):
                if k not in job_obj:
                    errors.append(f"result.json: job missing field {k}")
        invalid_records += _validate_records_schema(result, errors)
    except (OSError, ValueError) as e:
        errors.append(f"failed to read result.json: {e}")
        invalid_records += 1

    try:
        _validate_metrics(load_json(job_dir / "metrics.json"), errors)
    except (OSError, ValueError) as e:
        errors.append(f"failed to read metrics.json: {e}")

    try:
        invalid_review_items += _validate_review_schema(load_json(job_dir / "review_queue.json"), errors)
    except (OSError, ValueError) as e:
        errors.append(f"failed to read review_queue.json: {e}")
        invalid_review_items += 1

    summary: dict[str, Any] = {
        "missing_contract_files": missing_contract_files,
        "invalid_records": invalid_records,
        "invalid_review_items": invalid_review_items,
        "errors": errors,
    }
    return not errors, summary
