from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .utils import append_jsonl, ensure_dir, utc_now_iso, write_json

logger = logging.getLogger(__name__)

METRIC_KEYS = (
    "pages_total",
    "pages_processed",
    "images_total",
    "segments_total",
    "ocr_failures",
    "fragments_total",
    "anchors_total",
    "records_total",
    "records_inserted",
    "records_rejected",
    "records_duplicate",
)


@dataclass
class JobPaths:
    job_dir: Path
    input_dir: Path
    stage_fragments_dir: Path
    result_json: Path
    review_json: Path
    metrics_json: Path
    errors_jsonl: Path


def job_paths(job_dir: str | Path) -> JobPaths:
    job_dir = Path(job_dir)
    return JobPaths(
        job_dir=job_dir,
        input_dir=job_dir / "input",
        stage_fragments_dir=job_dir / "stage" / "fragments",
        result_json=job_dir / "result.json",
        review_json=job_dir / "review_queue.json",
        metrics_json=job_dir / "metrics.json",
        errors_jsonl=job_dir / "errors.jsonl",
    )


def create_job_dirs(workspace: str | Path, job_id: str) -> JobPaths:
    paths = job_paths(Path(workspace) / "jobs" / job_id)
    for p in [paths.input_dir, paths.stage_fragments_dir]:
        ensure_dir(p)
    return paths


def new_job_id(use_timeline: bool = True) -> str:
    """Generate a new job ID.

    Timeline format is YYYY-MM-DD/HH-MM-SS__<shortid>; otherwise a UUID.
    """
    if not use_timeline:
        return str(uuid.uuid4())

    now = datetime.now(timezone.utc)
    return f"{now.strftime('%Y-%m-%d')}/{now.strftime('%H-%M-%S')}__{uuid.uuid4().hex[:8]}"


def record_error(
    paths: JobPaths, page_id: str, stage: str, message: str, level: int = logging.WARNING, **extra: Any
) -> None:
    logger.log(level, "[%s] %s: %s%s", page_id, stage, message, f" {extra}" if extra else "")
    append_jsonl(paths.errors_jsonl, {"page_id": page_id, "stage": stage, "message": message, **extra})


def empty_metrics() -> dict[str, Any]:
    metrics: dict[str, Any] = {"created_at": utc_now_iso(), "finished": False, "completed_at": None}
    metrics.update({k: 0 for k in METRIC_KEYS})
    return metrics


def init_job_outputs(paths: JobPaths) -> None:
    # Always create output files, even if empty.
    write_json(paths.result_json, {"job": {}, "records": []})
    write_json(paths.review_json, {"items": []})
    write_json(paths.metrics_json, empty_metrics())
    paths.errors_jsonl.parent.mkdir(parents=True, exist_ok=True)
    paths.errors_jsonl.touch(exist_ok=True)


def snapshot_input(paths: JobPaths, input_path: str | Path, input_type: str) -> None:
    src = Path(input_path)
    if input_type in ("pdf", "pdf-text") and src.is_file():
        shutil.copy2(src, paths.input_dir / src.name)
    else:
        write_json(paths.input_dir / "manifest.json", {"type": input_type, "path": str(src.resolve())})


def write_final(
    paths: JobPaths,
    job_meta: dict[str, Any],
    records: list[dict[str, Any]],
    review_items: list[dict[str, Any]],
    metrics: dict[str, Any],
) -> None:
    """Write result.json, review_queue.json and metrics.json, flagged as finished."""
    now = utc_now_iso()
    finished = {"finished": True, "completed_at": now}
    write_json(paths.result_json, {"job": {**job_meta, **finished}, "records": records})
    write_json(paths.review_json, {"items": review_items})
    write_json(paths.metrics_json, {**metrics, **finished})
