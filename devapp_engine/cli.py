from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
from pathlib import Path

from .address import load_dictionaries
from .config import load_config
from .exporter import export_csv
from .job import create_job_dirs, init_job_outputs, new_job_id, snapshot_input
from .ocr import ENGINES
from .page_provider import INPUT_TYPES
from .pipeline import EnginePipeline, RunOptions
from .store import RecordStore
from .validator import validate_job_dir


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="devapp_engine")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Extract development applications from a report")
    run.add_argument("--input", required=True, help="Input path (pdf file or images folder)")
    run.add_argument("--type", required=True, choices=list(INPUT_TYPES), help="Input type")
    run.add_argument("--workspace", default="./workspace", help="Workspace root")
    run.add_argument("--data-dir", default="data", help="Folder with streetnames/streetsuffixes/suburbnames.txt")
    run.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")
    run.add_argument("--db", default="data.sqlite", help="sqlite database the records are inserted into")
    run.add_argument("--info-url", default=None, help="Information URL stored with each record (default: input URI)")
    run.add_argument("--comment-url", default=None, help="Comment URL (overrides output.comment_url)")
    run.add_argument("--engine", default=None, choices=list(ENGINES), help="OCR engine (overrides ocr.engine)")
    run.add_argument("--lang", default=None, help="OCR language (overrides ocr.lang)")
    run.add_argument(
        "--use-mocked-ocr",
        default=None,
        help="Directory containing pre-extracted fragment JSON (skips OCR when a page file exists)",
    )

    validate = sub.add_parser("validate", help="Validate Output Contract + record fields")
    validate.add_argument("--job-dir", required=True, help="Job directory (workspace/jobs/<job_id>)")

    export = sub.add_parser("export", help="Export records from a completed job")
    export.add_argument("--job-dir", required=True, help="Job directory (workspace/jobs/<job_id>)")
    export.add_argument("--format", required=True, choices=["csv"], help="Export format")
    export.add_argument("--out", required=True, help="Output file path")

    for sp in (run, validate, export):
        sp.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    return p


def cmd_run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    ocr_overrides = {k: v for k, v in (("engine", args.engine), ("lang", args.lang)) if v}
    if ocr_overrides:
        cfg = dataclasses.replace(cfg, ocr={**cfg.ocr, **ocr_overrides})

    # Fail before creating a job if the reference tables are missing.
    dictionaries = load_dictionaries(args.data_dir)

    job_id = new_job_id()
    paths = create_job_dirs(args.workspace, job_id)
    init_job_outputs(paths)
    snapshot_input(paths, args.input, args.type)

    opts = RunOptions(
        input_path=args.input,
        input_type=args.type,
        information_url=args.info_url or Path(args.input).resolve().as_uri(),
        comment_url=args.comment_url or "",
        mocked_fragments_dir=args.use_mocked_ocr,
    )

    with RecordStore(args.db) as store:
        pipeline = EnginePipeline(paths=paths, cfg=cfg, opts=opts, dictionaries=dictionaries, store=store)
        asyncio.run(pipeline.run(job_id=job_id))
    print(str(paths.job_dir))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    ok, summary = validate_job_dir(args.job_dir)

    print(f"missing_contract_files={summary['missing_contract_files']}")
    print(f"invalid_records={summary['invalid_records']}")
    print(f"invalid_review_items={summary['invalid_review_items']}")

    if not ok:
        for m in summary["errors"]:
            print(m)
        return 1

    print("OK")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    if args.format != "csv":
        raise SystemExit(2)
    try:
        stats = export_csv(job_dir=args.job_dir, out_path=args.out)
    except (OSError, ValueError, RuntimeError) as e:
        print(f"export_failed: {e}")
        return 1
    print(f"exported={stats.records_exported} invalid={stats.records_invalid}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "run":
        return cmd_run(args)

    if args.command == "validate":
        return cmd_validate(args)

    if args.command == "export":
        return cmd_export(args)

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
