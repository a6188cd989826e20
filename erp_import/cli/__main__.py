from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from erp_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from erp_import.db.postgres import PostgresImportStore, resolve_dsn
from erp_import.db.store import ImportStore, MemoryImportStore, StoreError
from erp_import.excel.reader import ImportInputError, read_upload
from erp_import.logging.init import log_summary, set_debug, setup_logging
from erp_import.models.upload_session import InvalidStateTransition
from erp_import.services.orchestrator import ImportPipeline, ProcessingError
from erp_import.services.summary import render_commit_summary, render_stage_summary

"""CLI entrypoint: ``erp-import`` / ``python -m erp_import.cli``.

Sub-commands:
    stage FILE            parse, validate and stage an upload
    approve SESSION       approve a staged session (--by required)
    reject SESSION        reject a staged session (--by required)
    process SESSION       commit an approved session
    report SESSION        export the validation report (--out .csv/.xlsx)
    run FILE              stage + approve + process in one go
    inspect FILE          show detected type, column mapping and first rows

Exit codes: 0 success, 1 fatal (config, input, state or store errors),
2 commit finished with per-record failures.

DISABLE_DB_CONNECT=1 swaps PostgreSQL for the in-memory store; sessions then
live only for the duration of one command, so use ``run`` in that mode.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

_FATAL_ERRORS = (
    ImportInputError,
    InvalidStateTransition,
    StoreError,
    ProcessingError,
    ValueError,
)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv.

    override=True: .env の値で既存環境変数を上書き (DB 接続情報を最優先)。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


@contextmanager
def _open_store(cfg: ImportConfig) -> Iterator[ImportStore]:
    """Yield the session store.

    接続情報の解決順: .env -> 環境変数 (DATABASE_URL / PG*) -> config の database セクション。
    """
    logger = setup_logging()
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory store")
        yield MemoryImportStore()
        return
    store = PostgresImportStore.connect(resolve_dsn(cfg.database))
    try:
        store.ensure_schema()
        yield store
    finally:
        store.close()


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}") from None


def _common_args(suppress: bool) -> argparse.ArgumentParser:
    """Options accepted before and after the sub-command.

    Sub-command copies default to SUPPRESS so they never overwrite a value
    given before the sub-command name.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--debug", action="store_true", default=argparse.SUPPRESS if suppress else False, help="Enable debug logging"
    )
    common.add_argument(
        "--config",
        type=Path,
        default=argparse.SUPPRESS if suppress else DEFAULT_CONFIG_PATH,
        help=f"Config YAML (default {DEFAULT_CONFIG_PATH})",
    )
    return common


def _build_parser() -> argparse.ArgumentParser:
    common = _common_args(suppress=True)
    p = argparse.ArgumentParser(
        prog="erp-import", description="Bulk import staging / approval pipeline", parents=[_common_args(False)]
    )
    sub = p.add_subparsers(dest="command", required=True)

    def upload_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("file", type=Path, help="Spreadsheet to import (.xlsx / .xlsm / .csv)")
        sp.add_argument("--type", dest="import_type", help="Import type (detected from headers when omitted)")
        sp.add_argument("--period-start", type=_iso_date)
        sp.add_argument("--period-end", type=_iso_date)

    stage = sub.add_parser("stage", parents=[common], help="Parse, validate and stage a file")
    upload_args(stage)
    stage.add_argument("--user", help="Uploader identity")

    for name in ("approve", "reject"):
        sp = sub.add_parser(name, parents=[common], help=f"{name.capitalize()} a staged session")
        sp.add_argument("session")
        sp.add_argument("--by", required=True, help="Reviewer identity")
        sp.add_argument("--notes")

    process = sub.add_parser("process", parents=[common], help="Commit an approved session")
    process.add_argument("session")

    report = sub.add_parser("report", parents=[common], help="Export the validation report")
    report.add_argument("session")
    report.add_argument("--out", type=Path, required=True, help="Output path (.csv or .xlsx)")

    run = sub.add_parser("run", parents=[common], help="Stage, approve and process in one go")
    upload_args(run)
    run.add_argument("--by", required=True, help="Uploader and approver identity")
    run.add_argument("--notes")
    run.add_argument("--report", type=Path, help="Also export the report to this path")

    inspect = sub.add_parser("inspect", parents=[common], help="Show mapping and first rows of a file")
    inspect.add_argument("file", type=Path)
    inspect.add_argument("--type", dest="import_type")
    inspect.add_argument("--rows", type=int, default=3)
    return p


def _inspect(cfg: ImportConfig, args: argparse.Namespace) -> int:
    parsed = read_upload(
        args.file, args.import_type, max_rows=cfg.max_rows, null_sentinels=cfg.null_sentinels
    )
    print(f"FILE: {parsed.file_name} type={parsed.import_type} detected={parsed.detected_type} rows={len(parsed.rows)}")
    for field_name, header in parsed.mapping.fields.items():
        print(f"  {field_name} <- {header}")
    missing = parsed.mapping.missing(parsed.profile.required_fields)
    if missing:
        print(f"  missing required: {missing}")
    if parsed.mapping.unmapped_headers:
        print(f"  unmapped: {list(parsed.mapping.unmapped_headers)}")
    for row in parsed.rows[: args.rows]:
        # date を含む行は repr せず isoformat で表示
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in parsed.field_values(row).items()}
        print(f"  row {row.row_number}: {safe}")
    return EXIT_SUCCESS


def _commit_exit(pipeline: ImportPipeline, session_id: str) -> int:
    summary = pipeline.process(session_id)
    session = pipeline.load(session_id)
    log_summary(render_commit_summary(session, summary))
    for failure in summary.failures:
        setup_logging().error(f"row {failure.source_row_number}: {failure.reason}")
    return EXIT_PARTIAL_FAILURE if summary.has_failures else EXIT_SUCCESS


def _dispatch(pipeline: ImportPipeline, args: argparse.Namespace) -> int:
    logger = setup_logging()
    cmd = args.command
    if cmd in ("stage", "run"):
        outcome = pipeline.upload(
            args.file,
            args.import_type,
            period_start=args.period_start,
            period_end=args.period_end,
            uploaded_by=getattr(args, "user", None) or getattr(args, "by", None),
        )
        log_summary(render_stage_summary(outcome.session, outcome.metrics))
        logger.info(f"quality grade: {pipeline.config.quality.grade(outcome.metrics.overall_score)}")
        for rec in outcome.metrics.recommendations:
            logger.info(f"recommendation: {rec}")
        if cmd == "stage":
            print(outcome.session.id)
            return EXIT_SUCCESS
        session_id = outcome.session.id
        pipeline.approve(session_id, args.by, args.notes)
        code = _commit_exit(pipeline, session_id)
        if args.report is not None:
            pipeline.export_report(session_id, args.report)
        return code
    if cmd == "approve":
        session = pipeline.approve(args.session, args.by, args.notes)
        logger.info(f"session {session.id} status={session.status.value}")
        return EXIT_SUCCESS
    if cmd == "reject":
        session = pipeline.reject(args.session, args.by, args.notes)
        logger.info(f"session {session.id} status={session.status.value}")
        return EXIT_SUCCESS
    if cmd == "process":
        return _commit_exit(pipeline, args.session)
    if cmd == "report":
        pipeline.export_report(args.session, args.out)
        return EXIT_SUCCESS
    raise ValueError(f"unknown command: {cmd}")  # pragma: no cover


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # 空リスト [] のときに sys.argv[1:] を読まないよう None のみ判定
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    pipeline: Any = None
    try:
        if args.command == "inspect":
            return _inspect(cfg, args)
        with _open_store(cfg) as store:
            pipeline = ImportPipeline(store, cfg)
            return _dispatch(pipeline, args)
    except _FATAL_ERRORS as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    finally:
        if pipeline is not None:
            path = pipeline.flush_errors()
            if path is not None:
                logger.info(f"error log: {path}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
