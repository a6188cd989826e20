from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

import psycopg2
from psycopg2.extras import Json

from ..config.loader import DatabaseConfig
from ..models.commit_result import CommitResult
from ..models.import_profile import ImportProfile, TypeCheck, get_profile
from ..models.upload_session import SessionStatus, UploadSession
from ..models.validated_record import ProcessingStatus, ValidatedRecord, ValidationStatus
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert, batch_update
from .store import CommitError, SessionNotFound, StoreError, StoreUnavailable

"""PostgreSQL-backed ImportStore (psycopg2).

Transaction boundaries:
- staging: session header + every record in one transaction
- approval / completion: header + record statuses in one transaction
- commit: one transaction per record; the staged row is locked FOR UPDATE,
  the committed row inserted and the stock balance upserted (row lock), so two
  sessions touching the same item serialize on the balance row

Connection errors (OperationalError / InterfaceError) surface as
StoreUnavailable, everything else from the driver as StoreError / CommitError.
"""

__all__ = [
    "SCHEMA_SQL",
    "resolve_dsn",
    "PostgresImportStore",
]

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS import_sessions (
    id text PRIMARY KEY,
    organization_id text NOT NULL,
    file_name text NOT NULL,
    import_type text NOT NULL,
    period_start date,
    period_end date,
    status text NOT NULL,
    file_hash text,
    file_size bigint NOT NULL DEFAULT 0,
    column_mapping jsonb NOT NULL DEFAULT '{}'::jsonb,
    uploaded_by text,
    approved_by text,
    approved_at timestamptz,
    approval_notes text,
    error text,
    created_at timestamptz NOT NULL,
    completed_at timestamptz,
    total_rows integer NOT NULL DEFAULT 0,
    valid_rows integer NOT NULL DEFAULT 0,
    warning_rows integer NOT NULL DEFAULT 0,
    invalid_rows integer NOT NULL DEFAULT 0,
    duplicate_rows integer NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS import_staging_records (
    id text PRIMARY KEY,
    session_id text NOT NULL REFERENCES import_sessions(id) ON DELETE CASCADE,
    source_row_number integer NOT NULL,
    fields jsonb NOT NULL,
    validation_status text NOT NULL,
    validation_errors jsonb NOT NULL DEFAULT '[]'::jsonb,
    validation_warnings jsonb NOT NULL DEFAULT '[]'::jsonb,
    is_duplicate boolean NOT NULL DEFAULT false,
    duplicate_reason text,
    processing_status text NOT NULL,
    commit_error text,
    committed_id text,
    UNIQUE (session_id, source_row_number)
);
CREATE TABLE IF NOT EXISTS import_committed_records (
    id bigserial PRIMARY KEY,
    organization_id text NOT NULL,
    import_type text NOT NULL,
    record_key text,
    fields jsonb NOT NULL,
    session_id text NOT NULL,
    source_row_number integer NOT NULL,
    UNIQUE (organization_id, import_type, record_key)
);
CREATE TABLE IF NOT EXISTS stock_balances (
    organization_id text NOT NULL,
    item_code text NOT NULL,
    quantity numeric NOT NULL DEFAULT 0,
    PRIMARY KEY (organization_id, item_code)
);
CREATE TABLE IF NOT EXISTS item_master (
    organization_id text NOT NULL,
    item_code text NOT NULL,
    status text NOT NULL DEFAULT 'active',
    PRIMARY KEY (organization_id, item_code)
);
"""

_SESSION_COLUMNS = (
    "id", "organization_id", "file_name", "import_type", "period_start", "period_end",
    "status", "file_hash", "file_size", "column_mapping", "uploaded_by", "approved_by",
    "approved_at", "approval_notes", "error", "created_at", "completed_at",
    "total_rows", "valid_rows", "warning_rows", "invalid_rows", "duplicate_rows",
)
_STAGING_COLUMNS = (
    "id", "session_id", "source_row_number", "fields", "validation_status",
    "validation_errors", "validation_warnings", "is_duplicate", "duplicate_reason",
    "processing_status", "commit_error", "committed_id",
)
_STATUS_COLUMNS = ("processing_status", "commit_error", "committed_id")


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string: DATABASE_URL / PGDSN, then PG* variables, then config."""
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def encode_key(key: tuple[Any, ...]) -> str:
    return json.dumps([_jsonable(v) for v in key], ensure_ascii=False)


def _decode_fields(profile: ImportProfile, data: dict[str, Any]) -> dict[str, Any]:
    date_fields = {
        spec.name
        for spec in profile.fields
        if any(isinstance(r, TypeCheck) and r.kind == "date" for r in spec.rules)
    }
    out = dict(data)
    for name in date_fields:
        value = out.get(name)
        if isinstance(value, str):
            try:
                out[name] = date.fromisoformat(value)
            except ValueError:
                pass  # invalid upload value kept verbatim for the report
    return out


class PostgresImportStore:
    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._conn.autocommit = False

    @classmethod
    def connect(cls, dsn: str) -> PostgresImportStore:
        try:
            conn = psycopg2.connect(dsn)
        except psycopg2.OperationalError as e:
            raise StoreUnavailable(f"cannot connect to database: {e}") from e
        return cls(conn)

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()

    def __enter__(self) -> PostgresImportStore:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # --- helpers -------------------------------------------------------------
    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except psycopg2.Error:  # pragma: no cover - connection already gone
            logger.debug("rollback failed; connection lost")

    def _fail(self, action: str, e: Exception) -> StoreError:
        self._rollback()
        cause = e.__cause__ if isinstance(e, BatchInsertError) else e
        if isinstance(cause, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return StoreUnavailable(f"{action}: {e}")
        return StoreError(f"{action}: {e}")

    @staticmethod
    def _log_batch(metrics: BatchMetrics) -> None:
        logger.debug(f"batch rows={metrics.batch_size} elapsed={metrics.elapsed_seconds:.3f}s")

    @staticmethod
    def _session_row(session: UploadSession) -> tuple[Any, ...]:
        return (
            session.id, session.organization_id, session.file_name, session.import_type,
            session.period_start, session.period_end, session.status.value, session.file_hash,
            session.file_size, Json(session.column_mapping), session.uploaded_by, session.approved_by,
            session.approved_at, session.approval_notes, session.error, session.created_at,
            session.completed_at, session.total_rows, session.valid_count, session.warning_count,
            session.invalid_count, session.duplicate_count,
        )

    @staticmethod
    def _staging_row(session_id: str, record: ValidatedRecord) -> tuple[Any, ...]:
        fields = {k: _jsonable(v) for k, v in record.fields.items()}
        return (
            record.id, session_id, record.source_row_number, Json(fields),
            record.validation_status.value, Json(record.validation_errors),
            Json(record.validation_warnings), record.is_duplicate, record.duplicate_reason,
            record.processing_status.value, record.commit_error, record.committed_id,
        )

    # --- ImportStore -----------------------------------------------------------
    def ping(self) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute("SELECT 1")
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail("ping", e) from e

    def ensure_schema(self) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            self._conn.commit()
        except psycopg2.Error as e:
            raise self._fail("create schema", e) from e

    def insert_staging_records(self, session: UploadSession, records: list[ValidatedRecord]) -> None:
        try:
            with self._conn.cursor() as cur:
                batch_insert(cur, "import_sessions", _SESSION_COLUMNS, [self._session_row(session)])
                batch_insert(
                    cur,
                    "import_staging_records",
                    _STAGING_COLUMNS,
                    (self._staging_row(session.id, r) for r in records),
                    metrics_callback=self._log_batch,
                )
            self._conn.commit()
        except (psycopg2.Error, BatchInsertError) as e:
            raise self._fail(f"stage session {session.id}", e) from e

    def load_session(self, session_id: str) -> UploadSession:
        cols = ",".join(_SESSION_COLUMNS)
        try:
            with self._conn.cursor() as cur:
                cur.execute(f"SELECT {cols} FROM import_sessions WHERE id = %s", (session_id,))
                header = cur.fetchone()
                if header is None:
                    self._conn.rollback()
                    raise SessionNotFound(f"session not found: {session_id}")
                cur.execute(
                    f"SELECT {','.join(_STAGING_COLUMNS)} FROM import_staging_records "
                    "WHERE session_id = %s ORDER BY source_row_number",
                    (session_id,),
                )
                rows = cur.fetchall()
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail(f"load session {session_id}", e) from e

        h = dict(zip(_SESSION_COLUMNS, header, strict=True))
        profile = get_profile(h["import_type"])
        records = []
        for row in rows:
            r = dict(zip(_STAGING_COLUMNS, row, strict=True))
            records.append(
                ValidatedRecord(
                    id=r["id"],
                    source_row_number=r["source_row_number"],
                    fields=_decode_fields(profile, r["fields"] or {}),
                    validation_status=ValidationStatus(r["validation_status"]),
                    validation_errors=list(r["validation_errors"] or []),
                    validation_warnings=list(r["validation_warnings"] or []),
                    is_duplicate=r["is_duplicate"],
                    duplicate_reason=r["duplicate_reason"],
                    processing_status=ProcessingStatus(r["processing_status"]),
                    commit_error=r["commit_error"],
                    committed_id=r["committed_id"],
                )
            )
        return UploadSession(
            id=h["id"],
            file_name=h["file_name"],
            import_type=h["import_type"],
            organization_id=h["organization_id"],
            period_start=h["period_start"],
            period_end=h["period_end"],
            status=SessionStatus(h["status"]),
            file_hash=h["file_hash"],
            file_size=h["file_size"],
            column_mapping=dict(h["column_mapping"] or {}),
            uploaded_by=h["uploaded_by"],
            approved_by=h["approved_by"],
            approved_at=h["approved_at"],
            approval_notes=h["approval_notes"],
            error=h["error"],
            created_at=h["created_at"],
            completed_at=h["completed_at"],
            records=records,
        )

    def save_session(self, session: UploadSession) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "UPDATE import_sessions SET status = %s, approved_by = %s, approved_at = %s, "
                    "approval_notes = %s, error = %s, completed_at = %s WHERE id = %s",
                    (
                        session.status.value, session.approved_by, session.approved_at,
                        session.approval_notes, session.error, session.completed_at, session.id,
                    ),
                )
                if cur.rowcount == 0:
                    self._conn.rollback()
                    raise SessionNotFound(f"session not found: {session.id}")
                batch_update(
                    cur,
                    "import_staging_records",
                    "id",
                    _STATUS_COLUMNS,
                    ((r.id, r.processing_status.value, r.commit_error, r.committed_id) for r in session.records),
                    metrics_callback=self._log_batch,
                )
            self._conn.commit()
        except (psycopg2.Error, BatchInsertError) as e:
            raise self._fail(f"save session {session.id}", e) from e

    def update_session_status(self, session_id: str, status: SessionStatus, error: str | None = None) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "UPDATE import_sessions SET status = %s, error = COALESCE(%s, error) WHERE id = %s",
                    (status.value, error, session_id),
                )
            self._conn.commit()
        except psycopg2.Error as e:
            raise self._fail(f"update session {session_id}", e) from e

    def delete_session(self, session_id: str) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute("DELETE FROM import_sessions WHERE id = %s", (session_id,))
            self._conn.commit()
        except psycopg2.Error as e:
            raise self._fail(f"delete session {session_id}", e) from e

    def find_sessions_by_hash(self, organization_id: str, file_hash: str) -> list[str]:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM import_sessions WHERE organization_id = %s AND file_hash = %s "
                    "AND status <> %s",
                    (organization_id, file_hash, SessionStatus.FAILED.value),
                )
                rows = cur.fetchall()
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail("find sessions by hash", e) from e
        return [r[0] for r in rows]

    def commit_record(self, session: UploadSession, record: ValidatedRecord) -> CommitResult:
        profile = get_profile(session.import_type)
        key = record.key(profile.key_fields)
        fields = {k: _jsonable(v) for k, v in record.fields.items()}
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT processing_status, committed_id FROM import_staging_records "
                    "WHERE id = %s FOR UPDATE",
                    (record.id,),
                )
                staged = cur.fetchone()
                if staged is None:
                    self._conn.rollback()
                    raise CommitError(f"row {record.source_row_number}: record not staged")
                if staged[0] == ProcessingStatus.PROCESSED.value:
                    self._conn.rollback()
                    return CommitResult(committed_id=staged[1] or "")

                cur.execute(
                    "INSERT INTO import_committed_records "
                    "(organization_id, import_type, record_key, fields, session_id, source_row_number) "
                    "VALUES (%s, %s, %s, %s, %s, %s) RETURNING id",
                    (
                        session.organization_id, profile.name,
                        encode_key(key) if key is not None else None,
                        Json(fields), session.id, record.source_row_number,
                    ),
                )
                committed_id = f"{profile.id_prefix}-{cur.fetchone()[0]:05d}"

                balance_after = None
                if profile.balance_field is not None:
                    cur.execute(
                        "INSERT INTO stock_balances (organization_id, item_code, quantity) "
                        "VALUES (%s, %s, %s) ON CONFLICT (organization_id, item_code) "
                        "DO UPDATE SET quantity = stock_balances.quantity + EXCLUDED.quantity "
                        "RETURNING quantity",
                        (
                            session.organization_id,
                            record.fields.get(profile.balance_key),
                            record.fields.get(profile.balance_field) or 0,
                        ),
                    )
                    balance_after = float(cur.fetchone()[0])

                cur.execute(
                    "UPDATE import_staging_records SET processing_status = %s, committed_id = %s, "
                    "commit_error = NULL WHERE id = %s",
                    (ProcessingStatus.PROCESSED.value, committed_id, record.id),
                )
            self._conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise self._fail(f"commit row {record.source_row_number}", e) from e
        except psycopg2.Error as e:
            self._rollback()
            raise CommitError(getattr(e, "pgerror", None) or str(e)) from e
        return CommitResult(committed_id=committed_id, balance_after=balance_after)

    def mark_record_failed(self, session_id: str, record_id: str, reason: str) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "UPDATE import_staging_records SET processing_status = %s, commit_error = %s "
                    "WHERE session_id = %s AND id = %s AND processing_status <> %s",
                    (
                        ProcessingStatus.FAILED.value, reason, session_id, record_id,
                        ProcessingStatus.PROCESSED.value,
                    ),
                )
            self._conn.commit()
        except psycopg2.Error as e:
            raise self._fail(f"mark record {record_id} failed", e) from e

    def query_existing_keys(
        self, import_type: str, organization_id: str, keys: Iterable[tuple[Any, ...]]
    ) -> dict[tuple[Any, ...], str]:
        encoded = {encode_key(k): k for k in keys}
        if not encoded:
            return {}
        prefix = get_profile(import_type).id_prefix
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT record_key, id FROM import_committed_records "
                    "WHERE organization_id = %s AND import_type = %s AND record_key = ANY(%s)",
                    (organization_id, import_type, list(encoded)),
                )
                rows = cur.fetchall()
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail("query existing keys", e) from e
        return {encoded[k]: f"{prefix}-{i:05d}" for k, i in rows if k in encoded}

    def historical_averages(
        self, import_type: str, organization_id: str, field: str, group_by: str
    ) -> dict[Any, float]:
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT fields->>%s AS grp, AVG((fields->>%s)::numeric) "
                    "FROM import_committed_records "
                    "WHERE organization_id = %s AND import_type = %s AND fields ? %s "
                    "GROUP BY 1",
                    (group_by, field, organization_id, import_type, field),
                )
                rows = cur.fetchall()
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail("historical averages", e) from e
        return {grp: float(avg) for grp, avg in rows if avg is not None}

    def master_keys(self, lookup: str, organization_id: str) -> frozenset[str] | None:
        if lookup != "items":
            return None
        try:
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT item_code FROM item_master WHERE organization_id = %s AND status = 'active'",
                    (organization_id,),
                )
                rows = cur.fetchall()
            self._conn.rollback()
        except psycopg2.Error as e:
            raise self._fail("load item master", e) from e
        # 空のマスタは「マスタなし」扱い (全件警告を避ける)
        return frozenset(r[0] for r in rows) or None
