from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from ..db.store import ImportStore, StoreError
from ..excel.reader import UnsupportedFormat
from ..models.import_profile import get_profile
from ..models.upload_session import SessionStatus, UploadSession
from ..models.validated_record import ValidatedRecord

"""Staging service: persist validated sessions and render review reports.

A session and all of its records land in one store call; readers never see
a partially staged session. Reports are flat (one line per record) and keep
``source_row_number`` so reviewers can trace every line back to the file.
"""

__all__ = [
    "REPORT_SUFFIXES",
    "StagingService",
    "report_frame",
]

logger = logging.getLogger(__name__)

REPORT_SUFFIXES = frozenset({".csv", ".xlsx"})


def _report_value(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def report_frame(session: UploadSession) -> pd.DataFrame:
    """One row per record, sorted by source row number."""
    profile = get_profile(session.import_type)
    rows = []
    for r in sorted(session.records, key=lambda rec: rec.source_row_number):
        row: dict[str, Any] = {"source_row_number": r.source_row_number}
        for name in profile.key_fields:
            row[name] = _report_value(r.fields.get(name))
        row.update(
            {
                "validation_status": r.validation_status.value,
                "errors": "; ".join(r.validation_errors),
                "warnings": "; ".join(r.validation_warnings),
                "is_duplicate": r.is_duplicate,
                "duplicate_reason": r.duplicate_reason or "",
                "processing_status": r.processing_status.value,
                "commit_error": r.commit_error or "",
            }
        )
        rows.append(row)
    columns = [
        "source_row_number",
        *profile.key_fields,
        "validation_status",
        "errors",
        "warnings",
        "is_duplicate",
        "duplicate_reason",
        "processing_status",
        "commit_error",
    ]
    return pd.DataFrame(rows, columns=columns)


class StagingService:
    def __init__(self, store: ImportStore) -> None:
        self.store = store

    def stage(self, session: UploadSession, records: list[ValidatedRecord]) -> UploadSession:
        """Attach ``records`` to ``session`` and persist both atomically.

        The session must be VALIDATING; it is STAGED once this returns. On a
        store failure the in-memory session is left VALIDATING and the error
        propagates.
        """
        session.transition(SessionStatus.STAGED)
        session.records = list(records)
        try:
            self.store.insert_staging_records(session, session.records)
        except StoreError:
            session.status = SessionStatus.VALIDATING
            raise
        logger.debug(f"staged session={session.id} records={len(records)}")
        return session

    def load(self, session_id: str) -> UploadSession:
        return self.store.load_session(session_id)

    def export_report(self, session_id: str, path: Path) -> Path:
        """Write the review report as CSV or .xlsx (chosen by ``path`` suffix)."""
        suffix = path.suffix.lower()
        if suffix not in REPORT_SUFFIXES:
            raise UnsupportedFormat(f"report format not supported: {path.name} (use .csv or .xlsx)")
        df = report_frame(self.load(session_id))
        path.parent.mkdir(parents=True, exist_ok=True)
        if suffix == ".csv":
            df.to_csv(path, index=False, encoding="utf-8-sig")
        else:
            df.to_excel(path, index=False, sheet_name="validation", engine="openpyxl")
        logger.info(f"report written: {path} rows={len(df)}")
        return path
