from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from ..config.loader import ImportConfig
from ..db.store import ImportStore, StoreError
from ..excel.reader import ParsedUpload, UnknownImportType, read_upload
from ..logging.error_log import ErrorLogBuffer
from ..models.commit_result import CommitSummary
from ..models.import_profile import ImportProfile, Outlier, Referential, get_profile
from ..models.quality_metrics import QualityMetrics
from ..models.upload_session import SessionStatus, UploadSession
from ..models.validated_record import ValidatedRecord
from .approval import ApprovalGate
from .commit import CommitProcessor
from .duplicates import detect_duplicates, record_keys
from .progress import ProgressTracker
from .quality import score_records
from .staging import StagingService
from .validator import ValidationContext, validate_rows

"""Pipeline orchestration.

upload: parse -> validate -> duplicates -> score -> stage

    Input errors (UnsupportedFormat, EmptyFile, RowLimitExceeded,
    UnknownImportType, MissingColumns) are raised before a session exists.
    Once the session exists it walks uploading -> validating -> staged; any
    failure after that point marks it failed before the error propagates.

approve / reject / process / export_report delegate to the gate, the commit
processor and the staging service. Record-level problems (validation errors,
duplicates, commit failures) never raise; they are collected on the records
and in the JSON Lines error log.
"""

__all__ = [
    "ProcessingError",
    "UploadOutcome",
    "ImportPipeline",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Unexpected failure while building a session (wraps the cause)."""


@dataclass(frozen=True)
class UploadOutcome:
    session: UploadSession
    metrics: QualityMetrics


class ImportPipeline:
    def __init__(
        self,
        store: ImportStore,
        config: ImportConfig,
        error_log: ErrorLogBuffer | None = None,
        today: date | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.error_log = error_log if error_log is not None else ErrorLogBuffer(Path(config.logs_dir))
        self.today = today
        self.staging = StagingService(store)
        self.gate = ApprovalGate(store)
        self.committer = CommitProcessor(store, self.error_log)

    # --- upload ----------------------------------------------------------------
    def _check_enabled(self, import_type: str | None) -> None:
        allowed = self.config.import_types
        if import_type is not None and allowed is not None and import_type.upper() not in allowed:
            raise UnknownImportType(
                f"import type not enabled: {import_type} (enabled: {', '.join(allowed)})"
            )

    def _context(self, profile: ImportProfile, organization_id: str) -> ValidationContext:
        lookups: dict[str, frozenset[str]] = {}
        averages: dict[str, dict] = {}
        for spec in profile.fields:
            for rule in spec.rules:
                if isinstance(rule, Referential) and rule.lookup not in lookups:
                    known = self.store.master_keys(rule.lookup, organization_id)
                    if known is None:
                        logger.debug(f"no master data for '{rule.lookup}'; referential check skipped")
                    else:
                        lookups[rule.lookup] = known
                elif isinstance(rule, Outlier):
                    averages[spec.name] = self.store.historical_averages(
                        profile.name, organization_id, spec.name, rule.group_by
                    )
        return ValidationContext(
            today=self.today or date.today(),
            stale_after_days=self.config.stale_after_days,
            outlier_factor=self.config.outlier_factor,
            lookups=lookups,
            averages=averages,
        )

    def _warn_reupload(self, session: UploadSession) -> None:
        if not session.file_hash:
            return
        earlier = self.store.find_sessions_by_hash(session.organization_id, session.file_hash)
        if earlier:
            logger.warning(
                f"{session.file_name}: identical file already uploaded (sessions: {', '.join(earlier)})"
            )

    def _log_record_problems(self, session: UploadSession, records: list[ValidatedRecord]) -> None:
        for r in records:
            for message in r.validation_errors:
                self.error_log.add(session.file_name, session.id, r.source_row_number, "VALIDATION_ERROR", message)
            if r.is_duplicate:
                self.error_log.add(
                    session.file_name, session.id, r.source_row_number, "DUPLICATE", r.duplicate_reason or ""
                )

    def _build(self, parsed: ParsedUpload, session: UploadSession) -> tuple[list[ValidatedRecord], QualityMetrics]:
        profile = parsed.profile
        session.transition(SessionStatus.VALIDATING)
        ctx = self._context(profile, session.organization_id)

        with ProgressTracker(len(parsed.rows), description="Validating", unit="row") as progress:
            records = validate_rows(parsed, ctx, on_row=lambda _r: progress.advance())

        committed = self.store.query_existing_keys(
            profile.name, session.organization_id, record_keys(records, profile)
        )
        detect_duplicates(records, profile, committed)
        metrics = score_records(records, profile, self.config.quality)
        self.staging.stage(session, records)
        return records, metrics

    def upload(
        self,
        path: Path,
        import_type: str | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        organization_id: str | None = None,
        uploaded_by: str | None = None,
    ) -> UploadOutcome:
        if period_start and period_end and period_start > period_end:
            raise ValueError(f"period_start {period_start} is after period_end {period_end}")
        self._check_enabled(import_type)
        parsed = read_upload(
            path,
            import_type.upper() if import_type else None,
            max_rows=self.config.max_rows,
            null_sentinels=self.config.null_sentinels,
        )
        self._check_enabled(parsed.import_type)
        if parsed.mapping.unmapped_headers:
            logger.info(f"{parsed.file_name}: ignored columns {parsed.mapping.unmapped_headers}")

        session = UploadSession(
            file_name=parsed.file_name,
            import_type=parsed.import_type,
            organization_id=organization_id or self.config.organization_id,
            period_start=period_start,
            period_end=period_end,
            file_hash=parsed.file_hash,
            file_size=parsed.file_size,
            column_mapping=dict(parsed.mapping.fields),
            uploaded_by=uploaded_by,
        )
        logger.info(f"{parsed.file_name}: session {session.id} type={session.import_type} rows={len(parsed.rows)}")

        try:
            self._warn_reupload(session)
            records, metrics = self._build(parsed, session)
        except StoreError as e:
            session.fail(str(e))
            self.error_log.add(session.file_name, session.id, -1, "STORE_ERROR", str(e))
            raise
        except Exception as e:
            session.fail(str(e))
            self.error_log.add(session.file_name, session.id, -1, "PROCESSING_ERROR", str(e))
            raise ProcessingError(f"{session.file_name}: {e}") from e

        self._log_record_problems(session, records)
        return UploadOutcome(session=session, metrics=metrics)

    # --- review / commit -------------------------------------------------------
    def load(self, session_id: str) -> UploadSession:
        return self.staging.load(session_id)

    def metrics(self, session_id: str) -> QualityMetrics:
        """Recompute quality metrics from the stored records."""
        session = self.staging.load(session_id)
        return score_records(session.records, get_profile(session.import_type), self.config.quality)

    def approve(self, session_id: str, approver: str, notes: str | None = None) -> UploadSession:
        return self.gate.approve(session_id, approver, notes)

    def reject(self, session_id: str, approver: str, notes: str | None = None) -> UploadSession:
        return self.gate.reject(session_id, approver, notes)

    def process(self, session_id: str) -> CommitSummary:
        return self.committer.process(session_id)

    def export_report(self, session_id: str, path: Path) -> Path:
        return self.staging.export_report(session_id, path)

    def flush_errors(self) -> Path | None:
        return self.error_log.flush()
