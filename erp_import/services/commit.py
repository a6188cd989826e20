from __future__ import annotations

import logging
from datetime import UTC, datetime

from ..db.store import CommitError, ImportStore, StoreError, StoreUnavailable
from ..logging.error_log import ErrorLogBuffer
from ..models.commit_result import CommitFailure, CommitSummary
from ..models.upload_session import InvalidStateTransition, SessionStatus
from ..models.validated_record import ProcessingStatus
from .progress import ProgressTracker

"""Commit processor: apply an approved session to the system of record.

- APPROVED -> PROCESSING -> COMPLETED
- each APPROVED record is applied once through ``ImportStore.commit_record``;
  a CommitError marks that record FAILED (with the reason) in the store right
  away and the loop carries on
- records already PROCESSED are skipped and FAILED ones are not retried, so
  re-running a COMPLETED session is a no-op and a run interrupted in
  PROCESSING resumes where it stopped
- if the store cannot be reached before the first record the session is
  marked FAILED (best effort) and StoreUnavailable propagates
"""

__all__ = [
    "CommitProcessor",
]

logger = logging.getLogger(__name__)


class CommitProcessor:
    def __init__(self, store: ImportStore, error_log: ErrorLogBuffer | None = None) -> None:
        self.store = store
        self.error_log = error_log

    def _mark_failed(self, session_id: str, reason: str) -> None:
        try:
            self.store.update_session_status(session_id, SessionStatus.FAILED, error=reason)
        except StoreError as e:
            logger.warning(f"session {session_id}: could not record failure: {e}")

    def process(self, session_id: str) -> CommitSummary:
        start_time = datetime.now(UTC)
        session = self.store.load_session(session_id)

        if session.status is SessionStatus.COMPLETED:
            logger.info(f"session {session_id} already completed; nothing to do")
            return CommitSummary(
                session_id=session_id,
                processed_count=0,
                failed_count=0,
                skipped_count=0,
                start_time=start_time,
                end_time=datetime.now(UTC),
            )
        if session.status not in (SessionStatus.APPROVED, SessionStatus.PROCESSING):
            raise InvalidStateTransition(
                f"session {session_id}: cannot process from {session.status.value}"
            )

        try:
            self.store.ping()
            if session.status is SessionStatus.APPROVED:
                session.transition(SessionStatus.PROCESSING)
                self.store.update_session_status(session_id, SessionStatus.PROCESSING)
        except StoreUnavailable as e:
            reason = f"commit could not start: {e}"
            logger.error(f"session {session_id}: {reason}")
            self._mark_failed(session_id, reason)
            if self.error_log is not None:
                self.error_log.add(session.file_name, session_id, -1, "STORE_UNAVAILABLE", reason)
            raise

        skipped = len(session.records_with(ProcessingStatus.PROCESSED))
        pending = session.records_with(ProcessingStatus.APPROVED)
        processed = 0
        failures: list[CommitFailure] = []

        with ProgressTracker(len(pending), description="Committing", unit="rec") as progress:
            for record in pending:
                try:
                    result = self.store.commit_record(session, record)
                except CommitError as e:
                    self.store.mark_record_failed(session_id, record.id, str(e))
                    record.processing_status = ProcessingStatus.FAILED
                    record.commit_error = str(e)
                    failures.append(CommitFailure(record.source_row_number, str(e)))
                    logger.warning(f"row {record.source_row_number}: commit failed: {e}")
                    if self.error_log is not None:
                        self.error_log.add(
                            session.file_name, session_id, record.source_row_number, "COMMIT_FAILED", str(e)
                        )
                else:
                    record.processing_status = ProcessingStatus.PROCESSED
                    record.committed_id = result.committed_id
                    record.commit_error = None
                    processed += 1
                    if result.balance_after is not None:
                        logger.debug(
                            f"row {record.source_row_number}: {result.committed_id} balance={result.balance_after:g}"
                        )
                progress.advance()
                progress.set_postfix(failed=len(failures))

        session.transition(SessionStatus.COMPLETED)
        self.store.save_session(session)
        end_time = datetime.now(UTC)
        return CommitSummary(
            session_id=session_id,
            processed_count=processed,
            failed_count=len(failures),
            skipped_count=skipped,
            start_time=start_time,
            end_time=end_time,
            failures=failures,
        )
