from __future__ import annotations

import logging
from datetime import UTC, datetime

from ..db.store import ImportStore
from ..models.upload_session import InvalidStateTransition, SessionStatus, UploadSession
from ..models.validated_record import ProcessingStatus

"""Approval gate: the human decision between staging and commit.

approve: STAGED -> APPROVED. Records with errors or flagged as duplicates are
auto-REJECTED; everything else moves PENDING -> APPROVED. Approval is allowed
whatever the invalid/duplicate counts are.

reject: STAGED -> REJECTED (terminal). Every pending record is REJECTED.

The session is saved once, after all in-memory changes; a failed transition
leaves both the stored and the in-memory session untouched.
"""

__all__ = [
    "ApprovalGate",
]

logger = logging.getLogger(__name__)


def _require_reviewer(reviewer: str) -> str:
    if reviewer is None or not str(reviewer).strip():
        raise ValueError("approver identity is required")
    return str(reviewer).strip()


class ApprovalGate:
    def __init__(self, store: ImportStore) -> None:
        self.store = store

    def _load_staged(self, session_id: str, target: SessionStatus) -> UploadSession:
        session = self.store.load_session(session_id)
        if not session.can_transition(target):
            raise InvalidStateTransition(
                f"session {session_id}: cannot move from {session.status.value} to {target.value}"
            )
        return session

    def approve(self, session_id: str, approver: str, notes: str | None = None) -> UploadSession:
        approver = _require_reviewer(approver)
        session = self._load_staged(session_id, SessionStatus.APPROVED)

        approved = rejected = 0
        for record in session.records_with(ProcessingStatus.PENDING):
            if record.is_committable:
                record.processing_status = ProcessingStatus.APPROVED
                approved += 1
            else:
                record.processing_status = ProcessingStatus.REJECTED
                rejected += 1

        session.transition(SessionStatus.APPROVED)
        session.approved_by = approver
        session.approved_at = datetime.now(UTC)
        session.approval_notes = notes
        self.store.save_session(session)
        logger.info(f"session {session_id} approved by {approver}: approved={approved} auto_rejected={rejected}")
        return session

    def reject(self, session_id: str, approver: str, notes: str | None = None) -> UploadSession:
        approver = _require_reviewer(approver)
        session = self._load_staged(session_id, SessionStatus.REJECTED)

        for record in session.records_with(ProcessingStatus.PENDING):
            record.processing_status = ProcessingStatus.REJECTED

        session.transition(SessionStatus.REJECTED)
        session.approved_by = approver  # reviewer of record for either decision
        session.approved_at = datetime.now(UTC)
        session.approval_notes = notes
        self.store.save_session(session)
        logger.info(f"session {session_id} rejected by {approver}")
        return session
