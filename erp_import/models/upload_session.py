from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum

from .validated_record import ProcessingStatus, ValidatedRecord, ValidationStatus

"""UploadSession aggregate and SessionStatus state machine.

State transitions:

    uploading -> validating -> staged -> approved -> processing -> completed
                                  |
                                  +--> rejected
    failed is reachable from every non-terminal state.

completed, rejected and failed are terminal. The session exclusively owns its
records; counts are always recomputed from them so the summary can never
drift from the staged record set.
"""

__all__ = [
    "SessionStatus",
    "UploadSession",
    "InvalidStateTransition",
    "VALID_TRANSITIONS",
]


class InvalidStateTransition(Exception):
    """Raised when a session is asked to move to a state it cannot reach."""


class SessionStatus(Enum):
    UPLOADING = "uploading"
    VALIDATING = "validating"
    STAGED = "staged"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.UPLOADING: {SessionStatus.VALIDATING, SessionStatus.FAILED},
    SessionStatus.VALIDATING: {SessionStatus.STAGED, SessionStatus.FAILED},
    SessionStatus.STAGED: {SessionStatus.APPROVED, SessionStatus.REJECTED, SessionStatus.FAILED},
    SessionStatus.APPROVED: {SessionStatus.PROCESSING, SessionStatus.FAILED},
    SessionStatus.PROCESSING: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.REJECTED: set(),
    SessionStatus.FAILED: set(),
}


@dataclass
class UploadSession:
    """Aggregate root of one upload: metadata plus its staged records."""
    file_name: str
    import_type: str  # Import profile name (GRN, STOCK, SALES ...)
    organization_id: str
    period_start: date | None = None
    period_end: date | None = None
    status: SessionStatus = SessionStatus.UPLOADING
    file_hash: str | None = None  # SHA-256 of the uploaded bytes
    file_size: int = 0
    column_mapping: dict[str, str] = field(default_factory=dict)  # field -> source header
    uploaded_by: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None
    error: str | None = None  # Session-level failure reason (FAILED only)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    records: list[ValidatedRecord] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status]

    def can_transition(self, target: SessionStatus) -> bool:
        return target in VALID_TRANSITIONS[self.status]

    def transition(self, target: SessionStatus) -> None:
        if not self.can_transition(target):
            raise InvalidStateTransition(
                f"session {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        self.status = target
        if target is SessionStatus.COMPLETED:
            self.completed_at = datetime.now(UTC)

    def fail(self, reason: str) -> None:
        """Move to FAILED unless already terminal (terminal states are final)."""
        if self.can_transition(SessionStatus.FAILED):
            self.status = SessionStatus.FAILED
            self.error = reason

    # Denormalized counts (always derived from the owned records)
    @property
    def total_rows(self) -> int:
        return len(self.records)

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.records if r.validation_status is ValidationStatus.VALID)

    @property
    def warning_count(self) -> int:
        return sum(1 for r in self.records if r.validation_status is ValidationStatus.WARNING)

    @property
    def invalid_count(self) -> int:
        return sum(1 for r in self.records if r.validation_status is ValidationStatus.INVALID)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for r in self.records if r.is_duplicate)

    def records_with(self, status: ProcessingStatus) -> list[ValidatedRecord]:
        return [r for r in self.records if r.processing_status is status]

    def record_for_row(self, row_number: int) -> ValidatedRecord | None:
        for r in self.records:
            if r.source_row_number == row_number:
                return r
        return None
