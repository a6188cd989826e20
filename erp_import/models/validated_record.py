from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .raw_row import RawRow

"""ValidatedRecord model and its status enums.

A ValidatedRecord is the typed, normalized form of one uploaded row after the
Field Validator ran. It belongs to exactly one UploadSession.

Status invariants:
- INVALID records carry at least one error
- WARNING records carry at least one warning and no errors
- VALID records carry neither

The invariant is enforced by building records through ``ValidatedRecord.build``,
which derives the status from the error/warning lists instead of accepting it.
"""

__all__ = [
    "ValidationStatus",
    "ProcessingStatus",
    "ValidatedRecord",
]


class ValidationStatus(Enum):
    VALID = "valid"
    WARNING = "warning"
    INVALID = "invalid"


class ProcessingStatus(Enum):
    """Lifecycle of a staged record.

    pending -> approved -> processed
    pending -> rejected                 (invalid, duplicate or rejected session)
    approved -> failed                  (commit of this record failed downstream)
    """
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class ValidatedRecord:
    source_row_number: int  # 1-based row in the uploaded file, unique per session
    fields: dict[str, Any]  # Logical field name -> normalized value
    validation_status: ValidationStatus
    validation_errors: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)
    is_duplicate: bool = False
    duplicate_reason: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    commit_error: str | None = None  # Downstream failure reason (FAILED only)
    committed_id: str | None = None  # System-of-record id once PROCESSED
    raw: RawRow | None = None  # Original row kept for audit
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def build(
        cls,
        source_row_number: int,
        fields: dict[str, Any],
        errors: list[str],
        warnings: list[str],
        raw: RawRow | None = None,
    ) -> ValidatedRecord:
        if errors:
            status = ValidationStatus.INVALID
        elif warnings:
            status = ValidationStatus.WARNING
        else:
            status = ValidationStatus.VALID
        return cls(
            source_row_number=source_row_number,
            fields=fields,
            validation_status=status,
            validation_errors=list(errors),
            validation_warnings=list(warnings),
            raw=raw,
        )

    @property
    def is_invalid(self) -> bool:
        return self.validation_status is ValidationStatus.INVALID

    @property
    def is_committable(self) -> bool:
        """True when approval may move this record to APPROVED."""
        return not self.is_invalid and not self.is_duplicate

    def mark_duplicate(self, reason: str) -> None:
        self.is_duplicate = True
        self.duplicate_reason = reason

    def key(self, key_fields: tuple[str, ...]) -> tuple[Any, ...] | None:
        """Composite key over ``key_fields``; None if any component is empty."""
        parts = tuple(self.fields.get(name) for name in key_fields)
        if any(p is None or p == "" for p in parts):
            return None
        return parts
