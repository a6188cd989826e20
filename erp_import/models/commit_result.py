from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

"""Commit result models.

CommitResult is what the system of record hands back for one applied record.
CommitSummary aggregates a whole ``process`` run for the SUMMARY line and the
CLI exit code.
"""


@dataclass(frozen=True)
class CommitResult:
    committed_id: str  # Identifier assigned by the system of record
    balance_after: float | None = None  # Running balance after this record, if tracked


@dataclass(frozen=True)
class CommitFailure:
    source_row_number: int
    reason: str


@dataclass(frozen=True)
class CommitSummary:
    """Aggregated outcome of one commit run."""
    session_id: str
    processed_count: int  # Records applied in this run
    failed_count: int  # Records whose apply failed in this run
    skipped_count: int  # Records already processed before this run
    start_time: datetime
    end_time: datetime
    failures: list[CommitFailure] = field(default_factory=list)

    @property
    def elapsed_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def has_failures(self) -> bool:
        return self.failed_count > 0
