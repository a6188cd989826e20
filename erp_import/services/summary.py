from __future__ import annotations

from ..models.commit_result import CommitSummary
from ..models.quality_metrics import QualityMetrics
from ..models.upload_session import UploadSession

"""SUMMARY line rendering.

Formats (one line each, without the ``SUMMARY`` label which the logger adds):

    stage  session=<id> type=<T> rows=<n> valid=<n> warning=<n> invalid=<n> duplicates=<n> quality=<0-100>
    commit session=<id> status=<s> processed=<n> failed=<n> skipped=<n> elapsed_sec=<x>
"""

__all__ = [
    "format_number",
    "render_stage_summary",
    "render_commit_summary",
]


def format_number(value: float) -> str:
    """Render a float without trailing zeros or scientific notation.

    >>> format_number(2.0)
    '2'
    >>> format_number(0.0004)
    '0.0004'
    """
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_stage_summary(session: UploadSession, metrics: QualityMetrics) -> str:
    return (
        f"stage session={session.id} "
        f"type={session.import_type} "
        f"rows={session.total_rows} "
        f"valid={session.valid_count} "
        f"warning={session.warning_count} "
        f"invalid={session.invalid_count} "
        f"duplicates={session.duplicate_count} "
        f"quality={metrics.overall_score}"
    )


def render_commit_summary(session: UploadSession, summary: CommitSummary) -> str:
    return (
        f"commit session={summary.session_id} "
        f"status={session.status.value} "
        f"processed={summary.processed_count} "
        f"failed={summary.failed_count} "
        f"skipped={summary.skipped_count} "
        f"elapsed_sec={format_number(summary.elapsed_seconds)}"
    )
