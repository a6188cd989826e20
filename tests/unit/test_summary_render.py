from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from erp_import.models import SessionStatus, UploadSession, ValidatedRecord
from erp_import.models.commit_result import CommitFailure, CommitSummary
from erp_import.models.quality_metrics import QualityMetrics
from erp_import.services.summary import format_number, render_commit_summary, render_stage_summary


def _session() -> UploadSession:
    s = UploadSession(file_name="grn.xlsx", import_type="GRN", organization_id="org-001", id="sess-1")
    d = date(2024, 6, 1)
    ok = ValidatedRecord.build(2, {"documentNumber": "G1", "itemCode": "I1", "date": d}, [], [])
    warn = ValidatedRecord.build(3, {"documentNumber": "G1", "itemCode": "I2", "date": d}, [], ["date is in the future"])
    bad = ValidatedRecord.build(4, {"documentNumber": "G1", "itemCode": None, "date": d}, ["itemCode is required"], [])
    dup = ValidatedRecord.build(5, {"documentNumber": "G1", "itemCode": "I1", "date": d}, [], [])
    dup.mark_duplicate("matches row 2")
    s.records = [ok, warn, bad, dup]
    return s


def test_format_number():
    assert format_number(0) == "0"
    assert format_number(2.0) == "2"
    assert format_number(1.23456) == "1.235"
    assert format_number(0.0004) == "0.0004"


def test_render_stage_summary():
    metrics = QualityMetrics(
        completeness_score=90, accuracy_score=75, consistency_score=75, validity_score=75, overall_score=79
    )
    line = render_stage_summary(_session(), metrics)
    assert line == "stage session=sess-1 type=GRN rows=4 valid=2 warning=1 invalid=1 duplicates=1 quality=79"


def test_render_commit_summary():
    session = _session()
    session.status = SessionStatus.COMPLETED
    start = datetime(2024, 6, 30, 9, 0, tzinfo=UTC)
    summary = CommitSummary(
        session_id="sess-1",
        processed_count=4,
        failed_count=1,
        skipped_count=0,
        start_time=start,
        end_time=start + timedelta(seconds=1.5),
        failures=[CommitFailure(5, "duplicate key")],
    )
    assert render_commit_summary(session, summary) == (
        "commit session=sess-1 status=completed processed=4 failed=1 skipped=0 elapsed_sec=1.5"
    )
    assert summary.has_failures
