from __future__ import annotations

from datetime import date

import pytest

from erp_import.db.store import MemoryImportStore, StoreUnavailable
from erp_import.logging.error_log import ErrorLogBuffer
from erp_import.models import InvalidStateTransition, ProcessingStatus, SessionStatus, UploadSession, ValidatedRecord
from erp_import.services.approval import ApprovalGate
from erp_import.services.commit import CommitProcessor

D = date(2024, 6, 1)


def _approved(store: MemoryImportStore, quantities: list[float]) -> UploadSession:
    session = UploadSession(file_name="grn.csv", import_type="GRN", organization_id="org-001")
    session.status = SessionStatus.STAGED
    session.records = [
        ValidatedRecord.build(
            n + 2, {"documentNumber": f"GRN-{n}", "itemCode": "ITM-1", "date": D, "quantity": q}, [], []
        )
        for n, q in enumerate(quantities)
    ]
    store.insert_staging_records(session, session.records)
    ApprovalGate(store).approve(session.id, "asha")
    return session


def test_all_records_committed(store):
    session = _approved(store, [1.0, 2.0, 3.0])
    summary = CommitProcessor(store).process(session.id)
    assert (summary.processed_count, summary.failed_count, summary.skipped_count) == (3, 0, 0)
    stored = store.load_session(session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.completed_at is not None
    assert all(r.committed_id for r in stored.records)
    assert store.balance("org-001", "ITM-1") == 6.0


def test_per_record_failure_does_not_abort(tmp_path):
    store = MemoryImportStore(reject_when=lambda r: "negative stock not allowed" if r.source_row_number == 4 else None)
    session = _approved(store, [1.0, 2.0, 3.0, 4.0, 5.0])
    log = ErrorLogBuffer(tmp_path)
    summary = CommitProcessor(store, log).process(session.id)
    assert (summary.processed_count, summary.failed_count) == (4, 1)
    assert summary.failures[0].source_row_number == 4
    assert summary.failures[0].reason == "negative stock not allowed"
    stored = store.load_session(session.id)
    assert stored.status is SessionStatus.COMPLETED
    failed = stored.record_for_row(4)
    assert failed.processing_status is ProcessingStatus.FAILED
    assert failed.commit_error == "negative stock not allowed"
    assert [r.error_type for r in log.records] == ["COMMIT_FAILED"]


def test_completed_session_is_noop(store):
    session = _approved(store, [1.0, 2.0])
    processor = CommitProcessor(store)
    processor.process(session.id)
    again = processor.process(session.id)
    assert (again.processed_count, again.failed_count, again.skipped_count) == (0, 0, 0)
    assert len(store.committed_entries) == 2
    assert store.balance("org-001", "ITM-1") == 3.0


def test_interrupted_run_resumes_without_double_counting(store):
    session = _approved(store, [1.0, 2.0, 3.0])
    loaded = store.load_session(session.id)
    # first record applied, then the run died while PROCESSING
    store.commit_record(loaded, loaded.records[0])
    store.update_session_status(session.id, SessionStatus.PROCESSING)

    summary = CommitProcessor(store).process(session.id)
    assert (summary.processed_count, summary.skipped_count) == (2, 1)
    assert store.load_session(session.id).status is SessionStatus.COMPLETED
    assert len(store.committed_entries) == 3
    assert store.balance("org-001", "ITM-1") == 6.0


def test_process_requires_approval(store):
    session = UploadSession(file_name="grn.csv", import_type="GRN", organization_id="org-001")
    session.status = SessionStatus.STAGED
    store.insert_staging_records(session, [])
    with pytest.raises(InvalidStateTransition):
        CommitProcessor(store).process(session.id)


class _DownStore(MemoryImportStore):
    def ping(self) -> None:
        raise StoreUnavailable("system of record unreachable")


def test_unreachable_system_of_record_fails_session(tmp_path):
    store = _DownStore()
    session = _approved(store, [1.0])
    log = ErrorLogBuffer(tmp_path)
    with pytest.raises(StoreUnavailable):
        CommitProcessor(store, log).process(session.id)
    stored = store.load_session(session.id)
    assert stored.status is SessionStatus.FAILED
    assert "unreachable" in stored.error
    assert store.committed_entries == []
    assert log.records[0].error_type == "STORE_UNAVAILABLE"


class _DropsOnce(MemoryImportStore):
    """Loses the connection once, when row ``drop_at`` is committed."""

    def __init__(self, drop_at: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.drop_at = drop_at

    def commit_record(self, session, record):
        if record.source_row_number == self.drop_at:
            self.drop_at = -1
            raise StoreUnavailable("connection reset")
        return super().commit_record(session, record)


def test_failed_record_survives_interrupted_run(tmp_path):
    store = _DropsOnce(4, reject_when=lambda r: "item blocked" if r.source_row_number == 3 else None)
    session = _approved(store, [1.0, 2.0, 3.0, 4.0])
    log = ErrorLogBuffer(tmp_path)
    processor = CommitProcessor(store, log)

    with pytest.raises(StoreUnavailable):
        processor.process(session.id)
    stored = store.load_session(session.id)
    assert stored.status is SessionStatus.PROCESSING
    assert stored.record_for_row(3).processing_status is ProcessingStatus.FAILED
    assert stored.record_for_row(3).commit_error == "item blocked"

    summary = processor.process(session.id)
    assert (summary.processed_count, summary.failed_count, summary.skipped_count) == (2, 0, 1)
    stored = store.load_session(session.id)
    assert stored.status is SessionStatus.COMPLETED
    assert stored.record_for_row(3).processing_status is ProcessingStatus.FAILED
    assert [e.source_row_number for e in store.committed_entries] == [2, 4, 5]
    assert [r.error_type for r in log.records] == ["COMMIT_FAILED"]
