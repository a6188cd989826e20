from __future__ import annotations

import copy
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from ..models.commit_result import CommitResult
from ..models.import_profile import get_profile
from ..models.upload_session import SessionStatus, UploadSession
from ..models.validated_record import ProcessingStatus, ValidatedRecord

"""Data-access collaborator for the import pipeline.

ImportStore is the seam between the pipeline and whatever holds staging
tables and the system of record. Two implementations:

- MemoryImportStore (this module): in-process fake used by tests and by the
  CLI when DISABLE_DB_CONNECT=1
- PostgresImportStore (db/postgres.py): psycopg2 backed

Contract highlights:
- insert_staging_records is all-or-nothing
- commit_record applies one record transactionally and marks the staged copy
  PROCESSED in the same unit of work; re-applying a PROCESSED record is a no-op
- mark_record_failed persists a FAILED status and its reason on its own, so a
  resumed commit never attempts that record again
- StoreUnavailable means nothing was changed and the call may be retried
"""

__all__ = [
    "StoreError",
    "StoreUnavailable",
    "SessionNotFound",
    "CommitError",
    "ImportStore",
    "CommittedEntry",
    "MemoryImportStore",
]

Key = tuple[Any, ...]


class StoreError(Exception):
    """Base class for data-access failures."""


class StoreUnavailable(StoreError):
    """The backing store cannot be reached; state is unchanged."""


class SessionNotFound(StoreError):
    pass


class CommitError(StoreError):
    """One record could not be applied to the system of record."""


class ImportStore(Protocol):
    def ping(self) -> None: ...

    def insert_staging_records(self, session: UploadSession, records: list[ValidatedRecord]) -> None: ...

    def load_session(self, session_id: str) -> UploadSession: ...

    def save_session(self, session: UploadSession) -> None: ...

    def update_session_status(self, session_id: str, status: SessionStatus, error: str | None = None) -> None: ...

    def commit_record(self, session: UploadSession, record: ValidatedRecord) -> CommitResult: ...

    def mark_record_failed(self, session_id: str, record_id: str, reason: str) -> None: ...

    def query_existing_keys(self, import_type: str, organization_id: str, keys: Iterable[Key]) -> dict[Key, str]: ...

    def historical_averages(
        self, import_type: str, organization_id: str, field: str, group_by: str
    ) -> dict[Any, float]: ...

    def master_keys(self, lookup: str, organization_id: str) -> frozenset[str] | None: ...

    def find_sessions_by_hash(self, organization_id: str, file_hash: str) -> list[str]: ...

    def delete_session(self, session_id: str) -> None: ...


@dataclass(frozen=True)
class CommittedEntry:
    committed_id: str
    organization_id: str
    import_type: str
    key: Key | None
    fields: dict[str, Any]
    session_id: str
    source_row_number: int


class MemoryImportStore:
    """Thread-safe in-memory ImportStore.

    Parameters
    ----------
    items: active item codes (master data); None = no item master available
    reject_when: optional downstream constraint, returns a failure reason for
        records the system of record must refuse (None = accept)
    """

    def __init__(
        self,
        items: Iterable[str] | None = None,
        *,
        reject_when: Callable[[ValidatedRecord], str | None] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, UploadSession] = {}
        self._committed: list[CommittedEntry] = []
        # (import_type, organization_id) -> {key: committed_id}
        self._keys: dict[tuple[str, str], dict[Key, str]] = defaultdict(dict)
        self._balances: dict[tuple[str, Any], float] = defaultdict(float)
        self._sequences: dict[str, int] = defaultdict(int)
        self._items = frozenset(items) if items is not None else None
        self.reject_when = reject_when
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailable("memory store marked unavailable")

    def _stored(self, session_id: str) -> UploadSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(f"session not found: {session_id}") from None

    # --- staging -----------------------------------------------------------
    def ping(self) -> None:
        self._check()

    def insert_staging_records(self, session: UploadSession, records: list[ValidatedRecord]) -> None:
        self._check()
        row_numbers = [r.source_row_number for r in records]
        if len(set(row_numbers)) != len(row_numbers):
            raise StoreError(f"session {session.id}: duplicate source_row_number in staged records")
        staged = copy.deepcopy(session)
        staged.records = copy.deepcopy(list(records))
        with self._lock:
            if session.id in self._sessions:
                raise StoreError(f"session {session.id} already staged")
            self._sessions[session.id] = staged

    def load_session(self, session_id: str) -> UploadSession:
        self._check()
        with self._lock:
            session = copy.deepcopy(self._stored(session_id))
        session.records.sort(key=lambda r: r.source_row_number)
        return session

    def save_session(self, session: UploadSession) -> None:
        self._check()
        snapshot = copy.deepcopy(session)
        with self._lock:
            self._stored(session.id)
            self._sessions[session.id] = snapshot

    def update_session_status(self, session_id: str, status: SessionStatus, error: str | None = None) -> None:
        self._check()
        with self._lock:
            stored = self._stored(session_id)
            stored.status = status
            if error is not None:
                stored.error = error

    def delete_session(self, session_id: str) -> None:
        self._check()
        with self._lock:
            self._sessions.pop(session_id, None)

    def find_sessions_by_hash(self, organization_id: str, file_hash: str) -> list[str]:
        self._check()
        with self._lock:
            return [
                s.id
                for s in self._sessions.values()
                if s.organization_id == organization_id
                and s.file_hash == file_hash
                and s.status is not SessionStatus.FAILED
            ]

    # --- system of record --------------------------------------------------
    def commit_record(self, session: UploadSession, record: ValidatedRecord) -> CommitResult:
        self._check()
        profile = get_profile(session.import_type)
        with self._lock:
            stored = next((r for r in self._stored(session.id).records if r.id == record.id), None)
            if stored is None:
                raise CommitError(f"row {record.source_row_number}: record not staged in session {session.id}")
            if stored.processing_status is ProcessingStatus.PROCESSED:
                return CommitResult(committed_id=stored.committed_id or "")

            if self.reject_when is not None:
                reason = self.reject_when(record)
                if reason:
                    raise CommitError(reason)

            key = record.key(profile.key_fields)
            if key is not None:
                clash = self._keys[(profile.name, session.organization_id)].get(key)
                if clash is not None:
                    raise CommitError(f"duplicate key {list(key)} already committed as {clash}")

            self._sequences[profile.id_prefix] += 1
            committed_id = f"{profile.id_prefix}-{self._sequences[profile.id_prefix]:05d}"
            self._committed.append(
                CommittedEntry(
                    committed_id=committed_id,
                    organization_id=session.organization_id,
                    import_type=profile.name,
                    key=key,
                    fields=dict(record.fields),
                    session_id=session.id,
                    source_row_number=record.source_row_number,
                )
            )
            if key is not None:
                self._keys[(profile.name, session.organization_id)][key] = committed_id
            balance_after = None
            if profile.balance_field is not None:
                qty = record.fields.get(profile.balance_field) or 0.0
                balance_key = (session.organization_id, record.fields.get(profile.balance_key))
                self._balances[balance_key] += float(qty)
                balance_after = self._balances[balance_key]

            stored.processing_status = ProcessingStatus.PROCESSED
            stored.committed_id = committed_id
            return CommitResult(committed_id=committed_id, balance_after=balance_after)

    def mark_record_failed(self, session_id: str, record_id: str, reason: str) -> None:
        self._check()
        with self._lock:
            stored = next((r for r in self._stored(session_id).records if r.id == record_id), None)
            if stored is None or stored.processing_status is ProcessingStatus.PROCESSED:
                return
            stored.processing_status = ProcessingStatus.FAILED
            stored.commit_error = reason

    def query_existing_keys(self, import_type: str, organization_id: str, keys: Iterable[Key]) -> dict[Key, str]:
        self._check()
        wanted = set(keys)
        with self._lock:
            existing = self._keys.get((import_type, organization_id), {})
            return {k: v for k, v in existing.items() if k in wanted}

    def historical_averages(
        self, import_type: str, organization_id: str, field: str, group_by: str
    ) -> dict[Any, float]:
        self._check()
        totals: dict[Any, list[float]] = defaultdict(list)
        with self._lock:
            for e in self._committed:
                if e.import_type != import_type or e.organization_id != organization_id:
                    continue
                value = e.fields.get(field)
                if isinstance(value, (int, float)):
                    totals[e.fields.get(group_by)].append(float(value))
        return {group: sum(vals) / len(vals) for group, vals in totals.items()}

    def master_keys(self, lookup: str, organization_id: str) -> frozenset[str] | None:
        self._check()
        if lookup == "items":
            return self._items
        return None

    # --- inspection helpers (tests / CLI) ------------------------------------
    @property
    def committed_entries(self) -> list[CommittedEntry]:
        with self._lock:
            return list(self._committed)

    def balance(self, organization_id: str, item_code: str) -> float:
        with self._lock:
            return self._balances.get((organization_id, item_code), 0.0)
