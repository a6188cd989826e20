from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..models.import_profile import ImportProfile
from ..models.validated_record import ValidatedRecord

"""Duplicate detector.

Two records are duplicates when their composite key (the profile's
``key_fields`` over normalized values) is equal. Records with an incomplete
key never match anything.

Comparison scope:
1. keys already committed to the system of record for the same import type
   and organization -> "matches committed record <id>"
2. earlier rows of the same upload -> "matches row <n>" (the first occurrence
   stays clean)

Duplicates are flagged, never dropped: they stay in the staged set and in the
exported report, and approval excludes them from commit.
"""

__all__ = [
    "record_keys",
    "detect_duplicates",
    "find_conflicts",
]

logger = logging.getLogger(__name__)

Key = tuple[Any, ...]


def record_keys(records: Iterable[ValidatedRecord], profile: ImportProfile) -> set[Key]:
    """Distinct complete keys of ``records`` (used to query committed history)."""
    keys: set[Key] = set()
    for record in records:
        key = record.key(profile.key_fields)
        if key is not None:
            keys.add(key)
    return keys


def detect_duplicates(
    records: list[ValidatedRecord],
    profile: ImportProfile,
    committed: Mapping[Key, str] | None = None,
) -> int:
    """Flag duplicates in place and return how many records were flagged.

    ``records`` must be in file order; ``committed`` maps already committed
    keys to their system-of-record ids.
    """
    committed = committed or {}
    first_seen: dict[Key, int] = {}
    flagged = 0
    for record in sorted(records, key=lambda r: r.source_row_number):
        key = record.key(profile.key_fields)
        if key is None:
            continue
        if key in committed:
            record.mark_duplicate(f"matches committed record {committed[key]}")
            flagged += 1
        elif key in first_seen:
            record.mark_duplicate(f"matches row {first_seen[key]}")
            flagged += 1
        first_seen.setdefault(key, record.source_row_number)
    if flagged:
        logger.debug(f"{profile.name}: flagged {flagged} duplicate record(s)")
    return flagged


def find_conflicts(
    records: Iterable[ValidatedRecord], record: ValidatedRecord, profile: ImportProfile
) -> list[ValidatedRecord]:
    """All other records sharing ``record``'s key, in row order."""
    key = record.key(profile.key_fields)
    if key is None:
        return []
    return sorted(
        (r for r in records if r is not record and r.key(profile.key_fields) == key),
        key=lambda r: r.source_row_number,
    )
