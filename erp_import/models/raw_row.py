from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RawRow model for the bulk import pipeline.

RawRow represents a single data row exactly as the parser produced it: source
header -> cleaned cell value. It is immutable and only lives until validation
turns it into a ValidatedRecord (the record may keep it for audit).
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """One uploaded data row keyed by the original column headers.

    row_number is the spreadsheet row number: the header is row 1, so the
    first data row is 2. Fully blank rows are skipped by the parser but never
    renumber the rows that follow them.
    """
    row_number: int  # 1-based spreadsheet row
    values: dict[str, Any]  # Source header -> cleaned cell value (None for blanks)

    def get(self, header: str | None) -> Any:
        """Return the cell under ``header`` (None when unmapped or blank)."""
        if header is None:
            return None
        return self.values.get(header)

    @property
    def is_blank(self) -> bool:
        return all(v is None for v in self.values.values())
