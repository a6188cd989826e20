from __future__ import annotations

import hashlib
import logging
import re
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.import_profile import PROFILES, ImportProfile, get_profile
from ..models.raw_row import RawRow
from .coerce import DEFAULT_NULL_SENTINELS, clean_cell

"""Record parser: uploaded spreadsheet -> ordered RawRows + column mapping.

- The first row is the header row, data starts on row 2
- Fully blank rows are skipped without renumbering the following rows
- Headers map to logical fields through the import profile's alias table:
  exact (normalized) alias first, then whole-word alias match
- Import type is detected from header signatures; a requested type is kept
  when its required fields all map, otherwise the detected type wins

Pure transform: the only I/O is reading the file itself.
"""

__all__ = [
    "ImportInputError",
    "UnsupportedFormat",
    "EmptyFile",
    "RowLimitExceeded",
    "UnknownImportType",
    "MissingColumns",
    "ColumnMapping",
    "ParsedUpload",
    "SUPPORTED_SUFFIXES",
    "read_table",
    "normalize_header",
    "detect_import_type",
    "map_columns",
    "file_sha256",
    "read_upload",
]

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = frozenset({".xlsx", ".xlsm", ".csv"})
DEFAULT_MAX_ROWS = 10_000

_HEADER_SEPARATORS = re.compile(r"[\s_\-]+")


class ImportInputError(Exception):
    """Base class for problems with the uploaded file itself."""


class UnsupportedFormat(ImportInputError):
    """File extension or content is not a readable tabular format."""


class EmptyFile(ImportInputError):
    """No data rows after the header."""


class RowLimitExceeded(ImportInputError):
    """More data rows than the configured ceiling."""


class UnknownImportType(ImportInputError):
    """Import type neither given nor detectable from the headers."""


class MissingColumns(ImportInputError):
    """Required columns of the effective import type are absent from the header row."""


@dataclass(frozen=True)
class ColumnMapping:
    fields: dict[str, str]  # Logical field -> source header
    unmapped_headers: tuple[str, ...] = ()

    def header_for(self, field_name: str) -> str | None:
        return self.fields.get(field_name)

    def missing(self, field_names: Iterable[str]) -> list[str]:
        return [f for f in field_names if f not in self.fields]


@dataclass(frozen=True)
class ParsedUpload:
    file_name: str
    import_type: str  # Effective import type
    headers: list[str]
    rows: list[RawRow]
    mapping: ColumnMapping
    file_hash: str
    file_size: int
    detected_type: str | None = None
    notices: list[str] = field(default_factory=list)  # Non-fatal parser remarks

    @property
    def profile(self) -> ImportProfile:
        return get_profile(self.import_type)

    def field_values(self, row: RawRow) -> dict[str, Any]:
        """Logical field -> raw cell for one row (None for unmapped fields)."""
        return {name: row.get(self.mapping.header_for(name)) for name in self.profile.field_names}


def normalize_header(header: Any) -> str:
    return _HEADER_SEPARATORS.sub(" ", str(header).strip().lower()).strip()


def read_table(path: Path) -> pd.DataFrame:
    """Read the first sheet (or the CSV) without header interpretation.

    Raises:
        UnsupportedFormat: unknown extension or unreadable content
        EmptyFile: the file holds no rows at all
    """
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnsupportedFormat(
            f"{path.name}: unsupported file type '{suffix or '<none>'}' "
            f"(expected one of {', '.join(sorted(SUPPORTED_SUFFIXES))})"
        )
    if not path.exists():
        raise UnsupportedFormat(f"{path.name}: file not found")
    try:
        if suffix == ".csv":
            # 空行も保持して行番号を元ファイルと一致させる
            return pd.read_csv(
                path,
                header=None,
                dtype=object,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig",
            )
        xls = pd.ExcelFile(path, engine="openpyxl")
        if not xls.sheet_names:
            raise EmptyFile(f"{path.name}: workbook has no sheets")
        # pandas 既定の NA 文字列 ("NA", "null", "None" ...) は変換しない。空セルのみ NaN、残りは null_sentinels で判定
        return xls.parse(xls.sheet_names[0], header=None, dtype=object, keep_default_na=False, na_values=[""])
    except pd.errors.EmptyDataError as e:
        raise EmptyFile(f"{path.name}: file is empty") from e
    except (ValueError, OSError, zipfile.BadZipFile, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise UnsupportedFormat(f"{path.name}: cannot read as {suffix} ({e})") from e


def _unique_headers(raw_headers: list[Any]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for i, raw in enumerate(raw_headers):
        cleaned = clean_cell(raw, frozenset())
        name = str(cleaned) if cleaned is not None else f"column_{i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def detect_import_type(headers: Iterable[str]) -> str | None:
    """Return the first profile whose signature headers are all present."""
    present = {normalize_header(h) for h in headers}
    for profile in PROFILES.values():
        for group in profile.signatures:
            if all(sig in present for sig in group):
                return profile.name
    return None


def map_columns(headers: list[str], profile: ImportProfile) -> ColumnMapping:
    """Map source headers to the profile's logical fields.

    Pass 1 takes exact alias matches for every field, pass 2 fills the rest
    with whole-word alias matches. A header is used by at most one field.
    """
    normalized = {h: normalize_header(h) for h in headers}
    taken: set[str] = set()
    mapping: dict[str, str] = {}

    for spec in profile.fields:
        for alias in spec.aliases:
            target = normalize_header(alias)
            hit = next((h for h in headers if h not in taken and normalized[h] == target), None)
            if hit is not None:
                mapping[spec.name] = hit
                taken.add(hit)
                break

    for spec in profile.fields:
        if spec.name in mapping:
            continue
        for alias in spec.aliases:
            pattern = re.compile(rf"(?<![a-z0-9]){re.escape(normalize_header(alias))}(?![a-z0-9])")
            hit = next((h for h in headers if h not in taken and pattern.search(normalized[h])), None)
            if hit is not None:
                mapping[spec.name] = hit
                taken.add(hit)
                break

    unmapped = tuple(h for h in headers if h not in taken)
    return ColumnMapping(fields=mapping, unmapped_headers=unmapped)


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _resolve_import_type(
    headers: list[str], requested: str | None, notices: list[str]
) -> tuple[str, str | None]:
    detected = detect_import_type(headers)
    if requested is None:
        if detected is None:
            raise UnknownImportType("could not detect import type from headers: " + ", ".join(headers))
        return detected, detected

    try:
        requested_profile = get_profile(requested)
    except KeyError as e:
        raise UnknownImportType(str(e.args[0])) from e

    if detected is None or detected == requested_profile.name:
        return requested_profile.name, detected

    missing = map_columns(headers, requested_profile).missing(requested_profile.required_fields)
    if missing:
        msg = (
            f"import type mismatch: expected {requested_profile.name} but detected {detected} "
            f"(missing {', '.join(missing)}); using {detected}"
        )
        logger.warning(msg)
        notices.append(msg)
        return detected, detected
    msg = f"import type mismatch: headers look like {detected}; keeping {requested_profile.name}"
    logger.warning(msg)
    notices.append(msg)
    return requested_profile.name, detected


def read_upload(
    path: Path,
    import_type: str | None = None,
    *,
    max_rows: int = DEFAULT_MAX_ROWS,
    null_sentinels: frozenset[str] | set[str] = DEFAULT_NULL_SENTINELS,
) -> ParsedUpload:
    """Parse an uploaded file into RawRows and a column mapping.

    Parameters
    ----------
    path: uploaded file (.xlsx / .xlsm / .csv)
    import_type: requested import type (None = detect from headers)
    max_rows: data-row ceiling; exceeding it raises RowLimitExceeded
    null_sentinels: upper-case strings treated as empty cells

    Raises
    ------
    UnsupportedFormat, EmptyFile, RowLimitExceeded, UnknownImportType, MissingColumns
    """
    df = read_table(path)
    if df.shape[0] == 0:
        raise EmptyFile(f"{path.name}: no header row")

    headers = _unique_headers(df.iloc[0].tolist())
    sentinels = frozenset(s.upper() for s in null_sentinels)

    rows: list[RawRow] = []
    for row_number, raw in enumerate(df.iloc[1:].itertuples(index=False, name=None), start=2):
        values = {h: clean_cell(v, sentinels) for h, v in zip(headers, raw, strict=False)}
        row = RawRow(row_number=row_number, values=values)
        if row.is_blank:
            continue
        rows.append(row)
        if len(rows) > max_rows:
            raise RowLimitExceeded(f"{path.name}: more than {max_rows} data rows")

    if not rows:
        raise EmptyFile(f"{path.name}: no data rows after the header")

    notices: list[str] = []
    effective_type, detected = _resolve_import_type(headers, import_type, notices)
    mapping = map_columns(headers, get_profile(effective_type))
    missing = mapping.missing(get_profile(effective_type).required_fields)
    if missing:
        raise MissingColumns(f"{path.name}: missing required columns for {effective_type}: {', '.join(missing)}")
    logger.debug(f"{path.name}: type={effective_type} mapping={mapping.fields}")

    return ParsedUpload(
        file_name=path.name,
        import_type=effective_type,
        headers=headers,
        rows=rows,
        mapping=mapping,
        file_hash=file_sha256(path),
        file_size=path.stat().st_size,
        detected_type=detected,
        notices=notices,
    )
