from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT / UPDATE helpers over psycopg2.extras.execute_values.

Staging a session writes every record in one statement batch inside the
caller's transaction; the caller owns COMMIT/ROLLBACK. Identifiers passed in
here are module constants, never user input.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "batch_insert",
    "batch_update",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


def _run(
    cursor: Any,
    sql: str,
    rows: list[Sequence[Any]],
    page_size: int,
    metrics_callback: Callable[[BatchMetrics], None] | None,
) -> None:
    start_time = time.time()
    try:
        execute_values(cursor, sql, rows, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    """INSERT ``rows`` into ``table`` in pages of ``page_size``.

    Parameters
    ----------
    cursor: psycopg2 cursor (inside the caller's transaction)
    table / columns: target table and column order of ``rows``
    metrics_callback: receives one BatchMetrics per call; not invoked for
        empty ``rows``

    Returns the number of rows sent.
    """
    rows_list = list(rows)
    if not rows_list:
        return 0

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    _run(cursor, sql, rows_list, page_size, metrics_callback)
    return len(rows_list)


def batch_update(
    cursor: Any,
    table: str,
    key_column: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    """UPDATE ``table`` from a VALUES list whose first column is ``key_column``.

    Returns the number of value rows sent.
    """
    rows_list = list(rows)
    if not rows_list:
        return 0
    alias_cols = ",".join(f'"{c}"' for c in (key_column, *columns))
    assignments = ",".join(f'"{c}" = v."{c}"' for c in columns)
    sql = (
        f"UPDATE {table} AS t SET {assignments} "
        f"FROM (VALUES %s) AS v ({alias_cols}) "
        f'WHERE t."{key_column}" = v."{key_column}"'
    )
    _run(cursor, sql, rows_list, page_size, metrics_callback)
    return len(rows_list)
