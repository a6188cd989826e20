from __future__ import annotations

import pytest

from erp_import.db.batch_insert import BatchInsertError, batch_insert, batch_update


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.rows: list[list] = []
        self.page_sizes: list[int] = []


# execute_values is patched inside the module so no database is needed
@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import erp_import.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=1000):
        cursor.queries.append(sql)
        cursor.rows.extend(rows)
        cursor.page_sizes.append(page_size)

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    sent = batch_insert(cur, table="import_staging_records", columns=["id", "fields"], rows=[[1, "{}"], [2, "{}"]])
    assert sent == 2
    assert cur.rows == [[1, "{}"], [2, "{}"]]
    assert cur.queries == ['INSERT INTO import_staging_records ("id","fields") VALUES %s']


def test_batch_insert_empty_rows_skips_statement():
    cur = DummyCursor()
    assert batch_insert(cur, table="t", columns=["id"], rows=[]) == 0
    assert cur.queries == []


def test_batch_insert_wraps_driver_errors(monkeypatch):
    import erp_import.db.batch_insert as bi

    def boom(*args, **kwargs):
        raise RuntimeError("constraint violated")

    monkeypatch.setattr(bi, "execute_values", boom)
    with pytest.raises(BatchInsertError, match="constraint violated"):
        batch_insert(DummyCursor(), table="t", columns=["c"], rows=[[1]])


def test_batch_insert_metrics_callback_and_page_size():
    cur = DummyCursor()
    captured = []
    batch_insert(
        cur,
        table="t",
        columns=["id", "fields"],
        rows=[[1, "{}"], [2, "{}"], [3, "{}"]],
        page_size=2,
        metrics_callback=captured.append,
    )
    assert len(captured) == 1
    assert captured[0].batch_size == 3
    assert captured[0].elapsed_seconds >= 0
    assert cur.page_sizes == [2]


def test_batch_update_builds_values_join():
    cur = DummyCursor()
    sent = batch_update(
        cur,
        "import_staging_records",
        "id",
        ["processing_status", "commit_error"],
        [("r1", "approved", None), ("r2", "rejected", None)],
    )
    assert sent == 2
    sql = cur.queries[0]
    assert sql.startswith('UPDATE import_staging_records AS t SET "processing_status" = v."processing_status"')
    assert 'AS v ("id","processing_status","commit_error")' in sql
    assert sql.endswith('WHERE t."id" = v."id"')
    assert batch_update(cur, "t", "id", ["c"], []) == 0
