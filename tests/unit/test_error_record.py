from __future__ import annotations

import json

from erp_import.models.error_record import ErrorRecord


def test_create_sets_utc_timestamp():
    rec = ErrorRecord.create("grn.xlsx", "sess-1", 3, "COMMIT_FAILED", "duplicate key")
    assert rec.timestamp.endswith("Z")
    assert "+00:00" not in rec.timestamp


def test_json_line_has_fixed_keys():
    rec = ErrorRecord.create("grn.xlsx", "sess-1", 3, "COMMIT_FAILED", "duplicate key")
    data = json.loads(rec.to_json_line())
    assert list(data) == ["timestamp", "file", "session", "row", "error_type", "message"]
    assert data["row"] == 3


def test_json_line_keeps_non_ascii():
    rec = ErrorRecord.create("入庫.xlsx", "sess-1", 2, "VALIDATION_ERROR", "品目コードなし")
    assert "入庫.xlsx" in rec.to_json_line()
