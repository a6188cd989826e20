from __future__ import annotations

from datetime import date

from erp_import.models.import_profile import get_profile
from erp_import.models.validated_record import ValidatedRecord
from erp_import.services.duplicates import detect_duplicates, find_conflicts, record_keys

GRN = get_profile("GRN")
D = date(2024, 6, 1)


def _rec(row: int, doc: str | None, item: str = "ITM-1", day: date = D) -> ValidatedRecord:
    return ValidatedRecord.build(row, {"documentNumber": doc, "itemCode": item, "date": day}, [], [])


def test_duplicate_within_file_points_at_first_row():
    records = [_rec(2, "GRN-1"), _rec(3, "GRN-2"), _rec(4, "GRN-1")]
    assert detect_duplicates(records, GRN) == 1
    assert not records[0].is_duplicate
    assert records[2].is_duplicate
    assert records[2].duplicate_reason == "matches row 2"


def test_committed_match_takes_precedence():
    records = [_rec(2, "GRN-1"), _rec(3, "GRN-1")]
    committed = {("GRN-1", "ITM-1", D): "GRN-00007"}
    assert detect_duplicates(records, GRN, committed) == 2
    assert records[0].duplicate_reason == "matches committed record GRN-00007"
    assert records[1].duplicate_reason == "matches committed record GRN-00007"


def test_incomplete_keys_never_match():
    records = [_rec(2, None), _rec(3, None)]
    assert detect_duplicates(records, GRN) == 0
    assert record_keys(records, GRN) == set()


def test_same_document_different_item_is_not_duplicate():
    records = [_rec(2, "GRN-1", "ITM-1"), _rec(3, "GRN-1", "ITM-2")]
    assert detect_duplicates(records, GRN) == 0


def test_conflicts_are_symmetric():
    a, b, c = _rec(2, "GRN-1"), _rec(5, "GRN-1"), _rec(3, "GRN-2")
    records = [a, b, c]
    assert find_conflicts(records, a, GRN) == [b]
    assert find_conflicts(records, b, GRN) == [a]
    assert find_conflicts(records, c, GRN) == []


def test_detection_follows_row_order_not_list_order():
    late, early = _rec(9, "GRN-1"), _rec(2, "GRN-1")
    detect_duplicates([late, early], GRN)
    assert not early.is_duplicate
    assert late.duplicate_reason == "matches row 2"
