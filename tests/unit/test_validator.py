from __future__ import annotations

from datetime import date

import pytest

from erp_import.models.import_profile import get_profile
from erp_import.models.validated_record import ValidationStatus
from erp_import.services.validator import ValidationContext, validate_row

GRN = get_profile("GRN")


@pytest.fixture()
def ctx(today) -> ValidationContext:
    return ValidationContext(
        today=today,
        lookups={"items": frozenset({"ITM-1", "ITM-2"})},
        averages={"quantity": {"ITM-1": 10.0}},
    )


def _grn(**overrides):
    values = {
        "documentNumber": "GRN-001",
        "itemCode": "ITM-1",
        "supplierName": "Acme Mills",
        "date": "01/06/2024",
        "quantity": "10",
        "unitRate": "5.5",
    }
    values.update(overrides)
    return values


def test_clean_row_is_valid_and_normalized(ctx):
    rec = validate_row(_grn(itemCode=" itm-1 "), GRN, ctx, row_number=2)
    assert rec.validation_status is ValidationStatus.VALID
    assert rec.validation_errors == []
    assert rec.validation_warnings == []
    assert rec.fields["itemCode"] == "ITM-1"
    assert rec.fields["date"] == date(2024, 6, 1)
    assert rec.fields["quantity"] == 10.0
    assert rec.fields["totalAmount"] == 55.0
    assert rec.fields["uom"] == "PCS"
    assert rec.fields["qualityStatus"] == "pending"


def test_missing_item_code_reports_only_required(ctx):
    rec = validate_row(_grn(itemCode=None), GRN, ctx, row_number=3)
    assert rec.validation_status is ValidationStatus.INVALID
    assert rec.validation_errors == ["itemCode is required"]


def test_independent_fields_all_reported_in_declared_order(ctx):
    rec = validate_row(_grn(documentNumber=None, quantity="abc", unitRate="-1"), GRN, ctx, row_number=2)
    assert rec.validation_errors == [
        "documentNumber is required",
        "quantity must be a number",
        "unitRate must be >= 0",
    ]


def test_range_error_keeps_coerced_value(ctx):
    rec = validate_row(_grn(quantity="-5"), GRN, ctx, row_number=2)
    assert rec.validation_errors == ["quantity must be >= 0"]
    assert rec.fields["quantity"] == -5.0


def test_invalid_date_and_enum(ctx):
    rec = validate_row(_grn(date="31/02/2024", qualityStatus="done"), GRN, ctx, row_number=2)
    assert "date must be a valid date" in rec.validation_errors
    assert any(e.startswith("qualityStatus must be one of pending") for e in rec.validation_errors)
    assert rec.fields["date"] == "31/02/2024"


def test_referential_miss_is_only_a_warning(ctx):
    rec = validate_row(_grn(itemCode="ITM-9"), GRN, ctx, row_number=2)
    assert rec.validation_status is ValidationStatus.WARNING
    assert rec.validation_warnings == ["itemCode 'ITM-9' not found in master data"]


def test_referential_check_skipped_without_master_data(today):
    rec = validate_row(_grn(itemCode="ITM-9"), GRN, ValidationContext(today=today), row_number=2)
    assert rec.validation_status is ValidationStatus.VALID


def test_date_window_warnings(ctx):
    future = validate_row(_grn(date="2024-07-15"), GRN, ctx, row_number=2)
    assert future.validation_warnings == ["date is in the future"]
    stale = validate_row(_grn(date="2022-01-01"), GRN, ctx, row_number=2)
    assert stale.validation_warnings == ["date is more than 365 days old"]


def test_outlier_against_historical_average(ctx):
    rec = validate_row(_grn(quantity="31"), GRN, ctx, row_number=2)
    assert rec.validation_warnings == ["quantity higher than historical average"]
    ok = validate_row(_grn(quantity="30"), GRN, ctx, row_number=2)
    assert ok.validation_warnings == []
    other_item = validate_row(_grn(itemCode="ITM-2", quantity="500"), GRN, ctx, row_number=2)
    assert other_item.validation_warnings == []


def test_sales_gst_rate_bounds(ctx):
    sales = get_profile("SALES")
    rec = validate_row(
        {"documentNumber": "INV-1", "date": "2024-06-01", "partyName": "Zen", "amount": "1,000", "gstRate": "118"},
        sales,
        ctx,
        row_number=2,
    )
    assert rec.validation_errors == ["gstRate must be between 0 and 100"]
    assert rec.fields["amount"] == 1000.0


def test_validation_is_deterministic(ctx):
    values = _grn(itemCode="ITM-9", quantity="abc", date="2024-07-15")
    first = validate_row(values, GRN, ctx, row_number=2)
    second = validate_row(values, GRN, ctx, row_number=2)
    assert first.validation_status == second.validation_status
    assert first.validation_errors == second.validation_errors
    assert first.validation_warnings == second.validation_warnings
    assert first.fields == second.fields
