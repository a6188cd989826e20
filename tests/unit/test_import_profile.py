from __future__ import annotations

import pytest

from erp_import.models.import_profile import PROFILES, get_profile


def test_profiles_registered_in_detection_order():
    assert list(PROFILES) == ["GRN", "SALES", "PURCHASE", "VOUCHER", "STOCK", "PAYROLL"]


def test_get_profile_case_insensitive():
    assert get_profile("grn").name == "GRN"
    with pytest.raises(KeyError):
        get_profile("LEDGER")


def test_grn_profile_shape():
    grn = get_profile("GRN")
    assert grn.required_fields == ("documentNumber", "itemCode", "date", "quantity")
    assert grn.key_fields == ("documentNumber", "itemCode", "date")
    assert grn.id_prefix == "GRN"
    assert grn.balance_field == "quantity"
    assert grn.spec_for("uom").default == "PCS"


@pytest.mark.parametrize("name", list(PROFILES))
def test_key_fields_are_declared_fields(name):
    profile = PROFILES[name]
    assert set(profile.key_fields) <= set(profile.field_names)
    assert profile.required_fields
