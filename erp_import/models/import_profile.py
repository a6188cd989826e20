from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""Import profiles: per import type field tables, rules and keys.

A profile is plain data. The parser uses ``aliases`` to map headers, the
validator walks ``rules`` in declared order, the duplicate detector builds keys
from ``key_fields`` and the commit step uses ``balance_field`` to decide whether
a committed record moves a running stock balance.

Rule kinds:
- Required: error when the value is empty
- TypeCheck: coerce to number | integer | date | enum | code | text
- Range: numeric bounds (inclusive)
- Pattern: regex the normalized value must fully match
- Referential: value must exist in a named master-data set (warning only)
- DateWindow: warning for future or stale dates
- Outlier: warning when a value exceeds the historical average for its group
"""

__all__ = [
    "Required",
    "TypeCheck",
    "Range",
    "Pattern",
    "Referential",
    "DateWindow",
    "Outlier",
    "FieldSpec",
    "ImportProfile",
    "PROFILES",
    "get_profile",
]


@dataclass(frozen=True)
class Required:
    pass


@dataclass(frozen=True)
class TypeCheck:
    kind: str  # number | integer | date | enum | code | text
    choices: tuple[str, ...] = ()  # enum members (canonical spelling)


@dataclass(frozen=True)
class Range:
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True)
class Pattern:
    regex: str


@dataclass(frozen=True)
class Referential:
    lookup: str  # Master-data set name, e.g. "items"


@dataclass(frozen=True)
class DateWindow:
    allow_future: bool = False


@dataclass(frozen=True)
class Outlier:
    group_by: str  # Field whose value selects the historical average


Rule = Required | TypeCheck | Range | Pattern | Referential | DateWindow | Outlier


@dataclass(frozen=True)
class FieldSpec:
    name: str  # Logical field name used in records and messages
    aliases: tuple[str, ...]  # Lower-case header spellings, most specific first
    rules: tuple[Rule, ...] = ()
    default: Any = None  # Applied when the cell is empty (before rules run)

    @property
    def required(self) -> bool:
        return any(isinstance(r, Required) for r in self.rules)


@dataclass(frozen=True)
class ImportProfile:
    name: str
    fields: tuple[FieldSpec, ...]
    key_fields: tuple[str, ...]  # Duplicate detection key
    id_prefix: str  # Prefix of committed record ids
    # Header groups identifying this type: any group whose headers are all present
    signatures: tuple[tuple[str, ...], ...] = ()
    amount_from: tuple[str, str] | None = None  # (quantity, rate) -> totalAmount
    balance_field: str | None = None  # Quantity added to the item's running balance
    balance_key: str = "itemCode"

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields if f.required)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def spec_for(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)


_CODE_PATTERN = Pattern(r"[A-Z0-9][A-Z0-9_\-/.]*")
_NON_NEGATIVE = Range(min=0)
_QUALITY_STATUSES = ("pending", "approved", "in_review", "passed", "failed", "rework_required")

# Aliases shared by several profiles
_DOC_ALIASES = ("voucher number", "voucher no", "document number", "doc no", "reference", "ref")
_DATE_ALIASES = ("date", "voucher date", "transaction date")
_ITEM_ALIASES = ("item code", "item_code", "sku", "product code", "item")
_QTY_ALIASES = ("quantity", "qty", "pieces")
_RATE_ALIASES = ("unit rate", "rate", "price", "unit price")


GRN = ImportProfile(
    name="GRN",
    fields=(
        FieldSpec(
            "documentNumber",
            ("grn number", "grn no", "grn") + _DOC_ALIASES,
            (Required(), TypeCheck("code"), _CODE_PATTERN),
        ),
        FieldSpec(
            "itemCode",
            _ITEM_ALIASES,
            (Required(), TypeCheck("code"), _CODE_PATTERN, Referential("items")),
        ),
        FieldSpec("supplierName", ("supplier name", "vendor name", "supplier", "vendor"), (TypeCheck("text"),)),
        FieldSpec(
            "date",
            ("grn date", "receipt date") + _DATE_ALIASES,
            (Required(), TypeCheck("date"), DateWindow()),
        ),
        FieldSpec(
            "quantity",
            ("quantity received", "qty received", "received qty") + _QTY_ALIASES,
            (Required(), TypeCheck("number"), _NON_NEGATIVE, Outlier(group_by="itemCode")),
        ),
        FieldSpec("unitRate", _RATE_ALIASES, (TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("invoiceNumber", ("invoice number", "invoice no", "bill no"), (TypeCheck("code"),)),
        FieldSpec("invoiceDate", ("invoice date", "bill date"), (TypeCheck("date"),)),
        FieldSpec(
            "qualityStatus",
            ("quality status", "qc status"),
            (TypeCheck("enum", _QUALITY_STATUSES),),
            default="pending",
        ),
        FieldSpec("uom", ("uom", "unit"), (TypeCheck("code"),), default="PCS"),
        FieldSpec("remarks", ("remarks", "narration", "description"), (TypeCheck("text"),)),
    ),
    key_fields=("documentNumber", "itemCode", "date"),
    id_prefix="GRN",
    signatures=(("grn number",), ("grn no",)),
    amount_from=("quantity", "unitRate"),
    balance_field="quantity",
)

STOCK = ImportProfile(
    name="STOCK",
    fields=(
        FieldSpec(
            "itemCode",
            _ITEM_ALIASES + ("item name", "product name"),
            (Required(), TypeCheck("code"), _CODE_PATTERN, Referential("items")),
        ),
        FieldSpec("location", ("godown name", "godown", "warehouse", "location"), (TypeCheck("code"),), default="MAIN"),
        FieldSpec("date", ("opening date", "as of date", "as on") + _DATE_ALIASES, (TypeCheck("date"),)),
        FieldSpec(
            "quantity",
            ("opening qty", "opening quantity") + _QTY_ALIASES,
            (Required(), TypeCheck("number"), _NON_NEGATIVE, Outlier(group_by="itemCode")),
        ),
        FieldSpec("unitRate", _RATE_ALIASES, (TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("remarks", ("remarks", "narration"), (TypeCheck("text"),)),
    ),
    key_fields=("itemCode", "location", "date"),
    id_prefix="STK",
    signatures=(("item name", "quantity"), ("item code", "quantity"), ("item code", "qty")),
    amount_from=("quantity", "unitRate"),
    balance_field="quantity",
)

SALES = ImportProfile(
    name="SALES",
    fields=(
        FieldSpec("documentNumber", ("invoice number", "invoice no") + _DOC_ALIASES, (Required(), TypeCheck("code"))),
        FieldSpec("date", ("invoice date",) + _DATE_ALIASES, (Required(), TypeCheck("date"), DateWindow())),
        FieldSpec("partyName", ("party name", "customer name", "party", "customer"), (Required(), TypeCheck("text"))),
        FieldSpec("amount", ("amount", "total", "value"), (Required(), TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("gstRate", ("gst rate", "tax rate", "gst%", "gst"), (TypeCheck("number"), Range(min=0, max=100))),
        FieldSpec("remarks", ("remarks", "narration", "description"), (TypeCheck("text"),)),
    ),
    key_fields=("documentNumber", "date"),
    id_prefix="SAL",
    signatures=(("party name",), ("customer name",)),
)

PURCHASE = ImportProfile(
    name="PURCHASE",
    fields=(
        FieldSpec("documentNumber", ("invoice number", "invoice no", "bill no") + _DOC_ALIASES, (Required(), TypeCheck("code"))),
        FieldSpec("date", ("invoice date", "bill date") + _DATE_ALIASES, (Required(), TypeCheck("date"), DateWindow())),
        FieldSpec("vendorName", ("vendor name", "supplier name", "vendor", "supplier"), (Required(), TypeCheck("text"))),
        FieldSpec("amount", ("amount", "total", "value"), (Required(), TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("remarks", ("remarks", "narration", "description"), (TypeCheck("text"),)),
    ),
    key_fields=("documentNumber", "vendorName", "date"),
    id_prefix="PUR",
    signatures=(("vendor name",), ("supplier name",)),
)

VOUCHER = ImportProfile(
    name="VOUCHER",
    fields=(
        FieldSpec("documentNumber", _DOC_ALIASES, (Required(), TypeCheck("code"))),
        FieldSpec("date", _DATE_ALIASES, (Required(), TypeCheck("date"), DateWindow())),
        FieldSpec("accountName", ("account name", "ledger name", "account", "ledger"), (Required(), TypeCheck("text"))),
        FieldSpec("debitAmount", ("debit amount", "dr amount", "debit"), (TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("creditAmount", ("credit amount", "cr amount", "credit"), (TypeCheck("number"), _NON_NEGATIVE)),
        FieldSpec("narration", ("narration", "particulars", "description"), (TypeCheck("text"),)),
    ),
    key_fields=("documentNumber", "accountName", "date"),
    id_prefix="VCH",
    signatures=(("debit amount", "credit amount"),),
)

PAYROLL = ImportProfile(
    name="PAYROLL",
    fields=(
        FieldSpec("employeeCode", ("employee code", "emp code", "employee id", "emp id"), (TypeCheck("code"),)),
        FieldSpec("employeeName", ("employee name", "employee", "name"), (Required(), TypeCheck("text"))),
        FieldSpec("date", ("pay date", "salary month", "month") + _DATE_ALIASES, (Required(), TypeCheck("date"))),
        FieldSpec("salary", ("net salary", "net pay", "salary", "gross"), (Required(), TypeCheck("number"), _NON_NEGATIVE)),
    ),
    key_fields=("employeeName", "date"),
    id_prefix="PAY",
    signatures=(("employee name",), ("salary",)),
)

# Detection order matters: a GRN sheet also carries a supplier column
PROFILES: dict[str, ImportProfile] = {
    p.name: p for p in (GRN, SALES, PURCHASE, VOUCHER, STOCK, PAYROLL)
}


def get_profile(import_type: str) -> ImportProfile:
    try:
        return PROFILES[import_type.upper()]
    except KeyError:
        raise KeyError(f"unknown import type: {import_type}") from None
