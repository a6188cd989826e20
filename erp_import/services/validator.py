from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ..excel.coerce import is_empty, to_code, to_date, to_enum, to_integer, to_number, to_text
from ..excel.reader import ParsedUpload
from ..models.import_profile import (
    DateWindow,
    FieldSpec,
    ImportProfile,
    Outlier,
    Pattern,
    Range,
    Referential,
    Required,
    TypeCheck,
)
from ..models.raw_row import RawRow
from ..models.validated_record import ValidatedRecord

"""Field validator: RawRow -> ValidatedRecord.

Rules run per field in declared order:
- the first ``Required`` failure stops that field (no type/range noise)
- an empty optional field skips its remaining rules
- a failed type coercion stops that field (range/pattern need the typed value)
- referential, date-window and outlier checks only ever add warnings

Fields are validated independently of one another, except that ``Outlier``
reads the already-normalized value of its ``group_by`` field, so profiles list
the grouping field first.

Everything the validator looks at comes in through ValidationContext (including
"today"), so the same row and rule set always produce the same outcome.
"""

__all__ = [
    "ValidationContext",
    "validate_field",
    "validate_row",
    "validate_rows",
]


@dataclass(frozen=True)
class ValidationContext:
    today: date
    stale_after_days: int = 365
    outlier_factor: float = 3.0
    # Master-data sets by lookup name; an absent name disables that check
    lookups: dict[str, frozenset[str]] = field(default_factory=dict)
    # Historical averages: field -> group value -> average
    averages: dict[str, dict[Any, float]] = field(default_factory=dict)


_TYPE_MESSAGES = {
    "number": "must be a number",
    "integer": "must be a whole number",
    "date": "must be a valid date",
    "code": "has invalid format",
}


def _fmt(value: float) -> str:
    return f"{value:g}"


def _coerce(rule: TypeCheck, value: Any) -> Any:
    if rule.kind == "number":
        return to_number(value)
    if rule.kind == "integer":
        return to_integer(value)
    if rule.kind == "date":
        return to_date(value)
    if rule.kind == "enum":
        return to_enum(value, rule.choices)
    if rule.kind == "code":
        return to_code(value)
    if rule.kind == "text":
        return to_text(value)
    raise ValueError(f"unknown field kind: {rule.kind}")


def _type_message(name: str, rule: TypeCheck) -> str:
    if rule.kind == "enum":
        return f"{name} must be one of {', '.join(rule.choices)}"
    return f"{name} {_TYPE_MESSAGES.get(rule.kind, 'is invalid')}"


def _range_message(name: str, rule: Range) -> str:
    if rule.min is not None and rule.max is not None:
        return f"{name} must be between {_fmt(rule.min)} and {_fmt(rule.max)}"
    if rule.min is not None:
        return f"{name} must be >= {_fmt(rule.min)}"
    return f"{name} must be <= {_fmt(rule.max)}"


def validate_field(
    spec: FieldSpec, value: Any, fields: dict[str, Any], ctx: ValidationContext
) -> tuple[Any, list[str], list[str]]:
    """Run one field's rules.

    Returns (normalized value, errors, warnings). When coercion fails the raw
    value is returned unchanged so reports still show what was uploaded.
    """
    errors: list[str] = []
    warnings: list[str] = []
    name = spec.name
    current = spec.default if is_empty(value) and spec.default is not None else value

    for rule in spec.rules:
        if isinstance(rule, Required):
            if is_empty(current):
                errors.append(f"{name} is required")
                break
            continue
        if is_empty(current):
            break

        if isinstance(rule, TypeCheck):
            try:
                current = _coerce(rule, current)
            except ValueError:
                errors.append(_type_message(name, rule))
                break
        elif isinstance(rule, Range):
            if not isinstance(current, (int, float)):
                continue
            if (rule.min is not None and current < rule.min) or (rule.max is not None and current > rule.max):
                errors.append(_range_message(name, rule))
        elif isinstance(rule, Pattern):
            if re.fullmatch(rule.regex, str(current)) is None:
                errors.append(f"{name} has invalid format")
        elif isinstance(rule, Referential):
            known = ctx.lookups.get(rule.lookup)
            if known is not None and current not in known:
                warnings.append(f"{name} '{current}' not found in master data")
        elif isinstance(rule, DateWindow):
            if not isinstance(current, date):
                continue
            if current > ctx.today and not rule.allow_future:
                warnings.append(f"{name} is in the future")
            elif (ctx.today - current).days > ctx.stale_after_days:
                warnings.append(f"{name} is more than {ctx.stale_after_days} days old")
        elif isinstance(rule, Outlier):
            if not isinstance(current, (int, float)):
                continue
            average = ctx.averages.get(name, {}).get(fields.get(rule.group_by))
            if average and current > average * ctx.outlier_factor:
                warnings.append(f"{name} higher than historical average")

    if is_empty(current):
        current = None
    return current, errors, warnings


def validate_row(
    values: dict[str, Any],
    profile: ImportProfile,
    ctx: ValidationContext,
    *,
    row_number: int,
    raw: RawRow | None = None,
) -> ValidatedRecord:
    """Validate one row's logical field values against ``profile``."""
    fields: dict[str, Any] = {}
    errors: list[str] = []
    warnings: list[str] = []
    for spec in profile.fields:
        normalized, field_errors, field_warnings = validate_field(spec, values.get(spec.name), fields, ctx)
        fields[spec.name] = normalized
        errors.extend(field_errors)
        warnings.extend(field_warnings)

    if profile.amount_from is not None:
        qty_name, rate_name = profile.amount_from
        qty, rate = fields.get(qty_name), fields.get(rate_name)
        if isinstance(qty, float) and isinstance(rate, float):
            fields["totalAmount"] = round(qty * rate, 2)

    return ValidatedRecord.build(row_number, fields, errors, warnings, raw=raw)


def validate_rows(
    parsed: ParsedUpload,
    ctx: ValidationContext,
    on_row: Callable[[ValidatedRecord], None] | None = None,
) -> list[ValidatedRecord]:
    """Validate every parsed row in file order.

    ``on_row`` is called after each record (progress display hook).
    """
    profile = parsed.profile
    records: list[ValidatedRecord] = []
    for row in parsed.rows:
        record = validate_row(parsed.field_values(row), profile, ctx, row_number=row.row_number, raw=row)
        records.append(record)
        if on_row is not None:
            on_row(record)
    return records
