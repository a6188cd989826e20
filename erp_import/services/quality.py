from __future__ import annotations

import math
from collections.abc import Sequence

from ..excel.coerce import is_empty
from ..models.import_profile import ImportProfile
from ..models.quality_metrics import QualityMetrics, QualityThresholds
from ..models.validated_record import ValidatedRecord, ValidationStatus

"""Quality scorer: per-record outcomes -> dataset scores and recommendations.

    completeness = 100 * filled required-field slots / required-field slots
    accuracy     = 100 * records without errors / records
    consistency  = 100 * records without warnings / records
    validity     = 100 * VALID records / records
    overall      = round(mean of the four)

An empty record set scores 0 everywhere ("nothing to evaluate" rather than
"perfect"). Sub-scores are rounded to two decimals, overall to an integer
(half up). Pure function of its inputs.
"""

__all__ = [
    "score_records",
    "zero_metrics",
]


def _pct(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 2) if whole else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def zero_metrics() -> QualityMetrics:
    return QualityMetrics(
        completeness_score=0.0,
        accuracy_score=0.0,
        consistency_score=0.0,
        validity_score=0.0,
        overall_score=0,
    )


def _recommendations(
    overall: int,
    completeness: float,
    invalid: int,
    warned: int,
    duplicates: int,
    thresholds: QualityThresholds,
) -> list[str]:
    out: list[str] = []
    if overall < thresholds.review_source_below:
        out.append("Review data source quality")
    if duplicates:
        out.append(f"Remove {duplicates} duplicate records")
    if invalid:
        out.append(f"Fix {invalid} records with validation errors")
    if warned:
        out.append(f"Review {warned} records with warnings")
    if completeness < 100:
        out.append("Fill in missing required fields")
    return out


def score_records(
    records: Sequence[ValidatedRecord],
    profile: ImportProfile,
    thresholds: QualityThresholds | None = None,
) -> QualityMetrics:
    thresholds = thresholds or QualityThresholds()
    total = len(records)
    if total == 0:
        return zero_metrics()

    required = profile.required_fields
    slots = total * len(required)
    filled = sum(1 for r in records for name in required if not is_empty(r.fields.get(name)))

    error_free = sum(1 for r in records if not r.validation_errors)
    warning_free = sum(1 for r in records if not r.validation_warnings)
    valid = sum(1 for r in records if r.validation_status is ValidationStatus.VALID)
    duplicates = sum(1 for r in records if r.is_duplicate)

    # No required fields declared -> nothing can be missing
    completeness_raw = 100.0 * filled / slots if slots else 100.0
    accuracy_raw = 100.0 * error_free / total
    consistency_raw = 100.0 * warning_free / total
    validity_raw = 100.0 * valid / total
    overall = _round_half_up((completeness_raw + accuracy_raw + consistency_raw + validity_raw) / 4)

    completeness = round(completeness_raw, 2)
    return QualityMetrics(
        completeness_score=completeness,
        accuracy_score=_pct(error_free, total),
        consistency_score=_pct(warning_free, total),
        validity_score=_pct(valid, total),
        overall_score=overall,
        total_records=total,
        total_fields=slots,
        empty_fields=slots - filled,
        invalid_records=total - error_free,
        warning_records=total - warning_free,
        duplicate_records=duplicates,
        recommendations=_recommendations(
            overall, completeness, total - error_free, total - warning_free, duplicates, thresholds
        ),
    )
