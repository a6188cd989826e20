from __future__ import annotations

from dataclasses import dataclass, field

"""Quality metrics and the threshold table that drives recommendations.

QualityMetrics is never stored: it is recomputed from a session's records
whenever it is needed, so two computations over the same record set are equal.
"""

__all__ = [
    "QualityThresholds",
    "QualityMetrics",
]


@dataclass(frozen=True)
class QualityThresholds:
    """Named score thresholds (0-100) shared by scorer, summary and CLI."""
    review_source_below: float = 60.0  # overall below this -> "Review data source quality"
    good_score: float = 80.0  # grade "good" at or above this, "fair" from review_source_below

    def grade(self, score: float) -> str:
        if score >= self.good_score:
            return "good"
        if score >= self.review_source_below:
            return "fair"
        return "poor"


@dataclass(frozen=True)
class QualityMetrics:
    completeness_score: float
    accuracy_score: float
    consistency_score: float
    validity_score: float
    overall_score: int
    total_records: int = 0
    total_fields: int = 0  # required-field slots evaluated
    empty_fields: int = 0  # required-field slots left empty
    invalid_records: int = 0
    warning_records: int = 0  # records carrying at least one warning
    duplicate_records: int = 0
    recommendations: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "completeness": self.completeness_score,
            "accuracy": self.accuracy_score,
            "consistency": self.consistency_score,
            "validity": self.validity_score,
            "overall": self.overall_score,
        }
