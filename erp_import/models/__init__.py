"""Domain models for the bulk import staging pipeline.

Raw rows, validated records, the upload session aggregate, import profiles,
quality metrics and commit results.
"""

from .commit_result import CommitFailure, CommitResult, CommitSummary
from .error_record import ErrorRecord
from .import_profile import PROFILES, FieldSpec, ImportProfile, get_profile
from .quality_metrics import QualityMetrics, QualityThresholds
from .raw_row import RawRow
from .upload_session import InvalidStateTransition, SessionStatus, UploadSession
from .validated_record import ProcessingStatus, ValidatedRecord, ValidationStatus

__all__ = [
    # Input
    "RawRow",
    # Records & sessions
    "ValidatedRecord",
    "ValidationStatus",
    "ProcessingStatus",
    "UploadSession",
    "SessionStatus",
    "InvalidStateTransition",
    # Profiles
    "FieldSpec",
    "ImportProfile",
    "PROFILES",
    "get_profile",
    # Results
    "QualityMetrics",
    "QualityThresholds",
    "CommitResult",
    "CommitFailure",
    "CommitSummary",
    "ErrorRecord",
]
