"""Bulk import staging / approval pipeline.

Spreadsheet uploads are parsed, validated, checked for duplicates, scored and
staged as an UploadSession; a reviewer approves or rejects the session and the
commit processor applies the approved records to the system of record.
"""

__version__ = "0.1.0"
