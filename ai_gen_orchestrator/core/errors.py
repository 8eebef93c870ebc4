"""
Error taxonomy for generation jobs.

Every failure the pipeline knows how to explain is a GenerationError with a
stable kind. The orchestrator turns these into terminal job records; anything
else is treated as unexpected.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Stable identifiers for job failure categories."""
    VALIDATION = "validation"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UPLOAD_FAILED = "upload_failed"
    SUBMISSION_FAILED = "submission_failed"
    PROVIDER_FAILED = "provider_failed"
    POLL_TIMEOUT = "poll_timeout"
    DOWNLOAD_FAILED = "download_failed"
    LEDGER_INCONSISTENCY = "ledger_inconsistency"
    INTERNAL = "internal"


class GenerationError(Exception):
    """Base class for failures surfaced to callers as structured results."""
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.code = code


class ValidationError(GenerationError):
    """Unknown model/variant or request inputs out of bounds."""
    kind = ErrorKind.VALIDATION


class InsufficientCredits(GenerationError):
    """User balance does not cover the resolved price."""
    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, detail: str, required=None, available=None):
        super().__init__(detail)
        self.required = required
        self.available = available


class UploadFailed(GenerationError):
    """Provider rejected an input asset upload."""
    kind = ErrorKind.UPLOAD_FAILED


class SubmissionFailed(GenerationError):
    """Provider rejected the job submission."""
    kind = ErrorKind.SUBMISSION_FAILED


class ProviderFailed(GenerationError):
    """Provider accepted the job and later reported a terminal failure."""
    kind = ErrorKind.PROVIDER_FAILED


class PollTimeout(GenerationError):
    """Polling budget exhausted before the provider reached a terminal status."""
    kind = ErrorKind.POLL_TIMEOUT


class DownloadFailed(GenerationError):
    """Generation succeeded but the artifact could not be fetched."""
    kind = ErrorKind.DOWNLOAD_FAILED

    def __init__(self, detail: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(detail, code)
        self.status_code = status_code


class LedgerInconsistency(GenerationError):
    """Post-success deduction failed; the job needs billing reconciliation."""
    kind = ErrorKind.LEDGER_INCONSISTENCY


class UnexpectedGenerationError(GenerationError):
    """Opaque failure raised for programming errors and unknown faults.

    The user-facing message is generic; the cause is chained and logged.
    """
    kind = ErrorKind.INTERNAL

    def __init__(self, job_id: str):
        super().__init__("Generation failed due to an internal error")
        self.job_id = job_id
