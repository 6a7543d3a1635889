"""
Typed errors for blob verification and storage allocation.

Content and metadata mismatches are not errors; they are reported as
fields of VerificationResult. Exceptions here mean an operation could
not run, or a business rule rejected it.
"""

from typing import Optional


class BlobVerifyError(Exception):
    """Base exception for all blobverify errors."""

    code: str = "BLOBVERIFY_ERROR"
    retryable: bool = False

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(BlobVerifyError):
    """Malformed input or malformed backend response. Never retried."""

    code = "VALIDATION_ERROR"


class InvalidArgument(ValidationError):
    """Programmer error: an argument is outside its allowed range."""

    code = "INVALID_ARGUMENT"


class InsufficientBalance(BlobVerifyError):
    """Token balance is below the configured minimum allocation."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, balance: int, minimum: int):
        super().__init__(
            f"Insufficient token balance. Minimum {minimum} required, "
            f"but only {balance} available."
        )
        self.balance = balance
        self.minimum = minimum


class InsufficientStorage(BlobVerifyError):
    """
    Not enough storage capacity for the upload.

    Retryable: allocation checks are advisory, so a write can still be
    rejected for quota after a passing check.
    """

    code = "INSUFFICIENT_STORAGE"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        required: Optional[int] = None,
        available: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.required = required
        self.available = available


class BackendUnavailable(BlobVerifyError):
    """Network or transport failure talking to a backend."""

    code = "BACKEND_UNAVAILABLE"
    retryable = True


class BlobNotFound(BackendUnavailable):
    """The backend does not (yet) serve the blob."""

    code = "BLOB_NOT_FOUND"

    def __init__(self, blob_id: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"Blob not found: {blob_id}", cause=cause)
        self.blob_id = blob_id


class MonitoringFailed(BlobVerifyError):
    """Availability monitoring exhausted its attempts without a match."""

    code = "MONITORING_FAILED"

    def __init__(
        self,
        blob_id: str,
        attempts: int,
        *,
        reason: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        message = f"Blob availability monitoring failed after {attempts} attempts"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, cause=cause)
        self.blob_id = blob_id
        self.attempts = attempts


class VerificationFlowError(BlobVerifyError):
    """A verification flow stage failed. Always carries the original cause."""

    code = "VERIFICATION_FLOW_ERROR"

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Verification flow failed at {stage}: {cause}", cause=cause)
        self.stage = stage
        self.retryable = getattr(cause, "retryable", False)
