"""
Pipeline Error Types
====================

Shared error taxonomy for ingestion and analysis.

Placed in a separate module so the API layer, background jobs and tests
import the same exception classes.

Synchronous errors (raised to the caller):
- AdmissionRejected: rate limit hit (AdmissionUnavailable: limiter down, fail closed)
- InvalidUpload: missing/empty file, oversize, unsupported type
- StorageFailure: blob or relational write error
- ContractNotFound: absent or owned by another tenant

Asynchronous errors (resolved to a `failed` contract, never re-raised):
- CompletionFailed / CompletionTimeout / EmptyCompletion / MalformedCompletion
- ExtractionFailed / BlobUnavailable
"""

from dataclasses import dataclass, field
from typing import List


class PipelineError(Exception):
    """Base class for errors surfaced with an HTTP-equivalent status."""

    status_code: int = 500
    category: str = "internal_error"
    default_message: str = "Internal error."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AdmissionRejected(PipelineError):
    status_code = 429
    category = "rate_limited"
    default_message = "Too many requests. Please try again later."


class AdmissionUnavailable(AdmissionRejected):
    """Counter store unreachable and RATE_LIMIT_FAILURE_MODE=closed"""
    status_code = 503
    category = "rate_limit_unavailable"
    default_message = "Rate limiting unavailable"


class InvalidUpload(PipelineError):
    status_code = 400
    category = "invalid_upload"
    default_message = "Invalid request."


class EmptyUpload(InvalidUpload):
    category = "empty_upload"
    default_message = "No file provided."


class PayloadTooLarge(InvalidUpload):
    status_code = 413
    category = "payload_too_large"
    default_message = "File exceeds the maximum upload size."


class UnsupportedMediaType(InvalidUpload):
    category = "unsupported_media_type"
    default_message = "Unsupported file type. Only PDF and plain text files are accepted."


class StorageFailure(PipelineError):
    status_code = 500
    category = "storage_failure"
    default_message = "Failed to store the uploaded file."


class ContractNotFound(PipelineError):
    status_code = 404
    category = "not_found"
    default_message = "Contract not found."


# =============================================================================
# ANALYSIS FAILURES
# =============================================================================

class AnalysisFailure(Exception):
    """
    Failure inside the analysis job.

    `category` is what ends up in the contract's diagnostic. The exception
    message may carry more detail for logs but is never stored.
    """

    category: str = "analysis_error"


class CompletionFailed(AnalysisFailure):
    category = "completion_error"


class CompletionTimeout(AnalysisFailure):
    category = "completion_timeout"


class EmptyCompletion(AnalysisFailure):
    category = "empty_completion"


class MalformedCompletion(AnalysisFailure):
    category = "malformed_completion"


class ExtractionFailed(AnalysisFailure):
    category = "extraction_failed"


class BlobUnavailable(AnalysisFailure):
    category = "blob_unavailable"


@dataclass
class ValidationDegraded:
    """
    Notice that parts of the AI output were discarded during validation.

    Not an error: the pipeline still succeeds and the contract becomes active.
    """
    discarded: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.discarded)

    def summary(self) -> str:
        return ", ".join(self.discarded)
