"""
Error taxonomy for the label pipeline.

Exception Hierarchy:
    LabelPipelineError (base)
    ├── RemoteServiceError        - carrier / render service call failed
    │   ├── TransientRemoteError      - 429/5xx, retries exhausted
    │   └── NonRetryableRemoteError   - any other status or transport failure
    ├── NotFoundError             - 404 upstream or missing row, nothing to do
    ├── FormatError               - unsupported link, empty PDF, no ZPL in archive
    ├── ConfigurationError        - required upstream record missing
    │   └── TransportFileMissingError - carrier label not downloaded yet
    └── ArtifactWriteError        - filesystem write failed

Usage:
    Per-order errors are caught at the order boundary and written to
    LabelRecord.last_error; batches continue with the next order.
    ``status_code`` is what the HTTP layer answers with.
"""

from typing import Optional, Dict, Any


class LabelPipelineError(Exception):
    """Base exception for all label pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# REMOTE ERRORS
# =============================================================================

class RemoteServiceError(LabelPipelineError):
    status_code = 502

    def __init__(
        self,
        message: str,
        url: str = "",
        response_status: Optional[int] = None,
        attempts: int = 1,
    ):
        super().__init__(message, {"url": url, "status": response_status, "attempts": attempts})
        self.url = url
        self.response_status = response_status
        self.attempts = attempts


class TransientRemoteError(RemoteServiceError):
    """The remote kept answering 429/5xx until the retry budget ran out."""

    status_code = 503


class NonRetryableRemoteError(RemoteServiceError):
    """The remote answered with a status we do not retry, or was unreachable."""


# =============================================================================
# PER-ORDER ERRORS
# =============================================================================

class NotFoundError(LabelPipelineError):
    status_code = 404


class FormatError(LabelPipelineError):
    status_code = 422


class ConfigurationError(LabelPipelineError):
    status_code = 404


class TransportFileMissingError(ConfigurationError):
    status_code = 409

    def __init__(self, path: str):
        super().__init__(f"Transport file missing: {path}", {"path": path})
        self.path = path


class ArtifactWriteError(LabelPipelineError):
    status_code = 500

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write {path}: {reason}", {"path": path})
        self.path = path
