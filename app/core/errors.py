"""Error taxonomy for the scan pipeline.

Every error carries a ``retryable`` flag; the intake layer maps it onto the
queue acknowledgement (retryable -> let the message be redelivered).
"""


class ScanWorkerError(Exception):
    """Base class for pipeline errors."""

    retryable: bool = True

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        retryable: bool | None = None,
    ) -> None:
        self.message = message
        self.cause = cause
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)


class JobValidationError(ScanWorkerError):
    """Malformed job payload. Redelivering the same message cannot fix it."""

    retryable = False


class CredentialError(ScanWorkerError):
    """Signing or token exchange failed for one installation."""


class AcquisitionError(ScanWorkerError):
    """Download, validation or extraction of the repository archive failed."""

    INVALID_URL = "invalid_url"
    HTTP_STATUS = "http_status"
    TRANSFER_FAILED = "transfer_failed"
    TOO_LARGE = "too_large"
    EMPTY_ARCHIVE = "empty_archive"
    HTML_RESPONSE = "html_response"
    NOT_ARCHIVE = "not_archive"
    EXTRACT_FAILED = "extract_failed"

    _PERMANENT = frozenset({INVALID_URL, TOO_LARGE})

    def __init__(
        self,
        message: str,
        reason: str,
        cause: Exception | None = None,
        retryable: bool | None = None,
    ) -> None:
        self.reason = reason
        if retryable is None:
            retryable = reason not in self._PERMANENT
        super().__init__(message, cause=cause, retryable=retryable)


class AdapterError(ScanWorkerError):
    """A scanning engine failed. Absorbed by the adapter; never reaches the job outcome."""


class ToolTimeoutError(AdapterError):
    """A scanning engine exceeded its wall-clock limit and was killed."""


class ToolOutputLimitError(AdapterError):
    """A scanning engine wrote more output than the configured cap and was killed."""


class OrchestrationError(ScanWorkerError):
    """The scan run could not be set up or completed."""


class PersistenceError(ScanWorkerError):
    """Writing the scan record or its findings failed."""
