"""Exception hierarchy for the transcription job pipeline.

All exceptions inherit from PipelineError so the worker can convert any
failure after a claim into a failed job, while the gateway and HTTP layer
map the specific subclasses to caller-facing responses.
"""


class PipelineError(Exception):
    """Base exception for all transcription pipeline errors."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.message = message
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[job={self.job_id}] {self.message}"
        return self.message


class ValidationError(PipelineError):
    """Raised for bad input. No side effect has been attempted."""

    def __init__(
        self, message: str, job_id: str | None = None, field: str | None = None
    ) -> None:
        self.field = field
        super().__init__(message, job_id)


class NotAuthorizedError(PipelineError):
    """Raised when no authenticated principal is attached to a request."""


class NotFoundError(PipelineError):
    """Raised when a lecture is missing or not visible to the caller."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        self.resource_id = resource_id
        super().__init__(message, job_id)


class PersistenceError(PipelineError):
    """Raised when a job-store or lecture-store read/write fails."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, job_id)


class BlobAccessError(PipelineError):
    """Raised when audio cannot be read from (or written to) the blob store."""

    def __init__(
        self, message: str, job_id: str | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, job_id)


class TranscriptionError(PipelineError):
    """Raised when the external transcription call fails."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message, job_id)


class ProviderError(TranscriptionError):
    """Raised when a successful provider response cannot be interpreted."""


class EmptyTranscriptError(TranscriptionError):
    """Raised when the provider returns no usable transcript text."""


def describe_error(exc: BaseException) -> str:
    """Return the human-readable cause of a failure for storage on records.

    The job prefix added by PipelineError.__str__ is left out because the
    text is shown to end users through the lecture record.
    """
    if isinstance(exc, PipelineError):
        return exc.message or type(exc).__name__
    text = str(exc).strip()
    return text or f"Unexpected worker error ({type(exc).__name__})"
