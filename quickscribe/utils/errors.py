"""Custom exception hierarchy for the transcription job pipeline.

All exceptions inherit from PipelineError, enabling targeted handling
at pipeline boundaries while preserving specific failure context.
The message of every exception is written for direct display to users,
since it ends up as the job's errorMessage.
"""


class PipelineError(Exception):
    """Base exception for all job pipeline errors."""

    retryable: bool = False

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.message = message
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[job={self.job_id}] {self.message}"
        return self.message


class ConfigError(PipelineError):
    """Raised at startup when required configuration is missing."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class AudioFetchError(PipelineError):
    """Raised when fetching a source blob from object storage fails."""

    def __init__(
        self, message: str, job_id: str | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, job_id)


class DownloadError(PipelineError):
    """Raised when a link cannot be resolved or downloaded."""

    def __init__(
        self, message: str, job_id: str | None = None, url: str | None = None
    ) -> None:
        self.url = url
        super().__init__(message, job_id)


class ExtractionError(PipelineError):
    """Raised when ffmpeg audio extraction fails or produces no audio."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        input_path: str | None = None,
    ) -> None:
        self.input_path = input_path
        super().__init__(message, job_id)


class StorageError(PipelineError):
    """Raised when object storage or job store operations fail."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, job_id)


class JobNotFoundError(PipelineError):
    """Raised when the pipeline is triggered for a job that does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job with ID {job_id} not found.", job_id)


class JobConflictError(StorageError):
    """Raised when a guarded job update finds the job in another status."""


class TranscriptionError(PipelineError):
    """Base class for failures reported by a transcription adapter."""

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


class UnauthorizedError(TranscriptionError):
    """The provider rejected our credentials."""


class ServiceUnavailableError(TranscriptionError):
    """The provider is temporarily unavailable."""

    retryable = True


class RateLimitedError(TranscriptionError):
    """The provider asked us to slow down."""

    retryable = True


class PayloadTooLargeError(TranscriptionError):
    """The extracted audio exceeds what the provider accepts."""


class TranscriptionNetworkError(TranscriptionError):
    """The connection to the provider failed or timed out."""

    retryable = True


class UnexpectedResponseError(TranscriptionError):
    """The provider answered with a response we cannot use."""


class UnknownTranscriptionError(TranscriptionError):
    """Any provider failure that does not fit the other categories."""


class InteractionError(PipelineError):
    """Raised when a transcript AI task cannot be completed.

    status_code mirrors the HTTP status the web tier should answer with.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        retryable: bool = False,
        truncated: bool = False,
    ) -> None:
        self.status_code = status_code
        self.retryable = retryable
        self.truncated = truncated
        super().__init__(message)
