"""
Error taxonomy for medical history generation and rendering.

Generation errors carry a ``retryable`` flag that the retry policy in
``medhistory.llm.client`` consults; everything else is surfaced immediately.
"""

from typing import Optional


class MedicalHistoryError(Exception):
    """Base class for all errors raised by the medhistory package."""


class NotFoundError(MedicalHistoryError):
    """A patient or generated history does not exist."""


class PatientNotFoundError(NotFoundError):
    def __init__(self, patient_id: str):
        super().__init__(f"Patient {patient_id} not found")
        self.patient_id = patient_id


class HistoryNotFoundError(NotFoundError):
    def __init__(self, history_id: str):
        super().__init__(f"Generated history {history_id} not found")
        self.history_id = history_id


class GenerationError(MedicalHistoryError):
    """Failure talking to the generative-text service."""

    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class GenerationConfigurationError(GenerationError):
    """Missing or invalid credentials/model settings. Never retried."""

    retryable = False


class RateLimitedError(GenerationError):
    """Provider quota or rate limit exceeded."""


class GenerationTimeoutError(GenerationError):
    """Provider call exceeded the allowed duration."""


class GenerationUnavailableError(GenerationError):
    """Transient provider failure, or retries exhausted."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        attempts: int = 0,
    ):
        super().__init__(message, cause)
        self.attempts = attempts

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.cause


class UnknownGenerationError(GenerationError):
    """Unclassified provider failure, treated as transient."""


class RenderingError(MedicalHistoryError):
    """Markdown, HTML template or PDF conversion failed."""


class PersistenceError(MedicalHistoryError):
    """The history store rejected a write."""
