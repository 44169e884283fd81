"""
Generative-text client for medical history narratives.

Wraps Google Gemini models via Vertex AI, maps provider failures onto the
medhistory error taxonomy and applies a bounded exponential backoff retry
policy.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import vertexai
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account
from vertexai.generative_models import GenerativeModel
from vertexai.generative_models import GenerationConfig as VertexGenerationConfig

from medhistory.errors import (
    GenerationConfigurationError,
    GenerationError,
    GenerationTimeoutError,
    GenerationUnavailableError,
    RateLimitedError,
    UnknownGenerationError,
)
from medhistory.llm.config import GenerationConfig
from medhistory.models import GenerationResult, GenerationUsage, SamplingParams


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]

SYSTEM_INSTRUCTION = (
    "You are a clinical documentation assistant. You write accurate, "
    "well-structured medical histories strictly from the data provided and "
    "never invent findings."
)

_TIMEOUT_ERRORS = (
    asyncio.TimeoutError,
    TimeoutError,
    google_exceptions.DeadlineExceeded,
    google_exceptions.GatewayTimeout,
)
_CONFIGURATION_ERRORS = (
    google_exceptions.Unauthenticated,
    google_exceptions.PermissionDenied,
    google_exceptions.NotFound,
    auth_exceptions.DefaultCredentialsError,
    auth_exceptions.RefreshError,
)
_RATE_LIMIT_ERRORS = (
    google_exceptions.TooManyRequests,
    google_exceptions.ResourceExhausted,
)
_UNAVAILABLE_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.BadGateway,
)


def classify_provider_error(error: BaseException) -> GenerationError:
    """
    Map a provider/transport exception onto the generation error taxonomy.

    Typed google-api-core errors are matched first; message fragments are
    the fallback for errors raised as plain exceptions.
    """
    if isinstance(error, GenerationError):
        return error
    if isinstance(error, _TIMEOUT_ERRORS):
        return GenerationTimeoutError("Timed out waiting for the generative model", error)
    if isinstance(error, _CONFIGURATION_ERRORS):
        return GenerationConfigurationError(f"Generative model misconfigured: {error}", error)
    if isinstance(error, _RATE_LIMIT_ERRORS):
        return RateLimitedError("Generative model quota exceeded, try again later", error)
    if isinstance(error, _UNAVAILABLE_ERRORS):
        return GenerationUnavailableError(f"Generative model unavailable: {error}", error)

    message = str(error).lower()
    if "api key" in message or "credential" in message:
        return GenerationConfigurationError(f"Generative model misconfigured: {error}", error)
    if "quota" in message or "rate limit" in message:
        return RateLimitedError("Generative model quota exceeded, try again later", error)
    if "timeout" in message or "timed out" in message:
        return GenerationTimeoutError("Timed out waiting for the generative model", error)
    return UnknownGenerationError(f"Generative model call failed: {error}", error)


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) else 0


class GenerationClient:
    """
    Client for narrative generation using Google Gemini.

    Handles model initialisation, error classification, retries and usage
    statistics. Backoff waits are asyncio suspensions and hold no locks.
    """

    def __init__(
        self,
        config: GenerationConfig,
        model: Optional[Any] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize generation client.

        Args:
            config: Generation configuration with credentials and retry policy
            model: Pre-built model object (skips Vertex AI initialisation)
            sleep: Awaitable delay used between retry attempts
        """
        self.config = config
        self._model = model
        self._sleep = sleep
        self._request_count = 0
        self._failure_count = 0

    def _initialize_vertex_ai(self) -> GenerativeModel:
        """Initialize Vertex AI and the Gemini model on first use."""
        if not self.config.project_id:
            raise GenerationConfigurationError(
                "GCP project_id must be configured to use the generative model"
            )

        try:
            logger.info(
                f"Initializing Vertex AI (project={self.config.project_id}, "
                f"location={self.config.location})"
            )

            credentials = None
            if self.config.credentials_path:
                credentials = service_account.Credentials.from_service_account_file(
                    self.config.credentials_path
                )

            vertexai.init(
                project=self.config.project_id,
                location=self.config.location,
                credentials=credentials,
            )
            model = GenerativeModel(
                model_name=self.config.model_name,
                system_instruction=[SYSTEM_INSTRUCTION],
            )
        except Exception as e:
            logger.error(f"Failed to initialize Vertex AI: {e}")
            raise GenerationConfigurationError(f"Vertex AI initialization failed: {e}", e) from e

        logger.info(f"Generation client initialized with model: {self.config.model_name}")
        return model

    def _get_model(self) -> Any:
        if self._model is None:
            self._model = self._initialize_vertex_ai()
        return self._model

    async def generate(
        self,
        prompt: str,
        sampling: Optional[SamplingParams] = None,
    ) -> GenerationResult:
        """
        Single generation call.

        Raises:
            GenerationError: classified provider failure; calls that exceed
                ``request_timeout_seconds`` raise GenerationTimeoutError
        """
        model = self._get_model()
        params = sampling or self.config.default_sampling()
        generation_config = VertexGenerationConfig(
            max_output_tokens=params.max_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            top_k=params.top_k,
        )

        logger.debug(f"Calling Gemini API with a {len(prompt)} character prompt")
        try:
            response = await asyncio.wait_for(
                model.generate_content_async(prompt, generation_config=generation_config),
                timeout=self.config.request_timeout_seconds,
            )
            text = self._extract_text(response)
        except GenerationError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e

        self._request_count += 1
        usage = self._extract_usage(response)
        logger.debug(
            f"Gemini API returned {len(text)} characters "
            f"(tokens: {usage.total_tokens if usage.reported else 'not reported'})"
        )
        return GenerationResult(text=text, usage=usage)

    async def generate_with_retry(
        self,
        prompt: str,
        sampling: Optional[SamplingParams] = None,
        max_attempts: Optional[int] = None,
    ) -> GenerationResult:
        """
        Call ``generate`` with retry logic for transient failures.

        Waits ``backoff_base_seconds * 2**attempt`` after failed attempt
        ``attempt`` (1-based). Non-retryable errors propagate at once.

        Raises:
            GenerationConfigurationError: on the first configuration failure
            GenerationUnavailableError: once all attempts are exhausted
        """
        attempts = max_attempts if max_attempts is not None else self.config.max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        last_error: Optional[GenerationError] = None
        for attempt in range(1, attempts + 1):
            try:
                logger.debug(f"Generation attempt {attempt}/{attempts}")
                return await self.generate(prompt, sampling)
            except GenerationError as e:
                last_error = e
                self._failure_count += 1
                logger.warning(f"Generation attempt {attempt}/{attempts} failed: {e}")

                if not e.retryable:
                    raise

                if attempt < attempts:
                    delay = self.config.backoff_for(attempt)
                    logger.info(f"Retrying in {delay:.1f} seconds...")
                    await self._sleep(delay)

        logger.error(f"All {attempts} generation attempts failed: {last_error}")
        raise GenerationUnavailableError(
            f"Generative model call failed after {attempts} attempts: {last_error}",
            cause=last_error,
            attempts=attempts,
        ) from last_error

    async def validate_configuration(self) -> bool:
        """Send a tiny check prompt; True when the model answers."""
        try:
            result = await self.generate(
                'Responde solo con "OK"',
                SamplingParams(max_tokens=10),
            )
        except GenerationError as e:
            logger.error(f"Generation configuration check failed: {e}")
            return False
        return len(result.text) > 0

    def _extract_text(self, response: Any) -> str:
        if not response.candidates:
            raise UnknownGenerationError("No candidates in response")

        candidate = response.candidates[0]
        text = "".join(part.text for part in candidate.content.parts)
        if not text.strip():
            raise UnknownGenerationError("Empty response from generative model")
        return text

    def _extract_usage(self, response: Any) -> GenerationUsage:
        usage = getattr(response, "usage_metadata", None)
        if usage is None:
            return GenerationUsage()

        prompt_tokens = _as_int(getattr(usage, "prompt_token_count", 0))
        completion_tokens = _as_int(getattr(usage, "candidates_token_count", 0))
        total_tokens = _as_int(getattr(usage, "total_token_count", 0)) or (
            prompt_tokens + completion_tokens
        )
        return GenerationUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            reported=total_tokens > 0,
        )

    def get_model_info(self) -> Dict[str, str]:
        return {
            "name": self.config.model_name,
            "provider": "Google Gemini (Vertex AI)",
        }

    def get_stats(self) -> Dict[str, Any]:
        """
        Get client usage statistics.

        Returns:
            Dictionary with successful request count, failed attempts and model
        """
        return {
            "request_count": self._request_count,
            "failed_attempts": self._failure_count,
            "model_name": self.config.model_name,
            "project_id": self.config.project_id,
        }

    def reset_stats(self) -> None:
        """Reset usage statistics."""
        self._request_count = 0
        self._failure_count = 0
        logger.info("Generation client statistics reset")

    def __repr__(self) -> str:
        return (
            f"GenerationClient(model={self.config.model_name}, "
            f"requests={self._request_count}, failures={self._failure_count})"
        )
