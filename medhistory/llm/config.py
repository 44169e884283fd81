"""
Configuration for the generative-text client.

Defines settings for Google Gemini via Vertex AI: credentials, model
selection, sampling defaults and the retry/backoff policy.
"""

import os
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from medhistory.models import SamplingParams


class GenerationConfig(BaseModel):
    """
    Generation client configuration.

    Passed explicitly to GenerationClient; nothing in the client reads the
    process environment. Use ``from_env`` at the application edge.
    """

    # Google Cloud Platform settings
    project_id: Optional[str] = Field(
        default=None,
        description="GCP project ID; missing value is reported as a configuration error"
    )
    location: str = Field(
        default="us-central1",
        description="GCP region for Vertex AI API calls"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to service account JSON (None uses the default credential chain)"
    )

    # Model selection
    model_name: str = Field(
        default="gemini-1.5-pro",
        description="Gemini model used for narrative generation"
    )

    # Sampling defaults
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=256, le=65536)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=1, le=100)

    # Retry behavior
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts (first try included) for retryable failures"
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Unit of the 2**attempt backoff wait"
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        le=600.0,
        description="Single call duration after which the attempt counts as a timeout"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid"
    )

    @field_validator("project_id", mode="before")
    @classmethod
    def blank_project_is_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not str(v).strip():
            return None
        return v

    def default_sampling(self) -> SamplingParams:
        return SamplingParams(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            top_k=self.top_k,
        )

    def backoff_for(self, attempt: int) -> float:
        """Wait before the attempt following ``attempt`` (1-based)."""
        return self.backoff_base_seconds * (2 ** attempt)

    @classmethod
    def from_env(cls) -> "GenerationConfig":
        """
        Create GenerationConfig from environment variables.

        Environment variables:
            - GCP_PROJECT_ID or GOOGLE_CLOUD_PROJECT: GCP project ID
            - GCP_LOCATION: GCP region (default: us-central1)
            - GOOGLE_APPLICATION_CREDENTIALS: Path to service account JSON
            - GEMINI_MODEL: Model name (default: gemini-1.5-pro)
            - GEMINI_MAX_ATTEMPTS: Total attempts (default: 3)
            - GEMINI_BACKOFF_SECONDS: Backoff unit (default: 1.0)
            - GEMINI_TIMEOUT_SECONDS: Per-call timeout (default: 120)
        """
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT"),
            location=os.getenv("GCP_LOCATION", "us-central1"),
            credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
            model_name=os.getenv("GEMINI_MODEL", "gemini-1.5-pro"),
            max_attempts=int(os.getenv("GEMINI_MAX_ATTEMPTS", "3")),
            backoff_base_seconds=float(os.getenv("GEMINI_BACKOFF_SECONDS", "1.0")),
            request_timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "120")),
        )

    def __repr__(self) -> str:
        """String representation (masks credentials path for security)."""
        creds = "***" if self.credentials_path else "default"
        return (
            f"GenerationConfig(project={self.project_id}, location={self.location}, "
            f"model={self.model_name}, credentials={creds})"
        )
