"""
Generative-text integration for medhistory.

Provides the Gemini (Vertex AI) client used to write narrative medical
histories, with retry/backoff and provider error classification.
"""

from medhistory.llm.client import GenerationClient, classify_provider_error
from medhistory.llm.config import GenerationConfig

__all__ = [
    "GenerationClient",
    "GenerationConfig",
    "classify_provider_error",
]
