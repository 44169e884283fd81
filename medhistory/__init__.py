"""
medhistory - AI-generated medical histories.

Aggregates a patient's clinical record, asks Gemini for a narrative medical
history, stores the result and renders it as sanitized HTML or PDF.
"""

from medhistory.aggregation import DataAggregator
from medhistory.cache import FilesystemPdfStore, GCSPdfStore, PdfCache
from medhistory.config import PdfCacheConfig, ServiceConfig, load_config
from medhistory.llm import GenerationClient, GenerationConfig
from medhistory.models import (
    GeneratedHistory,
    GenerationOptions,
    HistoryFormat,
    HistoryType,
    Language,
    PdfArtifact,
)
from medhistory.prompts import PromptBuilder
from medhistory.rendering import DocumentRenderer
from medhistory.service import HistoryService

__version__ = "0.1.0"

__all__ = [
    "DataAggregator",
    "DocumentRenderer",
    "FilesystemPdfStore",
    "GCSPdfStore",
    "GeneratedHistory",
    "GenerationClient",
    "GenerationConfig",
    "GenerationOptions",
    "HistoryFormat",
    "HistoryService",
    "HistoryType",
    "Language",
    "PdfArtifact",
    "PdfCache",
    "PdfCacheConfig",
    "PromptBuilder",
    "ServiceConfig",
    "load_config",
]
