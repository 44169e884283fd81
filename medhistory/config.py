"""
Load and validate service configuration (YAML file or environment)
"""
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from medhistory.llm.config import GenerationConfig


class PdfCacheConfig(BaseModel):
    """Configuration for the rendered-PDF cache."""
    enabled: bool = Field(default=False, description="Write rendered PDFs to the store")
    backend: str = Field(default="filesystem")
    directory: str = Field(default="./storage/pdfs", description="Filesystem backend root")
    bucket: Optional[str] = Field(default=None, description="GCS bucket for the gcs backend")
    prefix: str = Field(default="medical-histories/pdfs")
    max_age_seconds: int = Field(default=3600, ge=0, description="Cache-Control max-age on PDF responses")

    model_config = ConfigDict(extra="forbid")

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        if v not in ('filesystem', 'gcs'):
            raise ValueError('backend must be "filesystem" or "gcs"')
        return v

    @model_validator(mode="after")
    def check_bucket(self) -> "PdfCacheConfig":
        if self.backend == "gcs" and not self.bucket:
            raise ValueError("bucket is required for the gcs backend")
        return self


class ServiceConfig(BaseModel):
    """Main configuration model."""
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    pdf_cache: PdfCacheConfig = Field(default_factory=PdfCacheConfig)
    clinic_name: str = Field(default="Sistema de Gestión Médica")
    generated_by_label: str = Field(default="Sistema Automático")
    log_level: str = Field(default="INFO")
    log_text_snippets: bool = Field(default=False, description="Never log patient text by default")

    model_config = ConfigDict(extra="forbid")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        if v.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f'Unknown log level: {v}')
        return v.upper()

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """
        Create ServiceConfig from environment variables.

        Environment variables (besides those read by GenerationConfig.from_env):
            - PDF_CACHE_ENABLED: "true" enables PDF cache writes (default: false)
            - PDF_CACHE_BACKEND: filesystem or gcs (default: filesystem)
            - PDF_CACHE_DIR: Filesystem cache directory (default: ./storage/pdfs)
            - GCS_BUCKET: Bucket for the gcs backend
            - PDF_CACHE_PREFIX: Object prefix for the gcs backend
            - CLINIC_NAME: Clinic name printed on documents
            - LOG_LEVEL: Logging level (default: INFO)
        """
        return cls(
            generation=GenerationConfig.from_env(),
            pdf_cache=PdfCacheConfig(
                enabled=os.getenv("PDF_CACHE_ENABLED", "false").lower() == "true",
                backend=os.getenv("PDF_CACHE_BACKEND", "filesystem"),
                directory=os.getenv("PDF_CACHE_DIR", "./storage/pdfs"),
                bucket=os.getenv("GCS_BUCKET") or None,
                prefix=os.getenv("PDF_CACHE_PREFIX", "medical-histories/pdfs"),
            ),
            clinic_name=os.getenv("CLINIC_NAME", "Sistema de Gestión Médica"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def load_config(config_path: Optional[Union[str, Path]] = None) -> ServiceConfig:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to config YAML file. If None, uses defaults.

    Returns:
        Validated configuration object.

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValidationError: If config values are invalid
    """
    config_data = {}

    if config_path:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

    return ServiceConfig(**config_data)
