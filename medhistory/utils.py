"""
Utilities: logging, PHI-safe text logging, timers
"""
import logging
import time
from typing import Optional


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        duration = self.end_time - self.start_time
        self.logger.info(f"{self.name}: {duration:.2f}s")

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.perf_counter()
        return end - self.start_time


def setup_logging(level: str = "INFO", log_text_snippets: bool = False) -> logging.Logger:
    """Setup PHI-safe logging for the medhistory package."""

    logger = logging.getLogger("medhistory")
    logger.setLevel(getattr(logging, level.upper()))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

    # child loggers look this flag up on the package logger
    logger.log_text_snippets = log_text_snippets

    return logger


def _snippets_enabled(logger: logging.Logger) -> bool:
    current = logger
    while current is not None:
        if hasattr(current, "log_text_snippets"):
            return bool(current.log_text_snippets)
        current = current.parent
    return False


def safe_log_text(logger: logging.Logger, text: Optional[str], max_length: int = 50) -> str:
    """Render patient text for a log line, respecting PHI settings."""
    text = text or ""
    if not _snippets_enabled(logger):
        return f"<text:{len(text)} chars>"

    if len(text) <= max_length:
        return f'"{text}"'
    return f'"{text[:max_length]}..."'
