"""
HTML and PDF rendering of generated medical histories.
"""

from medhistory.rendering.renderer import (
    DocumentMetadata,
    DocumentRenderer,
    filename_for,
    format_generated_date,
    sanitize_html,
)

__all__ = [
    "DocumentMetadata",
    "DocumentRenderer",
    "filename_for",
    "format_generated_date",
    "sanitize_html",
]
