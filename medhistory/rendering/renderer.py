"""
Document rendering for generated medical histories.

Markdown is converted with Python-Markdown, sanitized against a fixed tag
allow-list with nh3, placed into a Jinja2 document template and laid out as
an A4 PDF with PyMuPDF's Story API.
"""

import io
import logging
import re
import secrets
import string
import time
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF
import markdown
import nh3
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from pydantic import BaseModel, Field

from medhistory.errors import RenderingError
from medhistory.models import HistoryDocumentView, Language, PdfArtifact, utcnow


logger = logging.getLogger(__name__)

DEFAULT_PATIENT_NAME = "Paciente sin nombre"
DEFAULT_CLINIC_NAME = "Sistema de Gestión Médica"
DEFAULT_GENERATED_BY = "Sistema Automático"

_TEMPLATE_ROOT = Path(__file__).parent / "templates"
TEMPLATE_NAME = "medical_history.html"

ALLOWED_TAGS = {
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "br", "hr",
    "strong", "b", "em", "i", "u",
    "ul", "ol", "li",
    "blockquote", "pre", "code",
    "table", "thead", "tbody", "tfoot", "tr", "th", "td",
}
ALLOWED_ATTRIBUTES = {
    "th": {"align"},
    "td": {"align"},
}
# removed together with their text; must stay disjoint from ALLOWED_TAGS
CLEAN_CONTENT_TAGS = {
    "script", "style", "noscript", "iframe", "object",
    "embed", "template", "svg", "math",
}

MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "sane_lists"]
# align="..." survives sanitizing, style="text-align" does not
MARKDOWN_EXTENSION_CONFIGS = {"tables": {"use_align_attribute": True}}

# A4 page with 20mm side and 25mm top/bottom margins, in points
PAGE_MARGIN_X = 57
PAGE_MARGIN_Y = 71
FOOTER_HEIGHT = 20

PDF_CSS = """
body { font-family: sans-serif; font-size: 10pt; color: #2c3e50; }
h1 { font-size: 16pt; color: #2980b9; }
h2 { font-size: 13pt; color: #2980b9; }
h3 { font-size: 11pt; color: #34495e; }
table { border-collapse: collapse; }
th, td { border: 1px solid #bdc3c7; padding: 3px; }
pre, code { font-family: monospace; font-size: 9pt; }
"""

_MONTHS = {
    Language.SPANISH: [
        "enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
        "agosto", "septiembre", "octubre", "noviembre", "diciembre",
    ],
    Language.ENGLISH: [
        "January", "February", "March", "April", "May", "June", "July",
        "August", "September", "October", "November", "December",
    ],
}
_WEEKDAYS = {
    Language.SPANISH: ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"],
    Language.ENGLISH: ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
}
_FOOTER = {
    Language.SPANISH: "Documento Confidencial  ·  Página {page} de {total}",
    Language.ENGLISH: "Confidential Document  ·  Page {page} of {total}",
}
_LABELS = {
    Language.SPANISH: {
        "title": "Historial Médico",
        "patient": "Paciente",
        "generated_date": "Fecha de generación",
        "generated_by": "Generado por",
        "document": "Documento",
        "disclaimer": (
            "Documento generado con asistencia de inteligencia artificial a partir del expediente clínico. "
            "Debe ser revisado por personal médico calificado."
        ),
    },
    Language.ENGLISH: {
        "title": "Medical History",
        "patient": "Patient",
        "generated_date": "Generated on",
        "generated_by": "Generated by",
        "document": "Document",
        "disclaimer": (
            "Document generated with artificial intelligence assistance from the clinical record. "
            "It must be reviewed by qualified medical staff."
        ),
    },
}

_ID_ALPHABET = string.ascii_uppercase + string.digits


def new_document_id() -> str:
    """Document identifier of the form MH-<epoch ms>-<6 random chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"MH-{int(time.time() * 1000)}-{suffix}"


def format_generated_date(dt: datetime, language: Language = Language.SPANISH) -> str:
    """Long localized date with weekday and time, e.g. 'sábado, 13 de diciembre de 2025, 10:30'."""
    weekday = _WEEKDAYS[language][dt.weekday()]
    month = _MONTHS[language][dt.month - 1]
    clock = dt.strftime("%H:%M")
    if language == Language.ENGLISH:
        return f"{weekday}, {month} {dt.day}, {dt.year}, {clock}"
    return f"{weekday}, {dt.day} de {month} de {dt.year}, {clock}"


class DocumentMetadata(BaseModel):
    """Values substituted into the document template header and footer."""

    patient_name: str = DEFAULT_PATIENT_NAME
    clinic_name: str = DEFAULT_CLINIC_NAME
    generated_date: datetime = Field(default_factory=utcnow)
    generated_by: str = DEFAULT_GENERATED_BY
    document_id: str = Field(default_factory=new_document_id)
    language: Language = Language.SPANISH


def sanitize_html(html: str) -> str:
    """
    Strip everything outside the allow-list.

    Tags in CLEAN_CONTENT_TAGS are dropped along with their text. The parser
    normalizes markup (e.g. wraps table rows in <tbody>), so sanitizing is
    idempotent only on output that has already been through it once.
    """
    return nh3.clean(
        html,
        tags=ALLOWED_TAGS,
        clean_content_tags=CLEAN_CONTENT_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        link_rel=None,
    )


def filename_for(patient_name: str, generated_at: datetime) -> str:
    """
    Download filename for a history PDF.

    Diacritics are removed, characters other than ASCII letters, digits and
    whitespace are dropped and whitespace runs become a single underscore.
    The date is the UTC calendar date of ``generated_at``.
    """
    decomposed = unicodedata.normalize("NFD", patient_name)
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = re.sub(r"[^A-Za-z0-9\s]", "", without_marks).strip()
    normalized = re.sub(r"\s+", "_", cleaned)

    if generated_at.tzinfo is not None:
        generated_at = generated_at.astimezone(timezone.utc)
    return f"Historial_Medico_{normalized}_{generated_at.strftime('%Y%m%d')}.pdf"


class DocumentRenderer:
    """Stateless markdown -> sanitized HTML -> templated HTML -> PDF pipeline."""

    def __init__(self, template_root: Optional[Path] = None):
        self._env = Environment(
            loader=FileSystemLoader(str(template_root or _TEMPLATE_ROOT)),
            autoescape=select_autoescape(["html"], default=True),
        )

    def to_sanitized_html(self, markdown_content: str) -> str:
        try:
            raw_html = markdown.markdown(
                markdown_content,
                extensions=MARKDOWN_EXTENSIONS,
                extension_configs=MARKDOWN_EXTENSION_CONFIGS,
                output_format="html",
            )
        except Exception as e:
            raise RenderingError(f"Markdown conversion failed: {e}") from e

        logger.debug(f"Markdown converted to HTML: {len(raw_html)} characters")
        return sanitize_html(raw_html)

    def to_templated_html(self, sanitized_html: str, metadata: DocumentMetadata) -> str:
        """
        Place sanitized content into the document template.

        Metadata values are HTML-escaped; ``sanitized_html`` is inserted as-is
        and must already have gone through ``sanitize_html``.
        """
        try:
            template = self._env.get_template(TEMPLATE_NAME)
            return template.render(
                patient_name=metadata.patient_name,
                clinic_name=metadata.clinic_name,
                generated_date=format_generated_date(metadata.generated_date, metadata.language),
                generated_by=metadata.generated_by,
                document_id=metadata.document_id,
                language=metadata.language.value,
                labels=_LABELS[metadata.language],
                content=sanitized_html,
            )
        except TemplateError as e:
            raise RenderingError(f"Document template failed: {e}") from e

    def to_pdf(self, templated_html: str, language: Language = Language.SPANISH) -> bytes:
        """
        Lay out templated HTML on A4 pages.

        Raises:
            RenderingError: If layout or PDF serialization fails
        """
        try:
            mediabox = fitz.paper_rect("a4")
            where = mediabox + (PAGE_MARGIN_X, PAGE_MARGIN_Y, -PAGE_MARGIN_X, -PAGE_MARGIN_Y)

            story = fitz.Story(html=templated_html, user_css=PDF_CSS)
            buffer = io.BytesIO()
            writer = fitz.DocumentWriter(buffer)

            more = True
            while more:
                device = writer.begin_page(mediabox)
                more, _ = story.place(where)
                story.draw(device)
                writer.end_page()
            writer.close()

            pdf_bytes = self._stamp_footer(buffer.getvalue(), language)
        except Exception as e:
            logger.error(f"PDF rendering failed: {e}")
            raise RenderingError(f"PDF rendering failed: {e}") from e

        logger.debug(f"PDF rendered: {len(pdf_bytes)} bytes")
        return pdf_bytes

    def _stamp_footer(self, pdf_bytes: bytes, language: Language) -> bytes:
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            total = doc.page_count
            for index, page in enumerate(doc, start=1):
                rect = page.rect
                footer = fitz.Rect(
                    PAGE_MARGIN_X,
                    rect.height - PAGE_MARGIN_Y + 10,
                    rect.width - PAGE_MARGIN_X,
                    rect.height - PAGE_MARGIN_Y + 10 + FOOTER_HEIGHT,
                )
                page.insert_textbox(
                    footer,
                    _FOOTER[language].format(page=index, total=total),
                    fontsize=8,
                    color=(0.6, 0.6, 0.6),
                    align=fitz.TEXT_ALIGN_CENTER,
                )
            return doc.tobytes(garbage=3, deflate=True)

    def metadata_for(
        self,
        view: HistoryDocumentView,
        clinic_name: str = DEFAULT_CLINIC_NAME,
        generated_by: str = DEFAULT_GENERATED_BY,
    ) -> DocumentMetadata:
        return DocumentMetadata(
            patient_name=view.patient_name or DEFAULT_PATIENT_NAME,
            clinic_name=clinic_name,
            generated_date=view.history.generated_at,
            generated_by=generated_by,
            language=view.history.language,
        )

    def render_preview(
        self,
        view: HistoryDocumentView,
        clinic_name: str = DEFAULT_CLINIC_NAME,
        generated_by: str = DEFAULT_GENERATED_BY,
    ) -> str:
        """Full HTML document for in-browser preview."""
        sanitized = self.to_sanitized_html(view.history.content)
        return self.to_templated_html(sanitized, self.metadata_for(view, clinic_name, generated_by))

    def render_pdf_artifact(
        self,
        view: HistoryDocumentView,
        clinic_name: str = DEFAULT_CLINIC_NAME,
        generated_by: str = DEFAULT_GENERATED_BY,
    ) -> PdfArtifact:
        history = view.history
        logger.info(f"Rendering PDF for history {history.id}")

        html = self.render_preview(view, clinic_name, generated_by)
        content = self.to_pdf(html, history.language)
        return PdfArtifact(
            history_id=history.id,
            content=content,
            filename=filename_for(view.patient_name, history.generated_at),
        )
