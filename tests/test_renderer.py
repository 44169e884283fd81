"""
Tests for document rendering: sanitizing, templating, PDF output and filenames.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import fitz
import pytest

from medhistory.errors import RenderingError
from medhistory.models import HistoryDocumentView, Language
from medhistory.rendering.renderer import (
    DocumentMetadata,
    filename_for,
    format_generated_date,
    new_document_id,
    sanitize_html,
)


class TestSanitizer:
    """Tests for the HTML allow-list."""

    def test_script_removed_with_content(self, renderer):
        html = renderer.to_sanitized_html("Hola\n\n<script>alert('x')</script>\n\n**fin**")

        assert "<script" not in html
        assert "alert" not in html
        assert "<strong>fin</strong>" in html

    def test_style_removed_with_content(self):
        assert "color" not in sanitize_html("<style>p { color: red }</style><p>ok</p>")

    def test_disallowed_tags_and_attributes_stripped(self):
        html = sanitize_html(
            '<p onclick="steal()" class="x">texto <a href="http://evil">enlace</a>'
            '<img src="x.png"></p><iframe src="x"></iframe>'
        )

        assert "onclick" not in html
        assert "class=" not in html
        assert "<a" not in html
        assert "<img" not in html
        assert "<iframe" not in html
        assert "enlace" in html

    def test_fallback_content_dropped(self):
        html = sanitize_html(
            "<p>ok</p><noscript>oculto</noscript><iframe>fallback</iframe>"
            "<template>plantilla</template><svg><text>grafico</text></svg>"
        )

        assert "<p>ok</p>" in html
        for text in ("oculto", "fallback", "plantilla", "grafico"):
            assert text not in html

    def test_table_alignment_kept(self, renderer):

        html = renderer.to_sanitized_html("| A | B |\n|:--|--:|\n| 1 | 2 |\n")

        assert "<table>" in html
        assert 'align="right"' in html
        assert "style=" not in html

    def test_idempotent(self, renderer, sample_history):
        once = renderer.to_sanitized_html(
            sample_history.content + "\n\n<script>x()</script><b onclick='y'>negrita</b>"
        )
        assert sanitize_html(once) == once

    def test_markdown_structures(self, renderer):
        html = renderer.to_sanitized_html(
            "# Título\n\n- uno\n- dos\n\n> cita\n\n```\ncódigo\n```\n\n---\n"
        )

        for tag in ("<h1>", "<ul>", "<li>", "<blockquote>", "<pre>", "<code>", "<hr"):
            assert tag in html


class TestTemplate:
    """Tests for templated HTML."""

    def test_metadata_escaped_content_verbatim(self, renderer):
        metadata = DocumentMetadata(
            patient_name="<b>Ana</b> & Co",
            clinic_name="Clínica \"Norte\"",
            document_id="MH-1-ABC123",
        )

        html = renderer.to_templated_html("<p><strong>contenido</strong></p>", metadata)

        assert "&lt;b&gt;Ana&lt;/b&gt; &amp; Co" in html
        assert "<b>Ana</b>" not in html
        assert "Clínica &#34;Norte&#34;" in html or "Clínica &quot;Norte&quot;" in html
        assert "<p><strong>contenido</strong></p>" in html
        assert "MH-1-ABC123" in html

    def test_defaults(self):
        metadata = DocumentMetadata()

        assert metadata.patient_name == "Paciente sin nombre"
        assert metadata.clinic_name == "Sistema de Gestión Médica"
        assert metadata.generated_by == "Sistema Automático"
        assert metadata.document_id.startswith("MH-")

    def test_document_ids_unique(self):
        ids = {new_document_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i.split("-")[2]) == 6 for i in ids)

    def test_spanish_date(self):
        dt = datetime(2025, 12, 13, 10, 30)
        assert format_generated_date(dt) == "sábado, 13 de diciembre de 2025, 10:30"

    def test_english_date(self):
        dt = datetime(2025, 12, 13, 10, 30)
        assert format_generated_date(dt, Language.ENGLISH) == "Saturday, December 13, 2025, 10:30"

    def test_preview_uses_view(self, renderer, sample_history):
        view = HistoryDocumentView(history=sample_history, patient_name="José Núñez")

        html = renderer.render_preview(view, clinic_name="Clínica Sur")

        assert "José Núñez" in html
        assert "Clínica Sur" in html
        assert "<table>" in html
        assert "13 de diciembre de 2025" in html

    def test_spanish_labels(self, renderer):
        html = renderer.to_templated_html("<p>x</p>", DocumentMetadata(language=Language.SPANISH))

        assert "Paciente:" in html
        assert "Historial Médico" in html
        assert "revisado por personal médico" in html

    def test_english_labels(self, renderer):
        html = renderer.to_templated_html("<p>x</p>", DocumentMetadata(language=Language.ENGLISH))

        assert '<html lang="en">' in html
        assert "Patient:" in html
        assert "Medical History" in html
        assert "reviewed by qualified medical staff" in html
        assert "Paciente:" not in html
        assert "Fecha de generación" not in html



class TestPdf:
    """Tests for PDF output."""

    def test_pdf_bytes(self, renderer, sample_history):
        html = renderer.to_templated_html(
            renderer.to_sanitized_html(sample_history.content),
            DocumentMetadata(patient_name="José Núñez"),
        )

        pdf = renderer.to_pdf(html)

        assert pdf.startswith(b"%PDF")
        with fitz.open(stream=pdf, filetype="pdf") as doc:
            assert doc.page_count >= 1
            text = doc[0].get_text()
        assert "Historial" in text
        assert "Página 1 de" in text

    def test_long_document_paginates(self, renderer):
        content = "\n\n".join(f"Párrafo número {i} del historial clínico." for i in range(400))
        html = renderer.to_templated_html(renderer.to_sanitized_html(content), DocumentMetadata())

        with fitz.open(stream=renderer.to_pdf(html), filetype="pdf") as doc:
            assert doc.page_count > 1

    def test_layout_failure_is_rendering_error(self, renderer):
        with patch("medhistory.rendering.renderer.fitz.Story", side_effect=RuntimeError("layout")):
            with pytest.raises(RenderingError, match="layout"):
                renderer.to_pdf("<p>x</p>")

    def test_artifact(self, renderer, sample_history):
        view = HistoryDocumentView(history=sample_history, patient_name="José Núñez")

        artifact = renderer.render_pdf_artifact(view)

        assert artifact.history_id == sample_history.id
        assert artifact.filename == "Historial_Medico_Jose_Nunez_20251213.pdf"
        assert artifact.content.startswith(b"%PDF")


class TestFilename:
    """Tests for download filename normalization."""

    def test_diacritics_removed(self):
        assert filename_for("José Núñez", datetime(2025, 12, 13)) == "Historial_Medico_Jose_Nunez_20251213.pdf"

    def test_symbols_dropped_and_whitespace_collapsed(self):
        name = filename_for("  María   O'Connor-Pérez  ", datetime(2024, 2, 29))
        assert name == "Historial_Medico_Maria_OConnorPerez_20240229.pdf"

    def test_uses_utc_date(self):
        tz = timezone(timedelta(hours=-6))
        late_evening = datetime(2025, 12, 13, 22, 0, tzinfo=tz)
        assert filename_for("Ana", late_evening).endswith("_20251214.pdf")
