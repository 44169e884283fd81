"""
Tests for HistoryService orchestration.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from google.api_core import exceptions as google_exceptions

from medhistory.errors import (
    GenerationConfigurationError,
    GenerationUnavailableError,
    HistoryNotFoundError,
    PatientNotFoundError,
    PersistenceError,
)
from medhistory.models import GenerationOptions, HistoryType, Language
from medhistory.service import HistoryService


class TestGenerate:
    """Tests for the generation pipeline."""

    def test_chronological_end_to_end(self, service, fake_model, history_store, patient_id, user_id):
        options = GenerationOptions(history_type=HistoryType.CHRONOLOGICAL)

        history = asyncio.run(service.generate(patient_id, options, user_id))

        prompt = fake_model.prompts[0]
        assert prompt.index("2025-01-10 10:30") < prompt.index("2025-01-12 16:00")
        assert prompt.index("2025-01-12 16:00") < prompt.index("2025-03-01 09:15")
        assert prompt.index("2025-03-01 09:15") < prompt.index("2025-06-20 00:00")

        assert history_store.get(history.id) == history
        assert history.patient_id == patient_id
        assert history.generated_by == user_id
        assert history.history_type == HistoryType.CHRONOLOGICAL
        assert history.content == "# Historial\n\nContenido generado."

    def test_options_copied_to_record(self, service, patient_id, user_id):
        options = GenerationOptions(
            history_type=HistoryType.SUMMARY,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 12, 31),
            include_prescriptions=False,
            language=Language.ENGLISH,
            notes="Focus on cardiology",
        )

        history = asyncio.run(service.generate(patient_id, options, user_id))

        assert history.history_type == HistoryType.SUMMARY
        assert history.start_date == date(2025, 1, 1)
        assert history.end_date == date(2025, 12, 31)
        assert history.include_prescriptions is False
        assert history.include_vital_signs is True
        assert history.language == Language.ENGLISH
        assert history.notes == "Focus on cardiology"
        assert history.audit.created_at == history.generated_at

    def test_tokens_unset_when_not_reported(self, service, patient_id, user_id):
        history = asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))
        assert history.tokens_used is None

    def test_tokens_recorded_when_reported(self, fake_model, service, patient_id, user_id):
        fake_model.total_tokens = 1234
        history = asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))
        assert history.tokens_used == 1234

    def test_unknown_patient_persists_nothing(self, service, fake_model, history_store, user_id):
        with pytest.raises(PatientNotFoundError):
            asyncio.run(service.generate("missing", GenerationOptions(), user_id))

        assert fake_model.prompts == []
        assert history_store.rows == {}

    def test_generation_failure_persists_nothing(self, aggregator, client_factory, history_store, patient_id, user_id):
        client, model = client_factory([google_exceptions.ServiceUnavailable("down")])
        service = HistoryService(aggregator, client, history_store)

        with pytest.raises(GenerationUnavailableError):
            asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))

        assert len(model.prompts) == 3
        assert history_store.rows == {}

    def test_configuration_failure_single_attempt(self, aggregator, client_factory, history_store, patient_id, user_id):
        client, model = client_factory([google_exceptions.Unauthenticated("bad credentials")])
        service = HistoryService(aggregator, client, history_store)

        with pytest.raises(GenerationConfigurationError):
            asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))

        assert len(model.prompts) == 1
        assert history_store.rows == {}

    def test_store_failure_is_persistence_error(self, service, history_store, patient_id, user_id):
        history_store.fail_on_insert = RuntimeError("connection reset")

        with pytest.raises(PersistenceError, match="connection reset"):
            asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))

        assert history_store.rows == {}


class TestReadPaths:
    """Tests for list/get/delete and the document view."""

    def test_list_most_recent_first(self, service, history_store, history_factory, patient_id, other_patient_id):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for offset in (3, 1, 2):
            history_store.insert(history_factory(base + timedelta(days=offset)))
        history_store.insert(history_factory(base, patient_id=other_patient_id))

        histories = asyncio.run(service.list_histories(patient_id))

        assert [h.generated_at.day for h in histories] == [4, 3, 2]

    def test_list_truncates_to_limit(self, service, history_store, history_factory, patient_id):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for offset in range(15):
            history_store.insert(history_factory(base + timedelta(hours=offset)))

        assert len(asyncio.run(service.list_histories(patient_id))) == 10
        assert len(asyncio.run(service.list_histories(patient_id, limit=3))) == 3

    @pytest.mark.parametrize("limit", [0, 101])
    def test_list_rejects_bad_limit(self, service, patient_id, limit):
        with pytest.raises(ValueError):
            asyncio.run(service.list_histories(patient_id, limit=limit))

    def test_get_missing(self, service):
        with pytest.raises(HistoryNotFoundError):
            asyncio.run(service.get_history("does-not-exist"))

    def test_generated_history_visible_after_generate(self, service, patient_id, user_id):
        history = asyncio.run(service.generate(patient_id, GenerationOptions(), user_id))

        assert asyncio.run(service.get_history(history.id)) == history
        assert asyncio.run(service.list_histories(patient_id)) == [history]

    def test_delete_removes_and_evicts(self, service, history_store, sample_history):
        history_store.insert(sample_history)
        pdf_cache = AsyncMock()
        service.attach_pdf_cache(pdf_cache)

        asyncio.run(service.delete_history(sample_history.id))

        assert history_store.get(sample_history.id) is None
        pdf_cache.delete.assert_awaited_once_with(sample_history.id)

    def test_delete_missing(self, service):
        pdf_cache = AsyncMock()
        service.attach_pdf_cache(pdf_cache)

        with pytest.raises(HistoryNotFoundError):
            asyncio.run(service.delete_history("does-not-exist"))
        pdf_cache.delete.assert_not_awaited()

    def test_document_view_carries_patient_name(self, service, history_store, sample_history):
        history_store.insert(sample_history)

        view = asyncio.run(service.get_document_view(sample_history.id))

        assert view.patient_name == "José Núñez"
        assert view.history == sample_history

    def test_document_view_placeholder_for_removed_patient(self, service, history_store, history_factory, other_patient_id):
        history = history_factory(datetime(2025, 1, 1, tzinfo=timezone.utc), patient_id=other_patient_id)
        history_store.insert(history)

        view = asyncio.run(service.get_document_view(history.id))

        assert view.patient_name == "Paciente sin nombre"


class TestPreview:
    """Tests for the no-generation data preview."""

    def test_preview_counts(self, service, fake_model, patient_id):
        preview = asyncio.run(service.preview_data(patient_id))

        assert preview["patient"]["name"] == "José Núñez"
        assert preview["appointments"] == 3
        assert preview["consultations"] == 2
        assert preview["consultations_with_vital_signs"] == 2
        assert preview["statistics"]["cancelled_appointments"] == 1
        assert fake_model.prompts == []

    def test_preview_window(self, service, patient_id):
        preview = asyncio.run(service.preview_data(patient_id, start_date=date(2025, 2, 1)))

        assert preview["appointments"] == 2
        assert preview["consultations"] == 1
        assert preview["start_date"] == "2025-02-01"

    def test_preview_unknown_patient(self, service):
        with pytest.raises(PatientNotFoundError):
            asyncio.run(service.preview_data("missing"))
