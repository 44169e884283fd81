"""
Pytest fixtures for medhistory tests.

Provides in-memory stores, a scripted fake Gemini model and sample clinical
data so no test talks to Vertex AI, Postgres or GCS.
"""

import threading
from datetime import date, datetime, time, timezone
from unittest.mock import MagicMock

import pytest

from medhistory.aggregation import DataAggregator
from medhistory.llm.client import GenerationClient
from medhistory.llm.config import GenerationConfig
from medhistory.models import (
    Appointment,
    AuditFields,
    Consultation,
    DoctorRef,
    GeneratedHistory,
    PatientProfile,
)
from medhistory.rendering.renderer import DocumentRenderer
from medhistory.service import HistoryService


PATIENT_ID = "6f1c2b8e-4a1d-4c55-9d8e-2b7f0a9c1e01"
OTHER_PATIENT_ID = "0b7e9c1a-2d3f-4e5a-8b6c-7d8e9f0a1b02"
USER_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c03"


class InMemoryPatientDirectory:
    def __init__(self, patients=None):
        self.patients = {p.id: p for p in (patients or [])}

    def get_patient(self, patient_id):
        return self.patients.get(patient_id)


class InMemoryClinicalRecords:
    """Returns records newest first, like the Postgres implementation."""

    def __init__(self, appointments=None, consultations=None):
        self.appointments = appointments or {}
        self.consultations = consultations or {}
        self.calls = []

    @staticmethod
    def _within(day, start_date, end_date):
        if start_date and day < start_date:
            return False
        if end_date and day > end_date:
            return False
        return True

    def appointments_for(self, patient_id, start_date=None, end_date=None):
        self.calls.append(("appointments", patient_id, start_date, end_date))
        items = [
            a for a in self.appointments.get(patient_id, [])
            if self._within(a.appointment_date, start_date, end_date)
        ]
        return sorted(items, key=lambda a: a.event_at(), reverse=True)

    def consultations_for(self, patient_id, start_date=None, end_date=None):
        self.calls.append(("consultations", patient_id, start_date, end_date))
        items = [
            c for c in self.consultations.get(patient_id, [])
            if self._within(c.consultation_date.date(), start_date, end_date)
        ]
        return sorted(items, key=lambda c: c.event_at(), reverse=True)


class InMemoryHistoryStore:
    def __init__(self):
        self.rows = {}
        self.fail_on_insert = None
        self._lock = threading.Lock()

    def insert(self, history):
        if self.fail_on_insert is not None:
            raise self.fail_on_insert
        with self._lock:
            self.rows[history.id] = history

    def get(self, history_id):
        with self._lock:
            return self.rows.get(history_id)

    def list_for_patient(self, patient_id, limit):
        with self._lock:
            rows = [h for h in self.rows.values() if h.patient_id == patient_id]
        rows.sort(key=lambda h: h.generated_at, reverse=True)
        return rows[:limit]

    def delete(self, history_id):
        with self._lock:
            return self.rows.pop(history_id, None) is not None


def make_response(text, total_tokens=None):
    """Mock Gemini response with one candidate holding ``text``."""
    part = MagicMock()
    part.text = text
    candidate = MagicMock()
    candidate.content.parts = [part]

    response = MagicMock()
    response.candidates = [candidate]
    if total_tokens is None:
        response.usage_metadata = None
    else:
        response.usage_metadata.prompt_token_count = total_tokens // 2
        response.usage_metadata.candidates_token_count = total_tokens - total_tokens // 2
        response.usage_metadata.total_token_count = total_tokens
    return response


class FakeModel:
    """
    Scripted stand-in for vertexai GenerativeModel.

    Each call pops the next outcome: an exception instance is raised, a
    string becomes the response text. When the script runs out the last
    outcome repeats.
    """

    def __init__(self, outcomes=None, total_tokens=None):
        self.outcomes = list(outcomes or ["# Historial\n\nContenido generado."])
        self.total_tokens = total_tokens
        self.prompts = []

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return make_response(outcome, self.total_tokens)


class RecordingSleep:
    """Awaitable replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def patient():
    return PatientProfile(
        id=PATIENT_ID,
        first_name="José",
        last_name="Núñez",
        date_of_birth=date(1980, 4, 2),
        gender="male",
        blood_type="O+",
        email="jose@example.com",
        phone="+52 55 1234 5678",
    )


@pytest.fixture
def doctor():
    return DoctorRef(first_name="Ana", last_name="García", specialty="Medicina Interna")


@pytest.fixture
def appointments(doctor):
    return [
        Appointment(
            id="apt-1",
            appointment_date=date(2025, 3, 1),
            appointment_time=time(9, 0),
            status="COMPLETED",
            doctor=doctor,
            reason_for_visit="Control de hipertensión",
        ),
        Appointment(
            id="apt-2",
            appointment_date=date(2025, 1, 10),
            appointment_time=time(10, 30),
            status="CANCELLED",
            reason_for_visit="Tos persistente",
        ),
        Appointment(
            id="apt-3",
            appointment_date=date(2025, 6, 20),
            status="SCHEDULED",
            reason_for_visit="Seguimiento",
        ),
    ]


@pytest.fixture
def consultations(doctor):
    return [
        Consultation(
            id="con-2",
            consultation_date=datetime(2025, 3, 1, 9, 15, tzinfo=timezone.utc),
            doctor=doctor,
            weight=82.5,
            height=175,
            blood_pressure_systolic=145,
            blood_pressure_diastolic=92,
            heart_rate=78,
            temperature=36.6,
            chief_complaint="Cefalea matutina",
            diagnosis="Hipertensión arterial",
            treatment_plan="Losartán 50 mg cada 24 horas",
            prescriptions="Losartán 50 mg",
        ),
        Consultation(
            id="con-1",
            consultation_date=datetime(2025, 1, 12, 16, 0, tzinfo=timezone.utc),
            doctor=doctor,
            temperature=37.9,
            chief_complaint="Tos y fiebre",
            diagnosis="Bronquitis aguda",
            treatment_plan="Reposo e hidratación",
            prescriptions="Amoxicilina 500 mg",
            notes="Alergia a la penicilina negada",
        ),
    ]


@pytest.fixture
def patient_directory(patient):
    return InMemoryPatientDirectory([patient])


@pytest.fixture
def clinical_records(appointments, consultations):
    return InMemoryClinicalRecords(
        appointments={PATIENT_ID: appointments},
        consultations={PATIENT_ID: consultations},
    )


@pytest.fixture
def aggregator(patient_directory, clinical_records):
    return DataAggregator(patient_directory, clinical_records)


@pytest.fixture
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture
def generation_config():
    """Generation configuration with a fast, deterministic retry policy."""
    return GenerationConfig(
        project_id="test-project",
        location="us-central1",
        model_name="gemini-1.5-pro",
        max_attempts=3,
        backoff_base_seconds=1.0,
        request_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_model():
    return FakeModel()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def generation_client(generation_config, fake_model, recording_sleep):
    return GenerationClient(generation_config, model=fake_model, sleep=recording_sleep)


@pytest.fixture
def service(aggregator, generation_client, history_store):
    return HistoryService(aggregator, generation_client, history_store)


@pytest.fixture
def renderer():
    return DocumentRenderer()


@pytest.fixture
def sample_history():
    stamp = datetime(2025, 12, 13, 15, 45, tzinfo=timezone.utc)
    return GeneratedHistory(
        audit=AuditFields.new(stamp),
        patient_id=PATIENT_ID,
        generated_by=USER_ID,
        content=(
            "# Resumen ejecutivo\n\n"
            "Paciente con **hipertensión arterial**.\n\n"
            "| Fecha | Diagnóstico |\n|---|---|\n| 2025-03-01 | Hipertensión |\n"
        ),
        generated_at=stamp,
    )


@pytest.fixture
def client_factory(generation_config, recording_sleep):
    """Build a GenerationClient around a FakeModel with scripted outcomes."""
    def build(outcomes=None, total_tokens=None, **config_overrides):
        config = generation_config.model_copy(update=config_overrides)
        model = FakeModel(outcomes, total_tokens)
        return GenerationClient(config, model=model, sleep=recording_sleep), model
    return build


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def history_factory():
    """Build GeneratedHistory rows for a patient at a given generation time."""
    def build(generated_at, patient_id=PATIENT_ID, content="# Historial"):
        return GeneratedHistory(
            audit=AuditFields.new(generated_at),
            patient_id=patient_id,
            generated_by=USER_ID,
            content=content,
            generated_at=generated_at,
        )
    return build


@pytest.fixture
def patient_id():
    return PATIENT_ID


@pytest.fixture
def other_patient_id():
    return OTHER_PATIENT_ID


@pytest.fixture
def user_id():
    return USER_ID
