"""
Pydantic models for medical history generation.

Covers the persisted GeneratedHistory record, generation options, the read
models consumed from the patient/appointment/consultation collaborators and
the derived PDF artifact.
"""

import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryType(str, Enum):
    """Narrative shape requested from the generative model."""

    COMPLETE = "complete"
    SUMMARY = "summary"
    CHRONOLOGICAL = "chronological"
    BY_SYSTEMS = "by_systems"


class HistoryFormat(str, Enum):
    MARKDOWN = "markdown"
    HTML = "html"
    JSON = "json"
    PLAIN_TEXT = "plain_text"


class Language(str, Enum):
    SPANISH = "es"
    ENGLISH = "en"


class AuditFields(BaseModel):
    """Identifier and bookkeeping timestamps embedded in persisted entities."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def new(cls, at: Optional[datetime] = None) -> "AuditFields":
        stamp = at or utcnow()
        return cls(created_at=stamp, updated_at=stamp)


class GenerationOptions(BaseModel):
    """Caller-supplied options for a generation run."""

    history_type: HistoryType = Field(default=HistoryType.COMPLETE)
    format: HistoryFormat = Field(default=HistoryFormat.MARKDOWN)
    start_date: Optional[date] = Field(
        default=None,
        description="Inclusive lower bound of the source data window"
    )
    end_date: Optional[date] = Field(
        default=None,
        description="Inclusive upper bound of the source data window"
    )
    include_vital_signs: bool = Field(default=True)
    include_prescriptions: bool = Field(default=True)
    language: Language = Field(default=Language.SPANISH)
    notes: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Free-text hint appended verbatim to the prompt"
    )

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_window(self) -> "GenerationOptions":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self


class GeneratedHistory(BaseModel):
    """
    One generation run, persisted as an audit-log style row.

    Frozen: there is no update path, only create, read and delete.
    """

    model_config = ConfigDict(frozen=True)

    audit: AuditFields = Field(default_factory=AuditFields)
    patient_id: str
    generated_by: str
    content: str
    format: HistoryFormat = HistoryFormat.MARKDOWN
    history_type: HistoryType = HistoryType.COMPLETE
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    include_vital_signs: bool = True
    include_prescriptions: bool = True
    language: Language = Language.SPANISH
    generated_at: datetime = Field(default_factory=utcnow)
    tokens_used: Optional[int] = None
    notes: Optional[str] = None

    @property
    def id(self) -> str:
        return self.audit.id

    def to_response(self) -> Dict[str, Any]:
        """Flatten audit fields for API output."""
        data = self.model_dump(mode="json", exclude={"audit"})
        data["id"] = self.audit.id
        data["created_at"] = self.audit.created_at.isoformat()
        data["updated_at"] = self.audit.updated_at.isoformat()
        return data


class PatientProfile(BaseModel):
    """Patient lookup result from the patient directory collaborator."""

    id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_type: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_number: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DoctorRef(BaseModel):
    first_name: str
    last_name: str
    specialty: Optional[str] = None

    def label(self) -> str:
        name = f"Dr. {self.first_name} {self.last_name}"
        return f"{name} ({self.specialty})" if self.specialty else name


class Appointment(BaseModel):
    id: str
    appointment_date: date
    appointment_time: Optional[time] = None
    status: str = "SCHEDULED"
    doctor: Optional[DoctorRef] = None
    reason_for_visit: Optional[str] = None
    notes: Optional[str] = None

    def event_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.appointment_time or time.min)


class Consultation(BaseModel):
    id: str
    consultation_date: datetime
    doctor: Optional[DoctorRef] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    blood_pressure_systolic: Optional[int] = None
    blood_pressure_diastolic: Optional[int] = None
    heart_rate: Optional[int] = None
    temperature: Optional[float] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    prescriptions: Optional[str] = None
    follow_up_instructions: Optional[str] = None
    notes: Optional[str] = None

    def event_at(self) -> datetime:
        return self.consultation_date.replace(tzinfo=None)

    def has_vital_signs(self) -> bool:
        return any(
            v is not None
            for v in (
                self.weight,
                self.height,
                self.blood_pressure_systolic,
                self.heart_rate,
                self.temperature,
            )
        )

    def without_vital_signs(self) -> "Consultation":
        return self.model_copy(update={
            "weight": None,
            "height": None,
            "blood_pressure_systolic": None,
            "blood_pressure_diastolic": None,
            "heart_rate": None,
            "temperature": None,
        })


class PatientStatistics(BaseModel):
    total_appointments: int = 0
    completed_appointments: int = 0
    cancelled_appointments: int = 0
    upcoming_appointments: int = 0
    total_consultations: int = 0

    @classmethod
    def from_records(
        cls,
        appointments: List[Appointment],
        consultations: List[Consultation],
    ) -> "PatientStatistics":
        statuses = [a.status.upper() for a in appointments]
        return cls(
            total_appointments=len(appointments),
            completed_appointments=statuses.count("COMPLETED"),
            cancelled_appointments=statuses.count("CANCELLED"),
            upcoming_appointments=sum(1 for s in statuses if s in ("SCHEDULED", "CONFIRMED")),
            total_consultations=len(consultations),
        )


class ClinicalFacts(BaseModel):
    """Everything the prompt builder needs about one patient."""

    patient: PatientProfile
    appointments: List[Appointment] = Field(default_factory=list)
    consultations: List[Consultation] = Field(default_factory=list)
    statistics: PatientStatistics = Field(default_factory=PatientStatistics)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    include_vital_signs: bool = True
    include_prescriptions: bool = True


class SamplingParams(BaseModel):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=1, le=65536)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=1, le=100)


class GenerationUsage(BaseModel):
    """Token counts; zero when the provider does not report them."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    reported: bool = False


class GenerationResult(BaseModel):
    text: str
    usage: GenerationUsage = Field(default_factory=GenerationUsage)


class HistoryDocumentView(BaseModel):
    """A generated history together with its patient's display name."""

    history: GeneratedHistory
    patient_name: str


class PdfArtifact(BaseModel):
    history_id: str
    content: bytes
    filename: str

    @property
    def size(self) -> int:
        return len(self.content)
