"""
Clinical data aggregation for history generation.

Collects a patient's demographic summary, appointments and consultations for
a date window from the externally owned patient and clinical-record stores.
"""

import logging
from datetime import date
from typing import List, Optional, Protocol

from medhistory.errors import PatientNotFoundError
from medhistory.models import (
    Appointment,
    ClinicalFacts,
    Consultation,
    PatientProfile,
    PatientStatistics,
)


logger = logging.getLogger(__name__)


class PatientDirectory(Protocol):
    """Patient lookup by identifier."""

    def get_patient(self, patient_id: str) -> Optional[PatientProfile]:
        ...


class ClinicalRecords(Protocol):
    """Appointment and consultation range queries; bounds are inclusive, None is open."""

    def appointments_for(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Appointment]:
        ...

    def consultations_for(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Consultation]:
        ...


class DataAggregator:
    """Read-only gatherer of the facts a medical history is written from."""

    def __init__(self, patients: PatientDirectory, records: ClinicalRecords):
        self.patients = patients
        self.records = records

    def aggregate(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_vital_signs: bool = True,
        include_prescriptions: bool = True,
    ) -> ClinicalFacts:
        """
        Gather facts for one patient.

        Args:
            patient_id: Patient identifier
            start_date: Inclusive lower bound (None means all time)
            end_date: Inclusive upper bound (None means all time)
            include_vital_signs: Keep vital sign measurements on consultations
            include_prescriptions: Keep prescription text on consultations

        Raises:
            PatientNotFoundError: If the patient does not exist
        """
        patient = self.patients.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)

        appointments = self.records.appointments_for(patient_id, start_date, end_date)
        consultations = self.records.consultations_for(patient_id, start_date, end_date)

        if start_date is None and end_date is None:
            statistics = PatientStatistics.from_records(appointments, consultations)
        else:
            # statistics always describe the whole record, not the window
            statistics = PatientStatistics.from_records(
                self.records.appointments_for(patient_id),
                self.records.consultations_for(patient_id),
            )

        if not include_vital_signs:
            consultations = [c.without_vital_signs() for c in consultations]
        if not include_prescriptions:
            consultations = [c.model_copy(update={"prescriptions": None}) for c in consultations]

        logger.debug(
            f"Collected data for patient {patient_id}: "
            f"{len(appointments)} appointments, {len(consultations)} consultations"
        )

        return ClinicalFacts(
            patient=patient,
            appointments=appointments,
            consultations=consultations,
            statistics=statistics,
            start_date=start_date,
            end_date=end_date,
            include_vital_signs=include_vital_signs,
            include_prescriptions=include_prescriptions,
        )
