"""
Postgres-backed stores.

``PostgresHistoryStore`` owns ``generated_medical_histories``. The patient
directory and clinical records read tables maintained by the wider clinic
system (patients, users, doctors, specialties, appointments, consultations).
"""

import logging
from datetime import date
from typing import Any, List, Optional, Sequence

from medhistory.db.client import get_conn
from medhistory.db.config import DBConfig
from medhistory.models import (
    Appointment,
    AuditFields,
    Consultation,
    DoctorRef,
    GeneratedHistory,
    PatientProfile,
)


logger = logging.getLogger(__name__)

_HISTORY_COLUMNS = (
    "id, patient_id, generated_by, content, format, history_type, start_date, end_date, "
    "include_vital_signs, include_prescriptions, language, generated_at, tokens_used, "
    "notes, created_at, updated_at"
)

_DOCTOR_JOIN = """
    left join doctors d on d.id = {alias}.doctor_id
    left join users du on du.id = d.user_id
    left join specialties s on s.id = d.specialty_id
"""


class _Repository:
    def __init__(self, config: Optional[DBConfig] = None):
        self.config = config or DBConfig.from_env()

    def _conn(self):
        return get_conn(self.config)


def _history_from_row(row: Sequence[Any]) -> GeneratedHistory:
    return GeneratedHistory(
        audit=AuditFields(id=str(row[0]), created_at=row[14], updated_at=row[15]),
        patient_id=str(row[1]),
        generated_by=str(row[2]),
        content=row[3],
        format=row[4],
        history_type=row[5],
        start_date=row[6],
        end_date=row[7],
        include_vital_signs=row[8],
        include_prescriptions=row[9],
        language=row[10],
        generated_at=row[11],
        tokens_used=row[12],
        notes=row[13],
    )


def _doctor_from_row(first_name: Optional[str], last_name: Optional[str], specialty: Optional[str]) -> Optional[DoctorRef]:
    if not first_name and not last_name:
        return None
    return DoctorRef(first_name=first_name or "", last_name=last_name or "", specialty=specialty)


class PostgresHistoryStore(_Repository):
    """GeneratedHistory rows; each call is its own transaction."""

    def insert(self, history: GeneratedHistory) -> None:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                insert into generated_medical_histories ({_HISTORY_COLUMNS})
                values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    history.id,
                    history.patient_id,
                    history.generated_by,
                    history.content,
                    history.format.value,
                    history.history_type.value,
                    history.start_date,
                    history.end_date,
                    history.include_vital_signs,
                    history.include_prescriptions,
                    history.language.value,
                    history.generated_at,
                    history.tokens_used,
                    history.notes,
                    history.audit.created_at,
                    history.audit.updated_at,
                ),
            )

    def get(self, history_id: str) -> Optional[GeneratedHistory]:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"select {_HISTORY_COLUMNS} from generated_medical_histories where id = %s",
                (history_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return _history_from_row(row)

    def list_for_patient(self, patient_id: str, limit: int) -> List[GeneratedHistory]:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select {_HISTORY_COLUMNS}
                from generated_medical_histories
                where patient_id = %s
                order by generated_at desc
                limit %s
                """,
                (patient_id, limit),
            )
            return [_history_from_row(r) for r in cur.fetchall()]

    def delete(self, history_id: str) -> bool:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute("delete from generated_medical_histories where id = %s", (history_id,))
            return cur.rowcount > 0


class PostgresPatientDirectory(_Repository):
    def get_patient(self, patient_id: str) -> Optional[PatientProfile]:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                """
                select p.id, u.first_name, u.last_name, p.date_of_birth, p.gender,
                       p.blood_type, u.email, u.phone, p.emergency_contact_name,
                       p.emergency_contact_phone, p.insurance_provider, p.insurance_number
                from patients p
                join users u on u.id = p.user_id
                where p.id = %s
                """,
                (patient_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return PatientProfile(
                id=str(row[0]),
                first_name=row[1] or "",
                last_name=row[2] or "",
                date_of_birth=row[3],
                gender=row[4],
                blood_type=row[5],
                email=row[6],
                phone=row[7],
                emergency_contact_name=row[8],
                emergency_contact_phone=row[9],
                insurance_provider=row[10],
                insurance_number=row[11],
            )


class PostgresClinicalRecords(_Repository):
    """Appointment and consultation queries, newest first; date bounds are inclusive."""

    def appointments_for(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Appointment]:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select a.id, a.appointment_date, a.appointment_time, a.status,
                       a.reason_for_visit, a.notes, du.first_name, du.last_name, s.name
                from appointments a
                {_DOCTOR_JOIN.format(alias="a")}
                where a.patient_id = %s
                  and (%s::date is null or a.appointment_date >= %s::date)
                  and (%s::date is null or a.appointment_date <= %s::date)
                order by a.appointment_date desc, a.appointment_time desc
                """,
                (patient_id, start_date, start_date, end_date, end_date),
            )
            return [
                Appointment(
                    id=str(r[0]),
                    appointment_date=r[1],
                    appointment_time=r[2],
                    status=r[3],
                    reason_for_visit=r[4],
                    notes=r[5],
                    doctor=_doctor_from_row(r[6], r[7], r[8]),
                )
                for r in cur.fetchall()
            ]

    def consultations_for(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Consultation]:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                select c.id, c.consultation_date, c.weight, c.height,
                       c.blood_pressure_systolic, c.blood_pressure_diastolic, c.heart_rate,
                       c.temperature, c.chief_complaint, c.symptoms, c.diagnosis,
                       c.treatment_plan, c.prescriptions, c.follow_up_instructions, c.notes,
                       du.first_name, du.last_name, s.name
                from consultations c
                {_DOCTOR_JOIN.format(alias="c")}
                where c.patient_id = %s
                  and (%s::date is null or c.consultation_date::date >= %s::date)
                  and (%s::date is null or c.consultation_date::date <= %s::date)
                order by c.consultation_date desc
                """,
                (patient_id, start_date, start_date, end_date, end_date),
            )
            rows = cur.fetchall()

        consultations = [
            Consultation(
                id=str(r[0]),
                consultation_date=r[1],
                weight=r[2],
                height=r[3],
                blood_pressure_systolic=r[4],
                blood_pressure_diastolic=r[5],
                heart_rate=r[6],
                temperature=r[7],
                chief_complaint=r[8],
                symptoms=r[9],
                diagnosis=r[10],
                treatment_plan=r[11],
                prescriptions=r[12],
                follow_up_instructions=r[13],
                notes=r[14],
                doctor=_doctor_from_row(r[15], r[16], r[17]),
            )
            for r in rows
        ]
        logger.debug(f"Loaded {len(consultations)} consultations for patient {patient_id}")
        return consultations
