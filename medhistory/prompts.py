"""
Prompt construction for medical history generation.

Turns aggregated clinical facts plus generation options into a single
markdown-flavoured prompt. Output is a pure function of its inputs: no clocks,
random values or unordered iteration, so identical inputs always give
byte-identical prompts.
"""

import re
import unicodedata
from typing import Dict, List, Optional, Tuple, Union

from medhistory.models import (
    Appointment,
    ClinicalFacts,
    Consultation,
    GenerationOptions,
    HistoryType,
    Language,
)


Entry = Union[Appointment, Consultation]

# Body-system keyword taxonomy used for by_systems grouping. Keywords are
# lowercase and accent-free; each must start a word of the normalized entry text.
BODY_SYSTEMS: List[Tuple[str, Tuple[str, ...]]] = [
    ("cardiovascular", (
        "cardi", "corazon", "heart", "hipertension", "hypertension", "presion arterial",
        "blood pressure", "arritmia", "arrhythmia", "taquicardia", "tachycardia",
        "angina", "infarto", "infarction", "palpitacion", "palpitation",
    )),
    ("respiratory", (
        "respir", "pulmon", "lung", "asma", "asthma", "tos", "cough", "disnea",
        "dyspnea", "bronqu", "bronch", "neumonia", "pneumonia", "epoc", "copd",
    )),
    ("digestive", (
        "digest", "gastr", "abdominal", "abdomen", "colon", "higado", "liver",
        "nausea", "vomit", "diarrea", "diarrhea", "estreñimiento", "constipation",
        "reflujo", "reflux", "hepat",
    )),
    ("neurological", (
        "neuro", "cefalea", "headache", "migra", "mareo", "dizziness", "convuls",
        "seizure", "epilep", "vertigo", "parestesia", "paresthesia",
    )),
    ("musculoskeletal", (
        "muscul", "oste", "artr", "arthr", "fractura", "fracture", "lumbar",
        "espalda", "back pain", "rodilla", "knee", "hombro", "shoulder", "tendin",
    )),
    ("endocrine", (
        "diabet", "tiroid", "thyroid", "glucosa", "glucose", "insulin", "endocrin",
        "obesidad", "obesity", "metformin",
    )),
]
OTHER_SYSTEM = "other"


_TEXT: Dict[Language, Dict[str, str]] = {
    Language.SPANISH: {
        "intro": (
            "Eres un asistente médico experto. Tu tarea es generar un historial médico "
            "{kind} del paciente basándote en la información proporcionada."
        ),
        "kind.complete": "completo y detallado",
        "kind.summary": "resumido",
        "kind.chronological": "cronológico",
        "kind.by_systems": "organizado por sistemas corporales",
        "rules": (
            "IMPORTANTE - INSTRUCCIONES CRÍTICAS:\n"
            "- Usa un lenguaje español profesional y claro\n"
            "- Sé objetivo y preciso\n"
            "- Incluye solo información verificable de los datos proporcionados\n"
            "- NO inventes ni asumas información que no esté explícitamente en los datos\n"
            "- DESTACA de forma PROMINENTE cualquier ALERGIA mencionada (usa negritas)\n"
            "- Identifica PATRONES en signos vitales a lo largo del tiempo\n"
            "- Si se mencionan enfermedades crónicas o medicamentos en MÚLTIPLES consultas, "
            "resáltalos como condiciones recurrentes\n"
            "- Si encuentras información contradictoria entre consultas, menciónalo"
        ),
        "window": "**Periodo de datos:** {start} a {end}",
        "window.open": "inicio",
        "window.now": "la fecha actual",
        "patient": "## INFORMACIÓN DEL PACIENTE",
        "name": "Nombre",
        "dob": "Fecha de nacimiento",
        "gender": "Género",
        "blood_type": "Tipo de sangre",
        "email": "Email",
        "phone": "Teléfono",
        "emergency": "Contacto de emergencia",
        "insurance": "Seguro médico",
        "unspecified": "No especificado",
        "no_record": (
            "## NOTA SOBRE EL EXPEDIENTE MÉDICO\n\n"
            "Este paciente no tiene un expediente médico formal registrado. Genera el "
            "historial con la información de las consultas. Si se mencionan alergias, "
            "enfermedades crónicas o medicamentos recurrentes, inclúyelos de forma "
            "DESTACADA en una sección especial al inicio."
        ),
        "appointments": "## HISTORIAL DE CITAS",
        "appointments.total": "Total de citas: {count}",
        "appointment": "Cita",
        "consultations": "## CONSULTAS MÉDICAS DETALLADAS",
        "consultations.total": "Total de consultas: {count}",
        "consultation": "Consulta",
        "timeline": "## LÍNEA DE TIEMPO CLÍNICA (orden ascendente)",
        "summary": "## RESUMEN CLÍNICO",
        "latest_vitals": "## SIGNOS VITALES MÁS RECIENTES",
        "systems": "## HALLAZGOS POR SISTEMAS CORPORALES",
        "system.cardiovascular": "Sistema Cardiovascular",
        "system.respiratory": "Sistema Respiratorio",
        "system.digestive": "Sistema Digestivo",
        "system.neurological": "Sistema Neurológico",
        "system.musculoskeletal": "Sistema Musculoesquelético",
        "system.endocrine": "Sistema Endocrino",
        "system.other": "Otros hallazgos",
        "date": "Fecha",
        "status": "Estado",
        "doctor": "Doctor",
        "reason": "Motivo",
        "notes": "Notas",
        "vitals": "Signos vitales",
        "weight": "Peso",
        "height": "Altura",
        "blood_pressure": "Presión arterial",
        "heart_rate": "Frecuencia cardíaca",
        "temperature": "Temperatura",
        "chief_complaint": "Motivo de consulta",
        "symptoms": "Síntomas",
        "diagnosis": "Diagnóstico",
        "treatment_plan": "Plan de tratamiento",
        "prescriptions": "Prescripciones",
        "follow_up": "Instrucciones de seguimiento",
        "statistics": "## ESTADÍSTICAS",
        "stat.total_appointments": "Total de citas",
        "stat.completed": "Citas completadas",
        "stat.cancelled": "Citas canceladas",
        "stat.upcoming": "Citas próximas",
        "stat.consultations": "Total de consultas",
        "final": "## INSTRUCCIONES FINALES PARA GENERAR EL HISTORIAL",
        "final.lead": "GENERA EL HISTORIAL MÉDICO BASÁNDOTE EN TODA LA INFORMACIÓN ANTERIOR.",
        "format.complete": "**FORMATO REQUERIDO:** Historial médico completo y detallado.",
        "format.summary": (
            "**FORMATO REQUERIDO:** Resumen ejecutivo conciso (máximo 1000 palabras) "
            "centrado en diagnósticos, plan de tratamiento y signos vitales recientes."
        ),
        "format.chronological": (
            "**FORMATO REQUERIDO:** Presenta la información en orden cronológico estricto "
            "(de más antiguo a más reciente)."
        ),
        "format.by_systems": (
            "**FORMATO REQUERIDO:** Organiza el historial por sistemas corporales, "
            "siguiendo los grupos de la sección de hallazgos."
        ),
        "structure": (
            "**ESTRUCTURA OBLIGATORIA DEL HISTORIAL:**\n"
            "1. **RESUMEN EJECUTIVO** (estado de salud general, condiciones principales, alergias)\n"
            "2. **INFORMACIÓN CRÍTICA DE SEGURIDAD** (alergias, condiciones especiales, medicamentos)\n"
            "3. **HISTORIAL MÉDICO DETALLADO** (consultas, diagnósticos, tratamientos, evolución)\n"
            "4. **ANÁLISIS DE TENDENCIAS Y PATRONES** (signos vitales, diagnósticos recurrentes)\n"
            "5. **OBSERVACIONES Y RECOMENDACIONES** (áreas de preocupación, seguimiento)"
        ),
        "output_language": "**Genera el historial en idioma español, usando formato markdown.**",
        "hint": "**NOTA ESPECIAL DEL SOLICITANTE:** {notes}",
    },
    Language.ENGLISH: {
        "intro": (
            "You are an expert medical assistant. Your task is to write a {kind} medical "
            "history for the patient based on the information provided."
        ),
        "kind.complete": "complete and detailed",
        "kind.summary": "summarized",
        "kind.chronological": "chronological",
        "kind.by_systems": "body-system organized",
        "rules": (
            "IMPORTANT - CRITICAL INSTRUCTIONS:\n"
            "- Use clear, professional English\n"
            "- Be objective and precise\n"
            "- Include only information verifiable from the data provided\n"
            "- DO NOT invent or assume information that is not explicitly in the data\n"
            "- PROMINENTLY HIGHLIGHT any ALLERGY that is mentioned (use bold)\n"
            "- Identify PATTERNS in vital signs over time\n"
            "- If chronic diseases or medications appear in MULTIPLE consultations, "
            "flag them as recurring conditions\n"
            "- If consultations contradict each other, say so"
        ),
        "window": "**Data window:** {start} to {end}",
        "window.open": "the beginning",
        "window.now": "today",
        "patient": "## PATIENT INFORMATION",
        "name": "Name",
        "dob": "Date of birth",
        "gender": "Gender",
        "blood_type": "Blood type",
        "email": "Email",
        "phone": "Phone",
        "emergency": "Emergency contact",
        "insurance": "Insurance",
        "unspecified": "Not specified",
        "no_record": (
            "## NOTE ABOUT THE MEDICAL RECORD\n\n"
            "This patient has no formal medical record on file. Write the history from the "
            "consultation data. If allergies, chronic diseases or recurring medications are "
            "mentioned, list them PROMINENTLY in a dedicated section at the top."
        ),
        "appointments": "## APPOINTMENT HISTORY",
        "appointments.total": "Total appointments: {count}",
        "appointment": "Appointment",
        "consultations": "## DETAILED CONSULTATIONS",
        "consultations.total": "Total consultations: {count}",
        "consultation": "Consultation",
        "timeline": "## CLINICAL TIMELINE (ascending order)",
        "summary": "## CLINICAL SUMMARY",
        "latest_vitals": "## MOST RECENT VITAL SIGNS",
        "systems": "## FINDINGS BY BODY SYSTEM",
        "system.cardiovascular": "Cardiovascular System",
        "system.respiratory": "Respiratory System",
        "system.digestive": "Digestive System",
        "system.neurological": "Neurological System",
        "system.musculoskeletal": "Musculoskeletal System",
        "system.endocrine": "Endocrine System",
        "system.other": "Other findings",
        "date": "Date",
        "status": "Status",
        "doctor": "Doctor",
        "reason": "Reason",
        "notes": "Notes",
        "vitals": "Vital signs",
        "weight": "Weight",
        "height": "Height",
        "blood_pressure": "Blood pressure",
        "heart_rate": "Heart rate",
        "temperature": "Temperature",
        "chief_complaint": "Chief complaint",
        "symptoms": "Symptoms",
        "diagnosis": "Diagnosis",
        "treatment_plan": "Treatment plan",
        "prescriptions": "Prescriptions",
        "follow_up": "Follow-up instructions",
        "statistics": "## STATISTICS",
        "stat.total_appointments": "Total appointments",
        "stat.completed": "Completed appointments",
        "stat.cancelled": "Cancelled appointments",
        "stat.upcoming": "Upcoming appointments",
        "stat.consultations": "Total consultations",
        "final": "## FINAL INSTRUCTIONS",
        "final.lead": "WRITE THE MEDICAL HISTORY FROM ALL OF THE INFORMATION ABOVE.",
        "format.complete": "**REQUIRED FORMAT:** Complete, detailed medical history.",
        "format.summary": (
            "**REQUIRED FORMAT:** Concise executive summary (at most 1000 words) focused on "
            "diagnoses, treatment plan and the most recent vital signs."
        ),
        "format.chronological": (
            "**REQUIRED FORMAT:** Present the information in strict chronological order "
            "(oldest to newest)."
        ),
        "format.by_systems": (
            "**REQUIRED FORMAT:** Organize the history by body system, following the "
            "groups in the findings section."
        ),
        "structure": (
            "**REQUIRED STRUCTURE:**\n"
            "1. **EXECUTIVE SUMMARY** (overall health, main conditions, allergies)\n"
            "2. **CRITICAL SAFETY INFORMATION** (allergies, special conditions, medications)\n"
            "3. **DETAILED MEDICAL HISTORY** (consultations, diagnoses, treatments, progress)\n"
            "4. **TRENDS AND PATTERNS** (vital signs, recurring diagnoses)\n"
            "5. **OBSERVATIONS AND RECOMMENDATIONS** (areas of concern, follow-up)"
        ),
        "output_language": "**Write the history in English, using markdown formatting.**",
        "hint": "**SPECIAL NOTE FROM THE REQUESTER:** {notes}",
    },
}


def normalize_keyword_text(text: str) -> str:
    """Lowercase and strip diacritics for keyword matching."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


# "tos" must not match "vomitos" nor "oste" match "posterior"
_SYSTEM_PATTERNS = [
    (system, tuple(re.compile(r"\b" + re.escape(normalize_keyword_text(k))) for k in keywords))
    for system, keywords in BODY_SYSTEMS
]


def classify_body_systems(text: str) -> List[str]:
    """Body systems with a keyword starting a word of ``text``, in taxonomy order."""
    normalized = normalize_keyword_text(text)
    matches = [
        system
        for system, patterns in _SYSTEM_PATTERNS
        if any(p.search(normalized) for p in patterns)
    ]
    return matches or [OTHER_SYSTEM]


def _entry_sort_key(entry: Entry) -> Tuple:
    kind = 0 if isinstance(entry, Appointment) else 1
    return (entry.event_at(), kind, entry.id)


class PromptBuilder:
    """Deterministic prompt builder; one instance can be shared freely."""

    def build(self, facts: ClinicalFacts, options: GenerationOptions) -> str:
        t = _TEXT[options.language]
        sections = [
            self._header(facts, options, t),
            self._patient_section(facts, t),
        ]

        if options.history_type == HistoryType.SUMMARY:
            sections.extend(self._summary_sections(facts, t))
        elif options.history_type == HistoryType.CHRONOLOGICAL:
            sections.append(self._timeline_section(facts, t))
        elif options.history_type == HistoryType.BY_SYSTEMS:
            sections.append(self._systems_section(facts, t))
        else:
            if facts.appointments:
                sections.append(self._appointments_section(facts.appointments, t))
            if facts.consultations:
                sections.append(self._consultations_section(facts.consultations, t))

        sections.append(self._statistics_section(facts, t))
        sections.append(self._final_instructions(options, t))
        if options.notes:
            sections.append(t["hint"].format(notes=options.notes))

        return "\n\n".join(s for s in sections if s) + "\n"

    def _header(self, facts: ClinicalFacts, options: GenerationOptions, t: Dict[str, str]) -> str:
        kind = t[f"kind.{options.history_type.value}"]
        lines = [
            t["intro"].format(kind=kind),
            "",
            t["rules"],
        ]
        if facts.start_date or facts.end_date:
            lines.append("")
            lines.append(t["window"].format(
                start=facts.start_date.isoformat() if facts.start_date else t["window.open"],
                end=facts.end_date.isoformat() if facts.end_date else t["window.now"],
            ))
        lines.append("")
        lines.append("---")
        return "\n".join(lines)

    def _patient_section(self, facts: ClinicalFacts, t: Dict[str, str]) -> str:
        p = facts.patient
        missing = t["unspecified"]
        lines = [
            t["patient"],
            "",
            f"**{t['name']}:** {p.display_name}",
            f"**{t['dob']}:** {p.date_of_birth.isoformat() if p.date_of_birth else missing}",
            f"**{t['gender']}:** {p.gender or missing}",
            f"**{t['blood_type']}:** {p.blood_type or missing}",
            f"**{t['email']}:** {p.email or missing}",
            f"**{t['phone']}:** {p.phone or missing}",
        ]
        if p.emergency_contact_name:
            contact = p.emergency_contact_name
            if p.emergency_contact_phone:
                contact += f" - {p.emergency_contact_phone}"
            lines.append(f"**{t['emergency']}:** {contact}")
        if p.insurance_provider:
            insurance = p.insurance_provider
            if p.insurance_number:
                insurance += f" ({p.insurance_number})"
            lines.append(f"**{t['insurance']}:** {insurance}")
        lines.append("")
        lines.append(t["no_record"])
        return "\n".join(lines)

    def _appointment_lines(self, apt: Appointment, t: Dict[str, str]) -> List[str]:
        when = apt.appointment_date.isoformat()
        if apt.appointment_time:
            when += f" {apt.appointment_time.strftime('%H:%M')}"
        lines = [
            f"- **{t['date']}:** {when}",
            f"- **{t['status']}:** {apt.status}",
        ]
        if apt.doctor:
            lines.append(f"- **{t['doctor']}:** {apt.doctor.label()}")
        if apt.reason_for_visit:
            lines.append(f"- **{t['reason']}:** {apt.reason_for_visit}")
        if apt.notes:
            lines.append(f"- **{t['notes']}:** {apt.notes}")
        return lines

    def _vital_signs(self, c: Consultation, t: Dict[str, str]) -> Optional[str]:
        vitals = []
        if c.weight is not None:
            vitals.append(f"{t['weight']}: {c.weight:g} kg")
        if c.height is not None:
            vitals.append(f"{t['height']}: {c.height:g} cm")
        if c.blood_pressure_systolic is not None and c.blood_pressure_diastolic is not None:
            vitals.append(
                f"{t['blood_pressure']}: {c.blood_pressure_systolic}/{c.blood_pressure_diastolic} mmHg"
            )
        if c.heart_rate is not None:
            vitals.append(f"{t['heart_rate']}: {c.heart_rate} bpm")
        if c.temperature is not None:
            vitals.append(f"{t['temperature']}: {c.temperature:g} °C")
        return ", ".join(vitals) if vitals else None

    def _consultation_lines(self, c: Consultation, t: Dict[str, str]) -> List[str]:
        lines = []
        if c.doctor:
            lines.append(f"**{t['doctor']}:** {c.doctor.label()}")
        vitals = self._vital_signs(c, t)
        if vitals:
            lines.append(f"**{t['vitals']}:** {vitals}")
        fields = [
            ("chief_complaint", c.chief_complaint),
            ("symptoms", c.symptoms),
            ("diagnosis", c.diagnosis),
            ("treatment_plan", c.treatment_plan),
            ("prescriptions", c.prescriptions),
            ("follow_up", c.follow_up_instructions),
            ("notes", c.notes),
        ]
        for key, value in fields:
            if value:
                lines.append(f"**{t[key]}:** {value}")
        return lines

    def _consultation_heading(self, c: Consultation, t: Dict[str, str], index: int) -> str:
        return f"### {t['consultation']} {index} - {c.consultation_date.strftime('%Y-%m-%d %H:%M')}"

    def _appointments_section(self, appointments: List[Appointment], t: Dict[str, str]) -> str:
        lines = [t["appointments"], "", t["appointments.total"].format(count=len(appointments))]
        for index, apt in enumerate(appointments, start=1):
            lines.append("")
            lines.append(f"### {t['appointment']} {index}")
            lines.extend(self._appointment_lines(apt, t))
        return "\n".join(lines)

    def _consultations_section(self, consultations: List[Consultation], t: Dict[str, str]) -> str:
        lines = [t["consultations"], "", t["consultations.total"].format(count=len(consultations))]
        for index, consult in enumerate(consultations, start=1):
            lines.append("")
            lines.append(self._consultation_heading(consult, t, index))
            lines.extend(self._consultation_lines(consult, t))
        return "\n".join(lines)

    def _timeline_section(self, facts: ClinicalFacts, t: Dict[str, str]) -> str:
        entries: List[Entry] = sorted(
            [*facts.appointments, *facts.consultations],
            key=_entry_sort_key,
        )
        lines = [t["timeline"]]
        appointment_no = consultation_no = 0
        for entry in entries:
            lines.append("")
            if isinstance(entry, Appointment):
                appointment_no += 1
                lines.append(
                    f"### {entry.event_at().strftime('%Y-%m-%d %H:%M')} - "
                    f"{t['appointment']} {appointment_no}"
                )
                lines.extend(self._appointment_lines(entry, t))
            else:
                consultation_no += 1
                lines.append(self._consultation_heading(entry, t, consultation_no))
                lines.extend(self._consultation_lines(entry, t))
        return "\n".join(lines)

    def _summary_sections(self, facts: ClinicalFacts, t: Dict[str, str]) -> List[str]:
        lines = [t["summary"]]
        for consult in sorted(facts.consultations, key=_entry_sort_key):
            if not (consult.diagnosis or consult.treatment_plan):
                continue
            lines.append("")
            lines.append(f"- **{t['date']}:** {consult.consultation_date.strftime('%Y-%m-%d')}")
            if consult.diagnosis:
                lines.append(f"  - **{t['diagnosis']}:** {consult.diagnosis}")
            if consult.treatment_plan:
                lines.append(f"  - **{t['treatment_plan']}:** {consult.treatment_plan}")
        sections = ["\n".join(lines)]

        with_vitals = [c for c in facts.consultations if c.has_vital_signs()]
        if facts.include_vital_signs and with_vitals:
            latest = max(with_vitals, key=_entry_sort_key)
            sections.append("\n".join([
                t["latest_vitals"],
                "",
                f"**{t['date']}:** {latest.consultation_date.strftime('%Y-%m-%d')}",
                f"**{t['vitals']}:** {self._vital_signs(latest, t)}",
            ]))
        return sections

    def _systems_section(self, facts: ClinicalFacts, t: Dict[str, str]) -> str:
        groups: Dict[str, List[str]] = {}
        for consult in facts.consultations:
            text = " ".join(filter(None, [
                consult.chief_complaint,
                consult.symptoms,
                consult.diagnosis,
                consult.treatment_plan,
                consult.prescriptions,
                consult.notes,
            ]))
            summary = "; ".join(
                f"{t[key]}: {value}"
                for key, value in (
                    ("chief_complaint", consult.chief_complaint),
                    ("diagnosis", consult.diagnosis),
                    ("treatment_plan", consult.treatment_plan),
                    ("prescriptions", consult.prescriptions),
                )
                if value
            )
            line = f"- {consult.consultation_date.strftime('%Y-%m-%d')} ({t['consultation']}): {summary}"
            vitals = self._vital_signs(consult, t)
            if vitals:
                line += f"; {t['vitals']}: {vitals}"
            for system in classify_body_systems(text):
                groups.setdefault(system, []).append(line)

        for apt in facts.appointments:
            if not apt.reason_for_visit:
                continue
            line = (
                f"- {apt.appointment_date.isoformat()} ({t['appointment']}): "
                f"{t['reason']}: {apt.reason_for_visit}"
            )
            for system in classify_body_systems(apt.reason_for_visit):
                groups.setdefault(system, []).append(line)

        lines = [t["systems"]]
        order = [name for name, _ in BODY_SYSTEMS] + [OTHER_SYSTEM]
        for system in order:
            entries = groups.get(system)
            if not entries:
                continue
            lines.append("")
            lines.append(f"### {t['system.' + system]}")
            lines.extend(sorted(entries))
        return "\n".join(lines)

    def _statistics_section(self, facts: ClinicalFacts, t: Dict[str, str]) -> str:
        s = facts.statistics
        return "\n".join([
            t["statistics"],
            "",
            f"- **{t['stat.total_appointments']}:** {s.total_appointments}",
            f"- **{t['stat.completed']}:** {s.completed_appointments}",
            f"- **{t['stat.cancelled']}:** {s.cancelled_appointments}",
            f"- **{t['stat.upcoming']}:** {s.upcoming_appointments}",
            f"- **{t['stat.consultations']}:** {s.total_consultations}",
        ])

    def _final_instructions(self, options: GenerationOptions, t: Dict[str, str]) -> str:
        return "\n".join([
            "---",
            "",
            t["final"],
            "",
            t["final.lead"],
            "",
            t[f"format.{options.history_type.value}"],
            "",
            t["structure"],
            "",
            t["output_language"],
        ])
