"""
Medical history orchestration.

Chains aggregation, prompt construction, generation and persistence, and
serves the read/delete paths for generated histories.
"""

import asyncio
import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Set

from medhistory.aggregation import DataAggregator
from medhistory.errors import HistoryNotFoundError, PersistenceError
from medhistory.llm.client import GenerationClient
from medhistory.models import (
    AuditFields,
    GeneratedHistory,
    GenerationOptions,
    HistoryDocumentView,
    SamplingParams,
    utcnow,
)
from medhistory.prompts import PromptBuilder
from medhistory.rendering.renderer import DEFAULT_PATIENT_NAME
from medhistory.utils import Timer, safe_log_text

if TYPE_CHECKING:
    from medhistory.cache import PdfCache


logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


class HistoryStore(Protocol):
    """Persistence contract for GeneratedHistory rows (blocking calls)."""

    def insert(self, history: GeneratedHistory) -> None:
        ...

    def get(self, history_id: str) -> Optional[GeneratedHistory]:
        ...

    def list_for_patient(self, patient_id: str, limit: int) -> List[GeneratedHistory]:
        """Most recent ``generated_at`` first."""
        ...

    def delete(self, history_id: str) -> bool:
        ...


class HistoryService:
    """
    Orchestrates generation of medical histories and their read paths.

    A history becomes visible to readers only once ``store.insert`` returns,
    and nothing is written when any earlier step fails.
    """

    def __init__(
        self,
        aggregator: DataAggregator,
        client: GenerationClient,
        store: HistoryStore,
        prompt_builder: Optional[PromptBuilder] = None,
        sampling: Optional[SamplingParams] = None,
        pdf_cache: Optional["PdfCache"] = None,
    ):
        self.aggregator = aggregator
        self.client = client
        self.store = store
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.sampling = sampling or SamplingParams()
        self.pdf_cache = pdf_cache
        self._background: Set[asyncio.Task] = set()

    def attach_pdf_cache(self, pdf_cache: "PdfCache") -> None:
        """Late wiring for the cache, which itself reads documents from this service."""
        self.pdf_cache = pdf_cache

    async def generate(
        self,
        patient_id: str,
        options: GenerationOptions,
        requesting_user_id: str,
    ) -> GeneratedHistory:
        """
        Generate and persist a new medical history.

        The pipeline runs in its own task, so a caller that goes away does not
        stop an attempt that is already in flight.

        Raises:
            PatientNotFoundError: If the patient does not exist
            GenerationError: If the generative service fails after retries
            PersistenceError: If the store rejects the new record
        """
        task = asyncio.ensure_future(self._generate(patient_id, options, requesting_user_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return await asyncio.shield(task)

    async def _generate(
        self,
        patient_id: str,
        options: GenerationOptions,
        requesting_user_id: str,
    ) -> GeneratedHistory:
        logger.info(
            f"Generating {options.history_type.value} history for patient {patient_id} "
            f"(language={options.language.value})"
        )

        with Timer(f"History generation for patient {patient_id}", logger):
            facts = await asyncio.to_thread(
                self.aggregator.aggregate,
                patient_id,
                options.start_date,
                options.end_date,
                options.include_vital_signs,
                options.include_prescriptions,
            )
            prompt = self.prompt_builder.build(facts, options)
            logger.debug(f"Prompt built: {safe_log_text(logger, prompt)}")

            result = await self.client.generate_with_retry(prompt, self.sampling)

        now = utcnow()
        history = GeneratedHistory(
            audit=AuditFields.new(now),
            patient_id=patient_id,
            generated_by=requesting_user_id,
            content=result.text,
            format=options.format,
            history_type=options.history_type,
            start_date=options.start_date,
            end_date=options.end_date,
            include_vital_signs=options.include_vital_signs,
            include_prescriptions=options.include_prescriptions,
            language=options.language,
            generated_at=now,
            tokens_used=result.usage.total_tokens if result.usage.reported else None,
            notes=options.notes,
        )

        try:
            await asyncio.to_thread(self.store.insert, history)
        except Exception as e:
            logger.error(f"Failed to persist history for patient {patient_id}: {e}")
            raise PersistenceError(f"Could not save generated history: {e}") from e

        logger.info(f"History {history.id} saved for patient {patient_id}")
        return history

    async def list_histories(
        self,
        patient_id: str,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[GeneratedHistory]:
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIST_LIMIT}, got {limit}")

        histories = await asyncio.to_thread(self.store.list_for_patient, patient_id, limit)
        histories = sorted(histories, key=lambda h: h.generated_at, reverse=True)
        return histories[:limit]

    async def get_history(self, history_id: str) -> GeneratedHistory:
        history = await asyncio.to_thread(self.store.get, history_id)
        if history is None:
            raise HistoryNotFoundError(history_id)
        return history

    async def delete_history(self, history_id: str) -> None:
        """Remove a history and evict its cached PDF."""
        deleted = await asyncio.to_thread(self.store.delete, history_id)
        if not deleted:
            raise HistoryNotFoundError(history_id)

        if self.pdf_cache is not None:
            await self.pdf_cache.delete(history_id)
        logger.info(f"History {history_id} deleted")

    async def get_document_view(self, history_id: str) -> HistoryDocumentView:
        """History plus its patient's display name, for rendering."""
        history = await self.get_history(history_id)
        patient = await asyncio.to_thread(
            self.aggregator.patients.get_patient, history.patient_id
        )
        name = patient.display_name if patient and patient.display_name else DEFAULT_PATIENT_NAME
        return HistoryDocumentView(history=history, patient_name=name)

    async def preview_data(
        self,
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Summarize the data a generation run would see, without calling the model.

        Raises:
            PatientNotFoundError: If the patient does not exist
        """
        facts = await asyncio.to_thread(
            self.aggregator.aggregate, patient_id, start_date, end_date
        )
        return {
            "patient": {
                "id": facts.patient.id,
                "name": facts.patient.display_name,
            },
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
            "appointments": len(facts.appointments),
            "consultations": len(facts.consultations),
            "consultations_with_vital_signs": sum(
                1 for c in facts.consultations if c.has_vital_signs()
            ),
            "statistics": facts.statistics.model_dump(),
        }
