"""
FastAPI service for AI-generated medical histories.

Generation calls the generative model inline, so a request can take as long
as the retry policy allows. Deploy behind Cloud Run/uvicorn as needed.
"""

import asyncio
import logging
import os
import uuid
from datetime import date
from typing import List, Optional, Tuple

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from medhistory.aggregation import DataAggregator
from medhistory.cache import FilesystemPdfStore, GCSPdfStore, PdfCache
from medhistory.config import ServiceConfig
from medhistory.db.client import get_conn, init_schema
from medhistory.db.config import DBConfig
from medhistory.db.repository import (
    PostgresClinicalRecords,
    PostgresHistoryStore,
    PostgresPatientDirectory,
)
from medhistory.errors import (
    GenerationError,
    NotFoundError,
    PersistenceError,
    RenderingError,
)
from medhistory.llm.client import GenerationClient
from medhistory.models import GenerationOptions
from medhistory.rendering.renderer import DocumentRenderer
from medhistory.service import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, HistoryService
from medhistory.web.storage import GCSClient


logger = logging.getLogger(__name__)

API_PREFIX = "/api/medical-history"


def _parse_uuid(value: str, label: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def build_components(
    config: ServiceConfig,
    db_config: Optional[DBConfig] = None,
) -> Tuple[HistoryService, PdfCache, DocumentRenderer]:
    """Wire Postgres stores, the Gemini client, renderer and PDF cache from config."""
    db_config = db_config or DBConfig.from_env()

    aggregator = DataAggregator(
        PostgresPatientDirectory(db_config),
        PostgresClinicalRecords(db_config),
    )
    service = HistoryService(
        aggregator=aggregator,
        client=GenerationClient(config.generation),
        store=PostgresHistoryStore(db_config),
    )

    cache_config = config.pdf_cache
    if cache_config.backend == "gcs":
        store = GCSPdfStore(GCSClient(cache_config.bucket), prefix=cache_config.prefix)
    else:
        store = FilesystemPdfStore(cache_config.directory)

    renderer = DocumentRenderer()
    pdf_cache = PdfCache(
        source=service,
        renderer=renderer,
        store=store,
        enabled=cache_config.enabled,
        clinic_name=config.clinic_name,
        generated_by=config.generated_by_label,
    )
    service.attach_pdf_cache(pdf_cache)
    return service, pdf_cache, renderer


def create_app(
    service: HistoryService,
    pdf_cache: PdfCache,
    renderer: DocumentRenderer,
    pdf_max_age_seconds: int = 3600,
    allowed_origins: Optional[List[str]] = None,
) -> FastAPI:
    """Build the FastAPI application around explicit components."""
    app = FastAPI(title="Medical History API")

    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(GenerationError)
    async def _generation_failed(request: Request, exc: GenerationError):
        logger.error(f"Generation failed for {request.url.path}: {exc}")
        return _error_response(503, exc)

    @app.exception_handler(RenderingError)
    async def _rendering_failed(request: Request, exc: RenderingError):
        return JSONResponse(
            status_code=500,
            content={"detail": "No se pudo generar el PDF. Por favor intente nuevamente."},
        )

    @app.exception_handler(PersistenceError)
    async def _persistence_failed(request: Request, exc: PersistenceError):
        return _error_response(500, exc)

    router = APIRouter(prefix=API_PREFIX)

    @router.post("/patient/{patient_id}/generate", status_code=201)
    async def generate_history(
        patient_id: str,
        options: GenerationOptions,
        x_user_id: Optional[str] = Header(default=None),
    ):
        """Generate and store a new medical history for a patient."""
        patient_id = _parse_uuid(patient_id, "patient_id")
        if not x_user_id:
            raise HTTPException(status_code=400, detail="x-user-id header is required")
        user_id = _parse_uuid(x_user_id, "x-user-id")

        history = await service.generate(patient_id, options, user_id)
        return history.to_response()

    @router.get("/patient/{patient_id}")
    async def list_histories(
        patient_id: str,
        limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    ):
        patient_id = _parse_uuid(patient_id, "patient_id")
        histories = await service.list_histories(patient_id, limit)
        return [h.to_response() for h in histories]

    @router.get("/patient/{patient_id}/preview")
    async def preview_patient_data(
        patient_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ):
        """Show what a generation run would be built from, without generating."""
        patient_id = _parse_uuid(patient_id, "patient_id")
        if start_date and end_date and end_date < start_date:
            raise HTTPException(status_code=400, detail="end_date must not be earlier than start_date")
        return await service.preview_data(patient_id, start_date, end_date)

    @router.get("/{history_id}")
    async def get_history(history_id: str):
        history_id = _parse_uuid(history_id, "history_id")
        history = await service.get_history(history_id)
        return history.to_response()

    @router.delete("/{history_id}")
    async def delete_history(history_id: str):
        history_id = _parse_uuid(history_id, "history_id")
        await service.delete_history(history_id)
        return {"message": "Historial médico eliminado exitosamente"}

    @router.get("/{history_id}/pdf")
    async def download_pdf(history_id: str):
        history_id = _parse_uuid(history_id, "history_id")
        artifact = await pdf_cache.get_or_generate(history_id)
        return Response(
            content=artifact.content,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{artifact.filename}"',
                "Cache-Control": f"private, max-age={pdf_max_age_seconds}",
            },
        )

    @router.get("/{history_id}/preview", response_class=HTMLResponse)
    async def preview_history(history_id: str):
        history_id = _parse_uuid(history_id, "history_id")
        view = await service.get_document_view(history_id)
        html = await asyncio.to_thread(
            renderer.render_preview,
            view,
            pdf_cache.clinic_name,
            pdf_cache.generated_by,
        )
        return HTMLResponse(content=html)

    @router.delete("/{history_id}/pdf-cache")
    async def evict_pdf(history_id: str):
        history_id = _parse_uuid(history_id, "history_id")
        await pdf_cache.delete(history_id)
        return {"message": "PDF eliminado del caché exitosamente"}

    @app.get("/healthz")
    @app.get("/api/healthz")
    async def health():
        return {"status": "ok"}

    app.include_router(router)
    return app


def get_app() -> FastAPI:
    """Application factory for uvicorn (``--factory``), wired from the environment."""
    load_dotenv()

    config = ServiceConfig.from_env()

    # Basic logging so service logs show up in Cloud Run
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db_config = DBConfig.from_env()
    service, pdf_cache, renderer = build_components(config, db_config)

    # CORS for local dev and deployed frontend (set FRONTEND_ORIGINS as comma-separated list)
    allowed_origins = os.getenv("FRONTEND_ORIGINS", "http://localhost:5173").split(",")
    allowed_origins = [o.strip() for o in allowed_origins if o.strip()]

    app = create_app(
        service,
        pdf_cache,
        renderer,
        pdf_max_age_seconds=config.pdf_cache.max_age_seconds,
        allowed_origins=allowed_origins,
    )

    @app.on_event("startup")
    def _ensure_schema():
        # Create tables if missing
        with get_conn(db_config) as conn:
            init_schema(conn)

    logger.info(f"Medical history API ready (model={config.generation.model_name})")
    return app
