"""
Rendered-PDF cache keyed by history id.

Concurrent requests for the same history share a single render. Entries are
written only when caching is enabled, and an eviction that races with an
in-flight render wins: the render's result is handed to its waiters but never
written back.
"""

import asyncio
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Set, Union

from google.api_core import exceptions as google_exceptions

from medhistory.models import HistoryDocumentView, PdfArtifact
from medhistory.rendering.renderer import (
    DEFAULT_CLINIC_NAME,
    DEFAULT_GENERATED_BY,
    DocumentRenderer,
)
from medhistory.web.storage import GCSClient


logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


class PdfStore(Protocol):
    """Blocking key/value store for rendered PDFs."""

    def get(self, history_id: str) -> Optional[PdfArtifact]:
        ...

    def put(self, artifact: PdfArtifact) -> None:
        ...

    def delete(self, history_id: str) -> bool:
        ...


class DocumentSource(Protocol):
    async def get_document_view(self, history_id: str) -> HistoryDocumentView:
        ...


def _check_key(history_id: str) -> str:
    if not _SAFE_KEY.match(history_id):
        raise ValueError(f"Invalid history id for PDF cache: {history_id!r}")
    return history_id


class FilesystemPdfStore:
    """
    PDFs on local disk as ``<directory>/<id>.pdf`` with the download filename
    in a ``<id>.name`` sidecar.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _paths(self, history_id: str):
        key = _check_key(history_id)
        return self.directory / f"{key}.pdf", self.directory / f"{key}.name"

    def get(self, history_id: str) -> Optional[PdfArtifact]:
        pdf_path, name_path = self._paths(history_id)
        with self._lock:
            if not pdf_path.exists() or not name_path.exists():
                return None
            content = pdf_path.read_bytes()
            filename = name_path.read_text(encoding="utf-8").strip()
        return PdfArtifact(history_id=history_id, content=content, filename=filename)

    def put(self, artifact: PdfArtifact) -> None:
        pdf_path, name_path = self._paths(artifact.history_id)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._write_atomic(name_path, artifact.filename.encode("utf-8"))
            self._write_atomic(pdf_path, artifact.content)
        logger.debug(f"Cached PDF for history {artifact.history_id} ({artifact.size} bytes)")

    def delete(self, history_id: str) -> bool:
        pdf_path, name_path = self._paths(history_id)
        with self._lock:
            existed = pdf_path.exists()
            pdf_path.unlink(missing_ok=True)
            name_path.unlink(missing_ok=True)
        return existed

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class GCSPdfStore:
    """PDFs as GCS objects under ``prefix``; the filename travels in object metadata."""

    def __init__(self, gcs: GCSClient, prefix: str = "medical-histories/pdfs"):
        self.gcs = gcs
        self.prefix = prefix.strip("/")

    def _key(self, history_id: str) -> str:
        return f"{self.prefix}/{_check_key(history_id)}.pdf"

    def get(self, history_id: str) -> Optional[PdfArtifact]:
        found = self.gcs.download_bytes(self._key(history_id))
        if found is None:
            return None
        content, metadata = found
        filename = metadata.get("filename")
        if not filename:
            return None
        return PdfArtifact(history_id=history_id, content=content, filename=filename)

    def put(self, artifact: PdfArtifact) -> None:
        self.gcs.upload_bytes(
            artifact.content,
            self._key(artifact.history_id),
            content_type="application/pdf",
            metadata={"filename": artifact.filename},
        )

    def delete(self, history_id: str) -> bool:
        return self.gcs.delete(self._key(history_id))


class PdfCache:
    """
    Single-flight PDF cache in front of a DocumentRenderer.

    Args:
        source: Resolves a history id to the document view to render
        renderer: Produces PdfArtifacts
        store: Backing PdfStore
        enabled: Write rendered PDFs to the store (reads happen either way)
        clinic_name: Organization name printed on documents
        generated_by: Generator label printed on documents
    """

    def __init__(
        self,
        source: DocumentSource,
        renderer: DocumentRenderer,
        store: PdfStore,
        enabled: bool = False,
        clinic_name: str = DEFAULT_CLINIC_NAME,
        generated_by: str = DEFAULT_GENERATED_BY,
    ):
        self.source = source
        self.renderer = renderer
        self.store = store
        self.enabled = enabled
        self.clinic_name = clinic_name
        self.generated_by = generated_by

        self._inflight: Dict[str, asyncio.Task] = {}
        # renders detached by an eviction; they finish for their waiters but never write back
        self._stale: Set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()

        self.hits = 0
        self.misses = 0
        self.renders = 0

    async def get_or_generate(self, history_id: str) -> PdfArtifact:
        """
        Cached PDF for a history, rendering it on a miss.

        Raises:
            HistoryNotFoundError: If the history does not exist
            RenderingError: If rendering fails (no cache entry is touched)
        """
        task = self._inflight.get(history_id)
        if task is None:
            task = asyncio.ensure_future(self._load_or_render(history_id))
            self._inflight[history_id] = task
            task.add_done_callback(lambda t, key=history_id: self._finish(key, t))
        else:
            logger.debug(f"Joining in-flight PDF render for history {history_id}")
        return await asyncio.shield(task)

    def _finish(self, history_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(history_id) is task:
            del self._inflight[history_id]
        self._stale.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"PDF render for history {history_id} failed: {task.exception()}")

    async def _load_or_render(self, history_id: str) -> PdfArtifact:
        try:
            cached = await asyncio.to_thread(self.store.get, history_id)
        except (OSError, google_exceptions.GoogleAPICallError) as e:
            logger.warning(f"Failed to read cached PDF for history {history_id}, rendering: {e}")
            cached = None
        if cached is not None:
            self.hits += 1
            logger.info(f"Serving cached PDF for history {history_id}")
            return cached

        self.misses += 1
        view = await self.source.get_document_view(history_id)
        artifact = await asyncio.to_thread(
            self.renderer.render_pdf_artifact,
            view,
            self.clinic_name,
            self.generated_by,
        )
        self.renders += 1

        if self.enabled:
            async with self._write_lock:
                if asyncio.current_task() not in self._stale:
                    try:
                        await asyncio.to_thread(self.store.put, artifact)
                    except (OSError, google_exceptions.GoogleAPICallError) as e:
                        logger.error(f"Failed to cache PDF for history {history_id}: {e}")
                else:
                    logger.debug(f"History {history_id} evicted during render; not caching")

        return artifact

    async def delete(self, history_id: str) -> bool:
        """Evict a cached PDF. Idempotent; returns whether an entry existed."""
        async with self._write_lock:
            task = self._inflight.pop(history_id, None)
            if task is not None and not task.done():
                self._stale.add(task)
            removed = await asyncio.to_thread(self.store.delete, history_id)

        if removed:
            logger.info(f"Evicted cached PDF for history {history_id}")
        return removed

    def get_stats(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "renders": self.renders,
            "inflight": len(self._inflight),
        }
