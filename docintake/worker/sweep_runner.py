import asyncio
from uuid import UUID

from docintake.config.settings import Settings
from docintake.database.repositories.document_repository import DocumentRepository
from docintake.logging.logger import Log
from docintake.processor.exceptions import (
    DocumentNotAccessibleError,
    InvalidStateTransitionError,
)
from docintake.processor.models import Principal
from docintake.processor.orchestrator import DocumentOrchestrator
from docintake.processor.state_machine import DocumentStatus


class SweepRunner:
    """One sweep: optionally re-queue Failed documents, then process Uploaded ones."""

    def __init__(
        self,
        orchestrator: DocumentOrchestrator,
        documents: DocumentRepository,
        settings: Settings,
    ) -> None:
        self._orchestrator = orchestrator
        self._documents = documents
        self._settings = settings
        self._principal = Principal.system()

    async def run_once(self) -> int:
        """Return how many documents this sweep handled."""
        handled = 0
        if self._settings.auto_retry_failed:
            handled += await self._requeue_failed()

        ids = await self._documents.list_ids_by_status(
            DocumentStatus.UPLOADED, self._settings.worker_batch_size
        )
        if not ids:
            return handled
        Log.info(f"Sweep found {len(ids)} uploaded document(s)")
        semaphore = asyncio.Semaphore(max(1, self._settings.worker_concurrency))
        results = await asyncio.gather(*(self._process_one(i, semaphore) for i in ids))
        return handled + sum(results)

    async def _requeue_failed(self) -> int:
        ceiling = self._settings.max_retry_attempts
        ids = await self._documents.list_ids_by_status(
            DocumentStatus.FAILED,
            self._settings.worker_batch_size,
            max_retry_count=ceiling if ceiling > 0 else None,
        )
        requeued = 0
        for document_id in ids:
            try:
                await self._orchestrator.retry_processing(document_id, self._principal)
                requeued += 1
            except (InvalidStateTransitionError, DocumentNotAccessibleError) as exc:
                Log.debug(f"Skipping retry of {document_id}: {exc}")
        if requeued:
            Log.info(f"Re-queued {requeued} failed document(s)")
        return requeued

    async def _process_one(self, document_id: UUID, semaphore: asyncio.Semaphore) -> int:
        async with semaphore:
            try:
                outcome = await self._orchestrator.process(document_id, self._principal)
            except (InvalidStateTransitionError, DocumentNotAccessibleError) as exc:
                Log.debug(f"Skipping document {document_id}: {exc}")
                return 0
            except Exception:
                Log.exception(f"Processing document {document_id} crashed")
                return 0
        Log.info(f"Document {document_id} finished as {outcome.status.value}")
        return 1
