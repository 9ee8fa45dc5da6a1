import asyncio

from docintake.config.settings import Settings
from docintake.database.connection import Database
from docintake.database.repositories.document_repository import DocumentRepository
from docintake.database.schema import apply_schema
from docintake.logging.logger import Log
from docintake.processor.orchestrator import build_orchestrator
from docintake.worker.sweep_runner import SweepRunner
from docintake.worker.worker import Worker


async def run_worker(settings: Settings) -> None:
    """Open the pool -> ensure schema -> build dependencies -> poll."""
    database = Database(settings)
    await database.open()
    try:
        await apply_schema(database)
        orchestrator = build_orchestrator(settings, database)
        sweep_runner = SweepRunner(orchestrator, DocumentRepository(database), settings)
        await Worker(sweep_runner, settings).run()
    finally:
        await database.close()


def main() -> None:
    """Entry point for the background worker."""
    settings = Settings()
    Log.configure(settings.log_level)
    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        Log.info("Worker stopped")


if __name__ == "__main__":
    main()
