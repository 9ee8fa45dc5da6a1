from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from docintake.api.errors import register_exception_handlers
from docintake.api.routes import router
from docintake.config.settings import Settings
from docintake.database.connection import Database
from docintake.database.schema import apply_schema
from docintake.logging.logger import Log
from docintake.processor.orchestrator import DocumentOrchestrator, build_orchestrator


def create_app(
    settings: Settings | None = None,
    orchestrator: DocumentOrchestrator | None = None,
) -> FastAPI:
    """Build the API application.

    When an orchestrator is passed in, no database pool is opened; otherwise
    the lifespan opens the pool, ensures the schema and builds one.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if orchestrator is not None:
            app.state.orchestrator = orchestrator
            yield
            return
        database = Database(settings)
        await database.open()
        try:
            await apply_schema(database)
            app.state.orchestrator = build_orchestrator(settings, database)
            Log.info("API started")
            yield
        finally:
            await database.close()

    app = FastAPI(
        title="docintake",
        description="Document intake and AI-extraction pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    register_exception_handlers(app)
    app.include_router(router)
    return app


def main() -> None:
    """Serve the API with uvicorn."""
    settings = Settings()
    Log.configure(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
