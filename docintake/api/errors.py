from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from docintake.logging.logger import Log
from docintake.processor.exceptions import (
    DocumentNotAccessibleError,
    FieldNotAccessibleError,
    InvalidStateTransitionError,
    RetryLimitExceededError,
    ValidationError,
)
from docintake.storage.exceptions import StorageError

NOT_ACCESSIBLE_MESSAGE = "Resource not found or not accessible"


class MissingIdentityError(Exception):
    """Raised when a request carries no caller identity."""


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to {"error": code, "message": text} responses."""

    @app.exception_handler(MissingIdentityError)
    async def _unauthenticated(request: Request, exc: MissingIdentityError) -> JSONResponse:
        return _error(status.HTTP_401_UNAUTHORIZED, "unauthenticated", str(exc))

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", str(exc))

    @app.exception_handler(DocumentNotAccessibleError)
    async def _document_not_accessible(
        request: Request, exc: DocumentNotAccessibleError
    ) -> JSONResponse:
        Log.info(f"{type(exc).__name__}: {exc}", path=request.url.path)
        return _error(status.HTTP_404_NOT_FOUND, "not_accessible", NOT_ACCESSIBLE_MESSAGE)

    @app.exception_handler(FieldNotAccessibleError)
    async def _field_not_accessible(
        request: Request, exc: FieldNotAccessibleError
    ) -> JSONResponse:
        Log.info(f"{type(exc).__name__}: {exc}", path=request.url.path)
        return _error(status.HTTP_404_NOT_FOUND, "not_accessible", NOT_ACCESSIBLE_MESSAGE)

    @app.exception_handler(RetryLimitExceededError)
    async def _retry_limit(request: Request, exc: RetryLimitExceededError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "retry_limit_exceeded", str(exc))

    @app.exception_handler(InvalidStateTransitionError)
    async def _invalid_state(
        request: Request, exc: InvalidStateTransitionError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "invalid_state", str(exc))

    @app.exception_handler(StorageError)
    async def _storage(request: Request, exc: StorageError) -> JSONResponse:
        Log.error(f"Storage error: {exc}", path=request.url.path)
        return _error(status.HTTP_502_BAD_GATEWAY, "storage_error", "Blob storage unavailable")
