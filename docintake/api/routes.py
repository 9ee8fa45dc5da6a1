from datetime import datetime
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Header,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)

from docintake.api.errors import MissingIdentityError
from docintake.api.schemas import (
    AuditLogResponse,
    DocumentDetailResponse,
    DocumentListResponse,
    DocumentResponse,
    DocumentUpdateRequest,
    FieldResponse,
    FieldUpdateRequest,
    ProcessingOutcomeResponse,
)
from docintake.logging.logger import Log
from docintake.processor.models import DocumentSearch, DocumentUpdate, NewDocument, Principal
from docintake.processor.orchestrator import DocumentOrchestrator
from docintake.processor.state_machine import DocumentStatus

router = APIRouter()

_DOWNLOAD_MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
}


def get_orchestrator(request: Request) -> DocumentOrchestrator:
    return request.app.state.orchestrator


def get_principal(
    x_user_id: str | None = Header(default=None),
    x_user_roles: str | None = Header(default=None),
) -> Principal:
    """Caller identity as forwarded by the identity provider in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise MissingIdentityError("X-User-Id header is required")
    roles = frozenset(r.strip() for r in (x_user_roles or "").split(",") if r.strip())
    return Principal(user_id=x_user_id.strip(), roles=roles)


async def _process_in_background(
    orchestrator: DocumentOrchestrator, document_id: UUID, principal: Principal
) -> None:
    try:
        await orchestrator.process(document_id, principal)
    except Exception:
        Log.exception(f"Background processing of document {document_id} failed")


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/documents", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    project_name: str | None = Form(default=None),
    description: str | None = Form(default=None),
    document_category: str | None = Form(default=None),
    is_public: bool = Form(default=False),
    process_now: bool = Form(default=False),
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentResponse:
    content = await file.read()
    document = await orchestrator.create(
        content,
        NewDocument(
            file_name=file.filename or "",
            content_type=file.content_type,
            project_name=project_name,
            description=description,
            document_category=document_category,
            is_public=is_public,
        ),
        principal,
    )
    if process_now:
        background_tasks.add_task(_process_in_background, orchestrator, document.id, principal)
    return DocumentResponse.model_validate(document)


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    search_term: str | None = None,
    document_status: DocumentStatus | None = Query(default=None, alias="status"),
    category: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    page_size: int = 10,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentListResponse:
    search = DocumentSearch(
        search_term=search_term,
        status=document_status,
        category=category,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    documents = await orchestrator.get_documents_by_user(principal, search)
    total = await orchestrator.get_document_count(principal)
    return DocumentListResponse(
        items=[DocumentResponse.model_validate(d) for d in documents],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/documents/categories", response_model=list[str])
async def list_categories(
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> list[str]:
    return await orchestrator.get_document_categories(principal)


@router.get("/documents/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentDetailResponse:
    details = await orchestrator.get_document(document_id, principal)
    return DocumentDetailResponse.model_validate(details)


@router.patch("/documents/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: UUID,
    body: DocumentUpdateRequest,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentResponse:
    update = DocumentUpdate(**body.model_dump())
    document = await orchestrator.update_document(document_id, update, principal)
    return DocumentResponse.model_validate(document)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> Response:
    await orchestrator.delete(document_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/documents/{document_id}/process", response_model=ProcessingOutcomeResponse)
async def process_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> ProcessingOutcomeResponse:
    outcome = await orchestrator.process(document_id, principal)
    return ProcessingOutcomeResponse.model_validate(outcome)


@router.post("/documents/{document_id}/retry", response_model=DocumentResponse)
async def retry_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentResponse:
    document = await orchestrator.retry_processing(document_id, principal)
    return DocumentResponse.model_validate(document)


@router.post("/documents/{document_id}/cancel", response_model=DocumentResponse)
async def cancel_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> DocumentResponse:
    document = await orchestrator.cancel_document(document_id, principal)
    return DocumentResponse.model_validate(document)


@router.get("/documents/{document_id}/download")
async def download_document(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> Response:
    downloaded = await orchestrator.download(document_id, principal)
    media_type = _DOWNLOAD_MEDIA_TYPES.get(downloaded.file_type, "application/octet-stream")
    safe_name = downloaded.file_name.replace('"', "")
    return Response(
        content=downloaded.content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{safe_name}"'},
    )


@router.get("/documents/{document_id}/result", response_model=ProcessingOutcomeResponse)
async def get_processing_result(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> ProcessingOutcomeResponse:
    outcome = await orchestrator.get_processing_result(document_id, principal)
    return ProcessingOutcomeResponse.model_validate(outcome)


@router.get("/documents/{document_id}/fields", response_model=list[FieldResponse])
async def list_fields(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> list[FieldResponse]:
    fields = await orchestrator.get_document_fields(document_id, principal)
    return [FieldResponse.model_validate(f) for f in fields]


@router.get("/documents/{document_id}/audit", response_model=list[AuditLogResponse])
async def get_audit_trail(
    document_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> list[AuditLogResponse]:
    logs = await orchestrator.get_document_audit_trail(document_id, principal)
    return [AuditLogResponse.model_validate(log) for log in logs]


@router.patch("/fields/{field_id}", response_model=FieldResponse)
async def update_field(
    field_id: UUID,
    body: FieldUpdateRequest,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> FieldResponse:
    field = await orchestrator.update_document_field(field_id, body.value, principal)
    return FieldResponse.model_validate(field)


@router.post("/fields/{field_id}/verify", response_model=FieldResponse)
async def verify_field(
    field_id: UUID,
    principal: Principal = Depends(get_principal),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> FieldResponse:
    field = await orchestrator.verify_document_field(field_id, principal)
    return FieldResponse.model_validate(field)
