"""Client endpoints scoped by the caller's role."""

from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

import config
from api.deps import get_current_principal, get_db, get_page_params
from auth.principal import Principal
from models.client import (
    ClientCreate,
    ClientListResponse,
    ClientResponse,
    ClientStats,
    ClientStatus,
    ClientUpdate,
    DocumentCategory,
    DocumentUploadResponse,
    NoteCreate,
)
from models.common import Currency, PageParams
from services import clients_service
from services.upload_gate import FileMeta

router = APIRouter()


@router.get("/clients", response_model=ClientListResponse)
async def list_clients_endpoint(
    search: str | None = Query(None, max_length=200),
    status_filter: ClientStatus | None = Query(None, alias="status"),
    currency: Currency | None = Query(None),
    page: PageParams = Depends(get_page_params),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    List clients visible to the caller.

    Engagement managers only see clients they manage; admins see all.
    """
    clients, pagination = await clients_service.list_clients(
        db,
        principal=principal,
        page=page,
        search=search,
        status=status_filter.value if status_filter else None,
        currency=currency.value if currency else None,
    )
    return {"clients": clients, "pagination": pagination}


@router.get("/clients/stats", response_model=ClientStats)
async def client_stats_endpoint(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Aggregate statistics over the caller's clients."""
    return await clients_service.client_stats(db, principal=principal)


@router.post("/clients", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client_endpoint(
    payload: ClientCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a client.

    The engagement manager defaults to the caller.
    """
    return await clients_service.create_client(db, principal=principal, payload=payload)


@router.get("/clients/{client_id}", response_model=ClientResponse)
async def get_client_endpoint(
    client_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Get a client by ID (404 if outside the caller's scope)."""
    return await clients_service.get_client(db, principal=principal, client_id=client_id)


@router.put("/clients/{client_id}", response_model=ClientResponse)
async def update_client_endpoint(
    client_id: UUID,
    payload: ClientUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Update a client (only provided fields are applied)."""
    return await clients_service.update_client(
        db, principal=principal, client_id=client_id, payload=payload
    )


@router.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_client_endpoint(
    client_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Delete a client and all of its documents."""
    await clients_service.delete_client(db, principal=principal, client_id=client_id)


@router.post(
    "/clients/{client_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_documents_endpoint(
    client_id: UUID,
    files: list[UploadFile] = File(...),
    category: DocumentCategory = Form(DocumentCategory.OTHER),
    description: str | None = Form(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload one or more documents to a client.

    Files are buffered and validated as a batch; either all are stored or
    none are.
    """
    # Read one byte past the limit so oversized files are detected without buffering them whole
    read_limit = config.settings.MAX_UPLOAD_SIZE_BYTES + 1
    buffered = []
    for upload in files:
        content = await upload.read(read_limit)
        buffered.append(
            FileMeta(
                original_name=upload.filename or "upload",
                mimetype=upload.content_type or "",
                content=content,
            )
        )

    client, documents = await clients_service.upload_documents(
        db,
        principal=principal,
        client_id=client_id,
        files=buffered,
        category=category,
        description=description,
    )
    return {"documents": documents, "client": client}


@router.get("/clients/{client_id}/documents/{document_id}/download")
async def download_document_endpoint(
    client_id: UUID,
    document_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Stream a client document."""
    document, stream = await clients_service.read_document(
        db, principal=principal, client_id=client_id, document_id=document_id
    )
    return StreamingResponse(
        stream,
        media_type=document.mimetype,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(document.original_name)}",
        },
    )


@router.delete("/clients/{client_id}/documents/{document_id}", response_model=ClientResponse)
async def delete_document_endpoint(
    client_id: UUID,
    document_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Delete a document and its stored file."""
    return await clients_service.delete_document(
        db, principal=principal, client_id=client_id, document_id=document_id
    )


@router.post(
    "/clients/{client_id}/notes",
    response_model=ClientResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_client_note_endpoint(
    client_id: UUID,
    payload: NoteCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Append a note to a client."""
    return await clients_service.add_client_note(
        db, principal=principal, client_id=client_id, content=payload.content
    )
