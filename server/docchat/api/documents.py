from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from docchat.api.deps import get_current_user, get_guard, get_ingestion_pipeline, limit_uploads
from docchat.core.auth import AuthenticatedUser
from docchat.core.ingestion import IngestionPipeline
from docchat.core.ownership import OwnershipGuard
from docchat.db.repositories import DocumentRepository
from docchat.db.session import get_db
from docchat.schemas.documents import DocumentListResponse, DocumentResponse, DocumentUploadRequest
from docchat.schemas.workspace import DeletedResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=DocumentListResponse)
def list_documents(
    workspace_id: str = Query(min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> DocumentListResponse:
    workspace = guard.workspace(workspace_id, user.user_id)
    documents = DocumentRepository(db).list_for_workspace(workspace.id)
    return DocumentListResponse(
        items=[DocumentResponse.model_validate(document) for document in documents],
        total=len(documents),
    )


@router.post(
    "/upload",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_uploads)],
)
def upload_document(
    payload: DocumentUploadRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> DocumentResponse:
    logger.info(
        "document upload started",
        extra={
            "workspace_id": payload.workspace_id,
            "document_name": payload.name,
            "has_file": bool(payload.file_data),
            "mime_type": payload.mime_type,
        },
    )
    document = pipeline.ingest(
        user_id=user.user_id,
        workspace_id=payload.workspace_id,
        name=payload.name,
        literal_content=payload.content,
        file_data=payload.file_data,
        mime_type=payload.mime_type,
    )
    return DocumentResponse.model_validate(document)


@router.delete("/{document_id}", response_model=DeletedResponse)
def delete_document(
    document_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    guard: OwnershipGuard = Depends(get_guard),
    db: Session = Depends(get_db),
) -> DeletedResponse:
    document = guard.document(document_id, user.user_id)
    DocumentRepository(db).delete(document.id)
    return DeletedResponse()
