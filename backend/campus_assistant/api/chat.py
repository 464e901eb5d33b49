"""
Chat support endpoints: suggested questions and the study material index.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from campus_assistant.api.dependencies import (
    get_current_user,
    get_document_index,
    get_ingestion_service,
    get_role_profiles,
)
from campus_assistant.models.user import UserContext, UserRole
from campus_assistant.services.document_index import DocumentIndex
from campus_assistant.services.ingestion import IngestionService, MaterialNotFoundError
from campus_assistant.services.role_profiles import RoleProfileRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/chat", tags=["chat"])

REINDEX_ROLES = {UserRole.ADMIN.value, UserRole.TEACHER.value}


class SuggestedQuestionResponse(BaseModel):
    text: str
    icon: str


class DocumentResponse(BaseModel):
    """Indexed study material."""

    document_id: str
    file_name: str
    subject_name: str
    chapter_name: str
    chunk_count: int


class ReindexResponse(BaseModel):
    material_id: str
    chunks: int
    progress: list[str]


@router.get("/suggestions", response_model=list[SuggestedQuestionResponse])
async def get_suggestions(
    user: UserContext = Depends(get_current_user),
    profiles: RoleProfileRegistry = Depends(get_role_profiles),
) -> list[SuggestedQuestionResponse]:
    """Suggested questions for the caller's primary role."""
    profile = profiles.get(user.role)
    return [
        SuggestedQuestionResponse(text=question.text, icon=question.icon)
        for question in profile.suggested_questions
    ]


@router.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    user: UserContext = Depends(get_current_user),
    index: DocumentIndex = Depends(get_document_index),
) -> list[DocumentResponse]:
    """Study materials currently in the document index."""
    documents = await index.list_documents()
    return [
        DocumentResponse(
            document_id=document.document_id,
            file_name=document.file_name,
            subject_name=document.subject_name,
            chapter_name=document.chapter_name,
            chunk_count=document.chunk_count,
        )
        for document in documents
    ]


@router.post("/documents/{material_id:path}/reindex", response_model=ReindexResponse)
async def reindex_document(
    material_id: str,
    user: UserContext = Depends(get_current_user),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> ReindexResponse:
    """Re-index one study material (Admin and Teacher only)."""
    if not REINDEX_ROLES.intersection(user.roles):
        raise HTTPException(status_code=403, detail="Only admins and teachers can re-index documents")

    progress: list[str] = []
    try:
        chunks = await ingestion.ingest_single(material_id, progress.append)
    except MaterialNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    logger.info("User %s re-indexed %s (%d chunks)", user.user_id, material_id, chunks)
    return ReindexResponse(material_id=material_id, chunks=chunks, progress=progress)
