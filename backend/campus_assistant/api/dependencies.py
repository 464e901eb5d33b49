"""
FastAPI dependency providers.

Routers receive their services through these functions so tests can swap
them with app.dependency_overrides.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campus_assistant.models.user import UserContext
from campus_assistant.services.document_index import DocumentIndex, document_index
from campus_assistant.services.ingestion import IngestionService, ingestion_service
from campus_assistant.services.role_profiles import RoleProfileRegistry, role_profiles
from campus_assistant.services.streaming import ChatOrchestrator, chat_orchestrator
from campus_assistant.services.user_directory import UserDirectory, resolve_user_context, user_directory

bearer_scheme = HTTPBearer(auto_error=False)


def get_orchestrator() -> ChatOrchestrator:
    return chat_orchestrator


def get_ingestion_service() -> IngestionService:
    return ingestion_service


def get_user_directory() -> UserDirectory:
    return user_directory


def get_role_profiles() -> RoleProfileRegistry:
    return role_profiles


def get_document_index() -> DocumentIndex:
    return document_index


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    directory: UserDirectory = Depends(get_user_directory),
) -> UserContext:
    """Resolve the Bearer token to a UserContext or reject with 401."""
    token = credentials.credentials if credentials else None
    user_context = await resolve_user_context(directory, token)
    if user_context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_context
