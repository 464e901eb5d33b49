"""
Conversations API endpoints.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from campus_assistant.api.dependencies import get_current_user, get_orchestrator
from campus_assistant.models.chat import ChatMessage, ConversationSummary
from campus_assistant.models.user import UserContext
from campus_assistant.services.streaming import ChatOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/conversations", tags=["conversations"])


class DeleteResponse(BaseModel):
    """Result of a delete request."""

    conversation_id: int
    success: bool


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    user: UserContext = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> list[ConversationSummary]:
    """Active conversations of the caller, most recent first."""
    return await orchestrator.list_conversations(user.user_id)


@router.get("/{conversation_id}/messages", response_model=list[ChatMessage])
async def get_conversation_messages(
    conversation_id: int,
    user: UserContext = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> list[ChatMessage]:
    """
    Messages of one conversation, oldest first.

    A conversation the caller does not own reads as empty.
    """
    return await orchestrator.get_messages(conversation_id, user.user_id)


@router.delete("/{conversation_id}", response_model=DeleteResponse)
async def delete_conversation(
    conversation_id: int,
    user: UserContext = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> DeleteResponse:
    """Soft-delete a conversation owned by the caller."""
    success = await orchestrator.delete_conversation(conversation_id, user.user_id)

    if not success:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return DeleteResponse(conversation_id=conversation_id, success=True)
