"""
Chat persistence models.

Conversations and messages as seen by the streaming core. Storage
backends (Pocketbase, in-memory) map their records onto these models.
"""
import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_CONVERSATION_TITLE = "New Chat"
TITLE_MAX_LENGTH = 50


class ChatRole(str, Enum):
    """Author of a chat turn."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class SourceReference(BaseModel):
    """A study-material passage cited by an assistant answer."""

    file_name: str
    file_path: str = ""
    page_number: int = 0
    chapter_name: str = "Unknown"
    subject_name: str = "Unknown"

    @property
    def key(self) -> tuple[str, int]:
        """Identity used to de-duplicate citations."""
        return (self.file_name, self.page_number)

    def to_payload(self) -> str:
        """Serialize to the JSON text carried by a SourceCitation event."""
        return json.dumps(
            {
                "fileName": self.file_name,
                "filePath": self.file_path,
                "pageNumber": self.page_number,
                "chapterName": self.chapter_name,
                "subjectName": self.subject_name,
            }
        )


class ConversationRecord(BaseModel):
    """Persisted conversation owned by exactly one user."""

    id: int
    user_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    campus_id: Optional[int] = None
    created_at: datetime
    last_message_at: Optional[datetime] = None
    is_active: bool = True

    @property
    def activity_time(self) -> datetime:
        return self.last_message_at or self.created_at

    def is_owned_by(self, user_id: str) -> bool:
        return self.is_active and self.user_id == user_id


class ConversationSummary(BaseModel):
    """Conversation list entry."""

    id: int
    title: str
    created_at: datetime
    last_message_at: Optional[datetime] = None
    message_count: int = 0


class ChatMessage(BaseModel):
    """One role-tagged turn of a conversation."""

    id: int
    conversation_id: int
    role: ChatRole
    content: str
    sources: list[SourceReference] = Field(default_factory=list)
    timestamp: datetime


def derive_title(message: str) -> str:
    """Conversation title from the first user message."""
    text = " ".join(message.split())
    if len(text) > TITLE_MAX_LENGTH:
        return text[:TITLE_MAX_LENGTH] + "..."
    return text or DEFAULT_CONVERSATION_TITLE
