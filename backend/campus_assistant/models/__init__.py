"""Models package for Campus Assistant."""

from campus_assistant.models.chat import (
    ChatMessage,
    ChatRole,
    ConversationRecord,
    ConversationSummary,
    SourceReference,
)
from campus_assistant.models.user import (
    Identity,
    UserContext,
    UserRole,
)

__all__ = [
    "ChatMessage",
    "ChatRole",
    "ConversationRecord",
    "ConversationSummary",
    "SourceReference",
    "Identity",
    "UserContext",
    "UserRole",
]
