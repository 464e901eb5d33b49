"""
Streaming Types.

Data structures for chat streaming operations.
Events and generation updates are immutable dataclasses.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from campus_assistant.models.chat import ConversationRecord, SourceReference
from campus_assistant.models.user import UserContext


class ChatEventType(str, Enum):
    """Closed set of chat stream event types."""

    CONVERSATION_CREATED = "ConversationCreated"
    THINKING_STEP = "ThinkingStep"
    STREAM_STARTED = "StreamStarted"
    CONTENT_CHUNK = "ContentChunk"
    SOURCE_CITATION = "SourceCitation"
    STREAM_COMPLETE = "StreamComplete"
    ERROR = "Error"


TERMINAL_EVENT_TYPES = frozenset({ChatEventType.STREAM_COMPLETE, ChatEventType.ERROR})


@dataclass(frozen=True)
class ChatEvent:
    """
    One unit of the streaming protocol.

    Payload encoding depends on the type: CONVERSATION_CREATED and
    STREAM_COMPLETE carry a stringified integer id, SOURCE_CITATION carries
    a JSON object, everything else is free text.
    """

    type: ChatEventType
    payload: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    @classmethod
    def conversation_created(cls, conversation_id: int) -> "ChatEvent":
        return cls(ChatEventType.CONVERSATION_CREATED, str(conversation_id))

    @classmethod
    def thinking_step(cls, description: str) -> "ChatEvent":
        return cls(ChatEventType.THINKING_STEP, description)

    @classmethod
    def stream_started(cls) -> "ChatEvent":
        return cls(ChatEventType.STREAM_STARTED)

    @classmethod
    def content_chunk(cls, text: str) -> "ChatEvent":
        return cls(ChatEventType.CONTENT_CHUNK, text)

    @classmethod
    def source_citation(cls, source: SourceReference) -> "ChatEvent":
        return cls(ChatEventType.SOURCE_CITATION, source.to_payload())

    @classmethod
    def stream_complete(cls, message_id: int) -> "ChatEvent":
        return cls(ChatEventType.STREAM_COMPLETE, str(message_id))

    @classmethod
    def error(cls, message: str) -> "ChatEvent":
        return cls(ChatEventType.ERROR, message)


# ==================== Generation updates ====================


@dataclass(frozen=True)
class ToolStep:
    """The model invoked a tool; description is user-readable."""

    description: str


@dataclass(frozen=True)
class TextDelta:
    """New generated text since the previous delta."""

    text: str


@dataclass(frozen=True)
class Citation:
    """A study-material source referenced by the answer."""

    source: SourceReference


GenerationUpdate = Union[ToolStep, TextDelta, Citation]


@dataclass(frozen=True)
class ChatRequest:
    """
    Immutable request for one generated assistant turn.

    history holds the persisted turns before the current user message.
    """

    request_id: str
    message: str
    conversation: ConversationRecord
    user_context: UserContext
    history: tuple = ()


class GenerationError(Exception):
    """The generation pipeline could not produce an answer."""


@dataclass
class StreamState:
    """
    Mutable state of an active stream.

    Enforces the event grammar while the orchestrator relays updates.
    """

    request_id: str
    started: bool = False
    accumulated_content: str = ""
    chunk_count: int = 0
    sources: list[SourceReference] = field(default_factory=list)
    pending_citations: list[SourceReference] = field(default_factory=list)
    error: Optional[str] = None

    def add_source(self, source: SourceReference) -> bool:
        """Record a citation; False when it was already cited."""
        if any(existing.key == source.key for existing in self.sources):
            return False
        self.sources.append(source)
        return True

    def append(self, text: str) -> None:
        self.accumulated_content += text
        self.chunk_count += 1

    def take_pending_citations(self) -> list[SourceReference]:
        pending, self.pending_citations = self.pending_citations, []
        return pending
