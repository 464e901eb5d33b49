"""
Chat Event Notifier.

Sends chat events and hub responses to the connected client.
Every ChatEventType maps to exactly one named outbound message.
"""
import logging
from dataclasses import asdict
from typing import Any, Protocol

from campus_assistant.models.chat import ChatMessage, ConversationSummary

from .types import ChatEvent, ChatEventType

logger = logging.getLogger(__name__)


class ClientSender(Protocol):
    """Protocol for sending a named message with positional arguments."""

    async def send(self, method: str, *args: Any) -> None: ...


# Outbound message name per event type
OUTBOUND_EVENT_NAMES: dict[ChatEventType, str] = {
    ChatEventType.CONVERSATION_CREATED: "ConversationCreated",
    ChatEventType.THINKING_STEP: "ThinkingStep",
    ChatEventType.STREAM_STARTED: "StreamStarted",
    ChatEventType.CONTENT_CHUNK: "ContentChunk",
    ChatEventType.SOURCE_CITATION: "SourceCitation",
    ChatEventType.STREAM_COMPLETE: "StreamComplete",
    ChatEventType.ERROR: "Error",
}

INTEGER_PAYLOAD_EVENTS = frozenset({ChatEventType.CONVERSATION_CREATED, ChatEventType.STREAM_COMPLETE})
EMPTY_PAYLOAD_EVENTS = frozenset({ChatEventType.STREAM_STARTED})

ERROR = "Error"
CONVERSATIONS_LIST = "ConversationsList"
CONVERSATION_MESSAGES = "ConversationMessages"
CONVERSATION_DELETED = "ConversationDeleted"
INGESTION_PROGRESS = "IngestionProgress"
INGESTION_COMPLETE = "IngestionComplete"


def outbound_arguments(event: ChatEvent) -> tuple:
    """Positional arguments of the outbound message for an event."""
    if event.type in INTEGER_PAYLOAD_EVENTS:
        return (int(event.payload),)
    if event.type in EMPTY_PAYLOAD_EVENTS:
        return ()
    return (event.payload,)


class ChatEventNotifier:
    """
    Formats and sends outbound hub messages.

    Responsibilities:
    - Map chat events to outbound message names and payloads
    - Serialize conversation and ingestion responses
    """

    def __init__(self, sender: ClientSender):
        self._sender = sender

    async def dispatch(self, event: ChatEvent) -> None:
        """Send one chat event using its type as the dispatch key."""
        name = OUTBOUND_EVENT_NAMES[event.type]
        await self._sender.send(name, *outbound_arguments(event))

    async def notify_error(self, message: str) -> None:
        await self._sender.send(ERROR, message)
        logger.debug("Sent Error: %s", message)

    async def notify_conversations(self, conversations: list[ConversationSummary]) -> None:
        await self._sender.send(
            CONVERSATIONS_LIST,
            [conversation.model_dump(mode="json") for conversation in conversations],
        )

    async def notify_messages(self, conversation_id: int, messages: list[ChatMessage]) -> None:
        await self._sender.send(
            CONVERSATION_MESSAGES,
            conversation_id,
            [message.model_dump(mode="json") for message in messages],
        )

    async def notify_deleted(self, conversation_id: int, success: bool) -> None:
        await self._sender.send(CONVERSATION_DELETED, conversation_id, success)

    async def notify_ingestion_progress(self, progress) -> None:
        await self._sender.send(INGESTION_PROGRESS, asdict(progress))

    async def notify_ingestion_complete(self, summary: str) -> None:
        await self._sender.send(INGESTION_COMPLETE, summary)
