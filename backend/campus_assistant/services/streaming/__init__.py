"""
Streaming Services Module.

Provides infrastructure for real-time chat streaming.

Architecture:
- EventChannel: FIFO between producer and consumer with close-then-drain EOF
- ChatExecutor: Handles LLM streaming via PydanticAI
- ChatOrchestrator: Sequences chat events and persists turns
- ChatEventNotifier: Maps events to outbound client messages

Usage:
    from campus_assistant.services.streaming import chat_orchestrator

    stream = chat_orchestrator.stream_chat(message, conversation_id, user_context)
    while await stream.reader.wait_to_read():
        ...
"""

from .types import (
    ChatEvent,
    ChatEventType,
    ChatRequest,
    Citation,
    GenerationError,
    GenerationUpdate,
    StreamState,
    TextDelta,
    ToolStep,
)
from .channel import ChannelClosedError, EventChannel
from .executor import ChatExecutor, chat_executor
from .notifier import ChatEventNotifier, ClientSender
from .orchestrator import ChatOrchestrator, ChatStream, chat_orchestrator

__all__ = [
    # Types
    "ChatEvent",
    "ChatEventType",
    "ChatRequest",
    "Citation",
    "GenerationError",
    "GenerationUpdate",
    "StreamState",
    "TextDelta",
    "ToolStep",
    # Channel
    "ChannelClosedError",
    "EventChannel",
    # Services
    "ChatExecutor",
    "ChatEventNotifier",
    "ChatOrchestrator",
    "ChatStream",
    "ClientSender",
    "chat_executor",
    "chat_orchestrator",
]
