"""
Chat Orchestrator.

Coordinates one streamed assistant turn: conversation lookup/creation,
turn persistence and the ordering of chat events on an EventChannel.
Single Responsibility: sequencing only, generation is delegated to the
executor and delivery to whoever reads the channel.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from campus_assistant.config import settings
from campus_assistant.models.chat import (
    ChatMessage,
    ChatRole,
    ConversationRecord,
    ConversationSummary,
    derive_title,
)
from campus_assistant.models.user import UserContext
from campus_assistant.services.conversation import ConversationStore, conversation_store

from .channel import EventChannel
from .executor import chat_executor
from .types import (
    ChatEvent,
    ChatRequest,
    Citation,
    GenerationError,
    GenerationUpdate,
    StreamState,
    TextDelta,
    ToolStep,
)

logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "An error occurred while generating the response. Please try again."


class UpdateExecutor(Protocol):
    """Anything that turns a ChatRequest into generation updates."""

    def execute(self, request: ChatRequest) -> AsyncIterator[GenerationUpdate]: ...


@dataclass
class ChatStream:
    """
    Handle on one streamed response.

    reader yields ChatEvents until the producer closes it; cancel() is the
    cancellation token for the background producer.
    """

    request_id: str
    reader: EventChannel
    task: asyncio.Task

    def cancel(self) -> bool:
        return self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task.done()


class ChatOrchestrator:
    """
    Produces chat event streams and answers conversation queries.

    Workflow for stream_chat():
    1. Resolve or create the conversation (ConversationCreated)
    2. Persist the user message
    3. Relay executor updates as ThinkingStep / StreamStarted /
       ContentChunk / SourceCitation
    4. Persist the assistant turn (StreamComplete) or report Error
    5. Close the channel
    """

    def __init__(
        self,
        store: ConversationStore,
        executor: UpdateExecutor,
        channel_capacity: Optional[int] = None,
    ):
        self._store = store
        self._executor = executor
        self._channel_capacity = (
            settings.event_channel_capacity if channel_capacity is None else channel_capacity
        )
        self._active_streams: dict[str, asyncio.Task] = {}

    # ==================== Streaming ====================

    def stream_chat(
        self,
        message: str,
        conversation_id: Optional[int],
        user_context: UserContext,
    ) -> ChatStream:
        """
        Start producing events for one assistant turn.

        Non-blocking - returns immediately after scheduling the producer.
        The caller must have rejected empty messages already.
        """
        request_id = uuid.uuid4().hex
        channel: EventChannel[ChatEvent] = EventChannel(self._channel_capacity)

        task = asyncio.create_task(
            self._produce(channel, request_id, message, conversation_id, user_context),
            name=f"chat-stream-{request_id}",
        )
        self._active_streams[request_id] = task
        logger.info("Started chat stream %s for user %s", request_id, user_context.user_id)
        return ChatStream(request_id=request_id, reader=channel, task=task)

    def cancel_stream(self, request_id: str) -> bool:
        """
        Cancel an active stream.

        Returns True if stream was cancelled, False if not found.
        """
        task = self._active_streams.get(request_id)
        if task and not task.done():
            task.cancel()
            logger.info("Cancelled chat stream: %s", request_id)
            return True
        return False

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active_streams

    @property
    def active_count(self) -> int:
        """Number of currently active streams."""
        return len(self._active_streams)

    async def shutdown(self) -> None:
        """Cancel every active stream and wait for the producers to exit."""
        tasks = list(self._active_streams.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        logger.info("Chat orchestrator stopped %d streams", len(tasks))

    async def _produce(
        self,
        channel: EventChannel,
        request_id: str,
        message: str,
        conversation_id: Optional[int],
        user_context: UserContext,
    ) -> None:
        state = StreamState(request_id=request_id)
        try:
            conversation, created = await self._open_conversation(conversation_id, user_context, message)
            if created:
                await channel.write(ChatEvent.conversation_created(conversation.id))

            history = await self._store.get_messages(conversation.id)
            await self._store.append_message(conversation.id, ChatRole.USER, message)

            request = ChatRequest(
                request_id=request_id,
                message=message,
                conversation=conversation,
                user_context=user_context,
                history=tuple(history),
            )

            async for update in self._executor.execute(request):
                await self._relay_update(channel, state, update)

            if not state.started:
                raise GenerationError("The model returned an empty response")

            for source in state.take_pending_citations():
                await channel.write(ChatEvent.source_citation(source))

            message_id = await self._store.append_message(
                conversation.id,
                ChatRole.ASSISTANT,
                state.accumulated_content,
                sources=state.sources or None,
            )
            await channel.write(ChatEvent.stream_complete(message_id))
            logger.info(
                "Chat stream %s completed: %d chunks, %d sources",
                request_id,
                state.chunk_count,
                len(state.sources),
            )

        except asyncio.CancelledError:
            # No terminal event for a cancelled stream.
            logger.info("Chat stream %s cancelled", request_id)
            raise

        except Exception as e:
            logger.exception("Chat stream %s failed: %s", request_id, e)
            state.error = str(e)
            await channel.write(ChatEvent.error(GENERATION_FAILED_MESSAGE))

        finally:
            channel.close()
            self._active_streams.pop(request_id, None)

    async def _relay_update(
        self,
        channel: EventChannel,
        state: StreamState,
        update: GenerationUpdate,
    ) -> None:
        """Translate one generation update into events, keeping the grammar."""
        if isinstance(update, ToolStep):
            if state.started:
                logger.debug("Tool step after stream start not relayed: %s", update.description)
                return
            await channel.write(ChatEvent.thinking_step(update.description))

        elif isinstance(update, TextDelta):
            if not update.text:
                return
            if not state.started:
                state.started = True
                await channel.write(ChatEvent.stream_started())
            state.append(update.text)
            await channel.write(ChatEvent.content_chunk(update.text))
            for source in state.take_pending_citations():
                await channel.write(ChatEvent.source_citation(source))

        elif isinstance(update, Citation):
            if not state.add_source(update.source):
                return
            if state.started and state.chunk_count:
                await channel.write(ChatEvent.source_citation(update.source))
            else:
                state.pending_citations.append(update.source)

    async def _open_conversation(
        self,
        conversation_id: Optional[int],
        user_context: UserContext,
        message: str,
    ) -> tuple[ConversationRecord, bool]:
        """
        Load the caller's conversation or create a new one.

        Returns (conversation, created). A missing, inactive or foreign
        conversation id starts a new conversation instead.
        """
        if conversation_id is not None:
            conversation = await self._store.get_conversation(conversation_id)
            if conversation is not None and conversation.is_owned_by(user_context.user_id):
                return conversation, False
            logger.warning(
                "Conversation %s not available to user %s, starting a new one",
                conversation_id,
                user_context.user_id,
            )

        new_id = await self._store.create_conversation(
            user_context.user_id,
            campus_id=user_context.campus_id,
            title=derive_title(message),
        )
        conversation = await self._store.get_conversation(new_id)
        if conversation is None:
            raise RuntimeError(f"Conversation {new_id} missing right after creation")
        return conversation, True

    # ==================== Queries ====================

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        """Active conversations of the user, most recent first."""
        return await self._store.list_conversations(user_id)

    async def get_messages(self, conversation_id: int, requesting_user_id: str) -> list[ChatMessage]:
        """
        User and assistant turns of a conversation, oldest first.

        Returns an empty list when the requester does not own the
        conversation.
        """
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None or not conversation.is_owned_by(requesting_user_id):
            logger.warning(
                "User %s denied access to conversation %s",
                requesting_user_id,
                conversation_id,
            )
            return []

        messages = await self._store.get_messages(conversation_id)
        return [message for message in messages if message.role != ChatRole.TOOL]

    async def delete_conversation(self, conversation_id: int, requesting_user_id: str) -> bool:
        """Soft-delete a conversation; False if missing or not owned."""
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None or not conversation.is_owned_by(requesting_user_id):
            return False

        deleted = await self._store.delete_conversation(conversation_id)
        if deleted:
            logger.info("User %s deleted conversation %s", requesting_user_id, conversation_id)
        return deleted


# Singleton instance
chat_orchestrator = ChatOrchestrator(conversation_store, chat_executor)
