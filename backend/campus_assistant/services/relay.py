"""
Connection Relay.

Serves the hub operations of one client connection: validates and
authenticates each call, drains chat event streams to the client and
forwards ingestion progress.

Uses python-statemachine to track the lifecycle of each SendMessage call.
"""
import asyncio
import logging
from typing import Optional

from statemachine import State, StateMachine

from campus_assistant.models.user import UserContext
from campus_assistant.services.ingestion import (
    IngestionError,
    IngestionInProgressError,
    IngestionProgress,
    IngestionService,
)
from campus_assistant.services.streaming import (
    ChatEventNotifier,
    ChatEventType,
    ChatOrchestrator,
    ChatStream,
    ClientSender,
    EventChannel,
)
from campus_assistant.services.user_directory import UserDirectory, resolve_user_context

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "Message cannot be empty."
STREAM_IN_PROGRESS = "Please wait for the current response to finish."
AUTHENTICATION_FAILED = "Authentication failed."
UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."
ADMIN_ONLY = "Only admins can trigger document ingestion."
INGESTION_RUNNING = "Document ingestion is already running."
INGESTION_FAILED = "Document ingestion failed."


class RelayStateMachine(StateMachine):
    """Lifecycle of one SendMessage invocation."""

    idle = State("Idle", initial=True)
    validating = State("Validating")
    streaming = State("Streaming")
    completed = State("Completed", final=True)
    failed = State("Failed", final=True)
    cancelled = State("Cancelled", final=True)

    begin_validation = idle.to(validating)
    begin_streaming = validating.to(streaming)
    finish = streaming.to(completed)
    fail = validating.to(failed) | streaming.to(failed)
    abort = validating.to(cancelled) | streaming.to(cancelled)

    @property
    def state_id(self) -> str:
        return self.current_state.id

    @property
    def is_terminal(self) -> bool:
        return self.current_state.final


class ConnectionRelay:
    """
    Hub operations for one connection.

    The principal (the token the client connected with) is resolved to a
    fresh UserContext on every call. Only one chat stream runs per
    connection; a SendMessage during an active stream is rejected.
    """

    def __init__(
        self,
        principal: Optional[str],
        sender: ClientSender,
        orchestrator: ChatOrchestrator,
        ingestion: IngestionService,
        directory: UserDirectory,
    ):
        self._principal = principal
        self._notifier = ChatEventNotifier(sender)
        self._orchestrator = orchestrator
        self._ingestion = ingestion
        self._directory = directory
        self._busy = False

    @property
    def is_streaming(self) -> bool:
        return self._busy

    async def _resolve_user(self) -> Optional[UserContext]:
        try:
            return await resolve_user_context(self._directory, self._principal)
        except Exception:
            logger.exception("User context resolution failed")
            return None

    async def _authenticate(self) -> Optional[UserContext]:
        """Resolve the caller or report the failure to the client."""
        user_context = await self._resolve_user()
        if user_context is None:
            logger.warning("Rejected hub call: identity could not be resolved")
            await self._notifier.notify_error(AUTHENTICATION_FAILED)
        return user_context

    # ==================== Chat ====================

    async def handle_send_message(self, conversation_id: Optional[int], message: Optional[str]) -> RelayStateMachine:
        """
        Stream one assistant response to the client.

        Returns the state machine of this invocation in its final state.
        Cancelling the calling task cancels the producer as well.
        """
        machine = RelayStateMachine()
        machine.begin_validation()

        if not message or not message.strip():
            machine.fail()
            await self._notifier.notify_error(EMPTY_MESSAGE)
            return machine

        if self._busy:
            machine.fail()
            await self._notifier.notify_error(STREAM_IN_PROGRESS)
            return machine

        self._busy = True
        stream: Optional[ChatStream] = None
        try:
            user_context = await self._resolve_user()
            if user_context is None:
                machine.fail()
                await self._notifier.notify_error(AUTHENTICATION_FAILED)
                return machine

            stream = self._orchestrator.stream_chat(message, conversation_id, user_context)
            machine.begin_streaming()

            if await self._relay_stream(stream):
                machine.fail()
            else:
                machine.finish()

        except asyncio.CancelledError:
            if not machine.is_terminal:
                machine.abort()
            if stream is not None:
                stream.cancel()
                await asyncio.wait({stream.task})
            logger.info("SendMessage cancelled by disconnect")
            raise

        except Exception:
            logger.exception("Unexpected error while relaying chat stream")
            if stream is not None:
                stream.cancel()
                await asyncio.wait({stream.task})
            if not machine.is_terminal:
                machine.fail()
            await self._notifier.notify_error(UNEXPECTED_ERROR)

        finally:
            self._busy = False

        return machine

    async def _relay_stream(self, stream: ChatStream) -> bool:
        """Dispatch events until the channel closes. True if an Error was relayed."""
        reader = stream.reader
        failed = False

        while await reader.wait_to_read():
            event = reader.try_read()
            while event is not None:
                await self._notifier.dispatch(event)
                if event.type == ChatEventType.ERROR:
                    failed = True
                event = reader.try_read()

        return failed

    # ==================== Conversations ====================

    async def handle_get_conversations(self) -> None:
        user_context = await self._authenticate()
        if user_context is None:
            return

        try:
            conversations = await self._orchestrator.list_conversations(user_context.user_id)
        except Exception:
            logger.exception("Failed to list conversations for %s", user_context.user_id)
            await self._notifier.notify_error(UNEXPECTED_ERROR)
            return
        await self._notifier.notify_conversations(conversations)

    async def handle_load_conversation(self, conversation_id: int) -> None:
        user_context = await self._authenticate()
        if user_context is None:
            return

        try:
            messages = await self._orchestrator.get_messages(conversation_id, user_context.user_id)
        except Exception:
            logger.exception("Failed to load conversation %s", conversation_id)
            await self._notifier.notify_error(UNEXPECTED_ERROR)
            return
        await self._notifier.notify_messages(conversation_id, messages)

    async def handle_delete_conversation(self, conversation_id: int) -> None:
        user_context = await self._authenticate()
        if user_context is None:
            return

        try:
            success = await self._orchestrator.delete_conversation(conversation_id, user_context.user_id)
        except Exception:
            logger.exception("Failed to delete conversation %s", conversation_id)
            success = False
        await self._notifier.notify_deleted(conversation_id, success)

    # ==================== Ingestion ====================

    async def handle_ingest_documents(self) -> None:
        """
        Run document ingestion for an admin and report its progress.

        Progress is buffered on an unbounded channel and forwarded by a
        separate task, so a slow client never holds up ingestion.
        """
        user_context = await self._authenticate()
        if user_context is None:
            return

        if not user_context.is_admin:
            logger.warning("User %s denied document ingestion", user_context.user_id)
            await self._notifier.notify_error(ADMIN_ONLY)
            return

        progress: EventChannel[IngestionProgress] = EventChannel()
        forwarder = asyncio.create_task(self._forward_progress(progress), name="ingestion-progress")
        logger.info("Document ingestion requested by %s", user_context.user_id)

        try:
            result = await self._ingestion.run_ingestion(progress.try_write)

        except IngestionInProgressError:
            await self._finish_progress(progress, forwarder)
            await self._notifier.notify_error(INGESTION_RUNNING)
            return

        except IngestionError as e:
            logger.error("Document ingestion aborted: %s", e.message)
            await self._finish_progress(progress, forwarder)
            await self._notifier.notify_error(INGESTION_FAILED)
            await self._notifier.notify_ingestion_complete(e.result.summary)
            return

        except asyncio.CancelledError:
            progress.close()
            forwarder.cancel()
            await asyncio.wait({forwarder})
            raise

        except Exception:
            logger.exception("Unexpected error during document ingestion")
            await self._finish_progress(progress, forwarder)
            await self._notifier.notify_error(UNEXPECTED_ERROR)
            return

        await self._finish_progress(progress, forwarder)
        await self._notifier.notify_ingestion_complete(result.summary)

    async def _forward_progress(self, progress: EventChannel[IngestionProgress]) -> None:
        async for item in progress:
            await self._notifier.notify_ingestion_progress(item)

    async def _finish_progress(self, progress: EventChannel, forwarder: asyncio.Task) -> None:
        """Close the progress channel and wait until everything was sent."""
        progress.close()
        try:
            await forwarder
        except Exception as e:
            logger.warning("Ingestion progress forwarding stopped: %s", e)
