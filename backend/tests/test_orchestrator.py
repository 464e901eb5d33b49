"""
Tests for ChatOrchestrator.

Covers:
- Event sequencing (ConversationCreated, ThinkingStep, StreamStarted,
  ContentChunk, SourceCitation, StreamComplete)
- Turn persistence
- Failure and cancellation paths
- Conversation queries and ownership checks
"""
import asyncio
import json

import pytest

from campus_assistant.models.chat import ChatRole, SourceReference
from campus_assistant.models.user import UserContext
from campus_assistant.services.streaming import (
    ChatEventType,
    ChatOrchestrator,
    Citation,
    TextDelta,
    ToolStep,
)
from campus_assistant.services.streaming.orchestrator import GENERATION_FAILED_MESSAGE
from conftest import ScriptedExecutor

STUDENT = UserContext(user_id="user-student", full_name="Sam Student", role="Student", roles=("Student",), campus_id=3)
OTHER = UserContext(user_id="user-other", full_name="Olga Other", role="Student", roles=("Student",))

ALGEBRA = SourceReference(
    file_name="algebra.pdf",
    file_path="Math/Algebra/algebra.pdf",
    page_number=4,
    chapter_name="Algebra",
    subject_name="Math",
)


async def collect(stream) -> list:
    events = [event async for event in stream.reader]
    await stream.task
    return events


def types_of(events) -> list[ChatEventType]:
    return [event.type for event in events]


class TestStreamChat:
    """Tests for the happy path of stream_chat."""

    @pytest.mark.asyncio
    async def test_new_conversation_event_sequence(self, store):
        """Test a full stream for a new conversation."""
        executor = ScriptedExecutor([
            ToolStep("Searching study materials for \"fractions\""),
            TextDelta("Fractions "),
            TextDelta("are "),
            TextDelta("parts."),
            Citation(ALGEBRA),
        ])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("What are fractions?", None, STUDENT))

        assert types_of(events) == [
            ChatEventType.CONVERSATION_CREATED,
            ChatEventType.THINKING_STEP,
            ChatEventType.STREAM_STARTED,
            ChatEventType.CONTENT_CHUNK,
            ChatEventType.CONTENT_CHUNK,
            ChatEventType.CONTENT_CHUNK,
            ChatEventType.SOURCE_CITATION,
            ChatEventType.STREAM_COMPLETE,
        ]
        assert json.loads(events[6].payload)["fileName"] == "algebra.pdf"

    @pytest.mark.asyncio
    async def test_turns_are_persisted(self, store):
        """Test user and assistant turns are stored with sources."""
        executor = ScriptedExecutor([TextDelta("Hello "), TextDelta("Sam."), Citation(ALGEBRA)])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Hi there", None, STUDENT))
        conversation_id = int(events[0].payload)
        message_id = int(events[-1].payload)

        messages = await store.get_messages(conversation_id)
        assert [m.role for m in messages] == [ChatRole.USER, ChatRole.ASSISTANT]
        assert messages[0].content == "Hi there"
        assert messages[1].id == message_id
        assert messages[1].content == "Hello Sam."
        assert messages[1].sources == [ALGEBRA]

        conversation = await store.get_conversation(conversation_id)
        assert conversation.user_id == STUDENT.user_id
        assert conversation.campus_id == 3
        assert conversation.title == "Hi there"

    @pytest.mark.asyncio
    async def test_existing_conversation_not_recreated(self, store):
        """Test continuing an owned conversation emits no ConversationCreated."""
        conversation_id = await store.create_conversation(STUDENT.user_id)
        await store.append_message(conversation_id, ChatRole.USER, "Earlier question")
        await store.append_message(conversation_id, ChatRole.ASSISTANT, "Earlier answer")

        executor = ScriptedExecutor([TextDelta("Again.")])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Follow-up", conversation_id, STUDENT))

        assert types_of(events) == [
            ChatEventType.STREAM_STARTED,
            ChatEventType.CONTENT_CHUNK,
            ChatEventType.STREAM_COMPLETE,
        ]
        # History excludes the message being answered
        request = executor.requests[0]
        assert [m.content for m in request.history] == ["Earlier question", "Earlier answer"]

    @pytest.mark.asyncio
    async def test_foreign_conversation_starts_new_one(self, store):
        """Test another user's conversation id is not continued."""
        foreign_id = await store.create_conversation(OTHER.user_id)
        orchestrator = ChatOrchestrator(store, ScriptedExecutor([TextDelta("Hi")]))

        events = await collect(orchestrator.stream_chat("Hello", foreign_id, STUDENT))

        assert events[0].type == ChatEventType.CONVERSATION_CREATED
        assert int(events[0].payload) != foreign_id
        assert await store.get_messages(foreign_id) == []

    @pytest.mark.asyncio
    async def test_citation_before_text_is_held_back(self, store):
        """Test citations known before the first chunk follow that chunk."""
        executor = ScriptedExecutor([
            ToolStep("Searching study materials"),
            Citation(ALGEBRA),
            TextDelta("Answer"),
        ])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        assert types_of(events)[1:] == [
            ChatEventType.THINKING_STEP,
            ChatEventType.STREAM_STARTED,
            ChatEventType.CONTENT_CHUNK,
            ChatEventType.SOURCE_CITATION,
            ChatEventType.STREAM_COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_citations_are_dropped(self, store):
        """Test the same file and page is cited once."""
        executor = ScriptedExecutor([TextDelta("A"), Citation(ALGEBRA), Citation(ALGEBRA)])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        assert types_of(events).count(ChatEventType.SOURCE_CITATION) == 1

    @pytest.mark.asyncio
    async def test_thinking_step_after_start_not_relayed(self, store):
        """Test no ThinkingStep appears once text streaming began."""
        executor = ScriptedExecutor([TextDelta("A"), ToolStep("Late step"), TextDelta("B")])
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        assert ChatEventType.THINKING_STEP not in types_of(events)
        assert [e.payload for e in events if e.type == ChatEventType.CONTENT_CHUNK] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_active_stream_tracking(self, store):
        """Test a stream is tracked until its producer exits."""
        orchestrator = ChatOrchestrator(store, ScriptedExecutor([TextDelta("Hi")]))

        stream = orchestrator.stream_chat("Hello", None, STUDENT)
        assert orchestrator.is_active(stream.request_id)

        await collect(stream)
        assert orchestrator.active_count == 0
        assert stream.done


class TestStreamFailures:
    """Tests for error and cancellation handling."""

    @pytest.mark.asyncio
    async def test_generation_error_emits_single_error(self, store):
        """Test a failing executor yields one Error and no StreamComplete."""
        executor = ScriptedExecutor(fail_with=RuntimeError("provider exploded"))
        orchestrator = ChatOrchestrator(store, executor)

        stream = orchestrator.stream_chat("Question", None, STUDENT)
        events = await collect(stream)

        assert types_of(events) == [ChatEventType.CONVERSATION_CREATED, ChatEventType.ERROR]
        assert events[-1].payload == GENERATION_FAILED_MESSAGE
        assert "exploded" not in events[-1].payload
        assert stream.reader.closed

    @pytest.mark.asyncio
    async def test_failure_mid_stream(self, store):
        """Test an error after some chunks still ends with Error only."""
        executor = ScriptedExecutor([TextDelta("Partial")], fail_with=RuntimeError("cut off"))
        orchestrator = ChatOrchestrator(store, executor)

        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        assert events[-1].type == ChatEventType.ERROR
        assert ChatEventType.STREAM_COMPLETE not in types_of(events)

    @pytest.mark.asyncio
    async def test_empty_generation_is_an_error(self, store):
        """Test a model that produced no text is reported as a failure."""
        orchestrator = ChatOrchestrator(store, ScriptedExecutor([]))

        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        assert events[-1].type == ChatEventType.ERROR
        assert ChatEventType.STREAM_STARTED not in types_of(events)

    @pytest.mark.asyncio
    async def test_persistence_failure_is_an_error(self, store):
        """Test a store failure while saving the answer ends with Error."""
        orchestrator = ChatOrchestrator(store, ScriptedExecutor([TextDelta("Answer")]))
        original_append = store.append_message

        async def failing_append(conversation_id, role, content, sources=None):
            if role == ChatRole.ASSISTANT:
                raise ConnectionError("database down")
            return await original_append(conversation_id, role, content, sources)

        store.append_message = failing_append
        events = await collect(orchestrator.stream_chat("Question", None, STUDENT))

        terminal = [e for e in events if e.is_terminal]
        assert [e.type for e in terminal] == [ChatEventType.ERROR]

    @pytest.mark.asyncio
    async def test_cancel_stream_closes_channel_without_error(self, store):
        """Test cancellation stops production silently."""
        executor = ScriptedExecutor([TextDelta(str(i)) for i in range(50)], delay=0.01)
        orchestrator = ChatOrchestrator(store, executor)

        stream = orchestrator.stream_chat("Question", None, STUDENT)
        await asyncio.sleep(0.03)
        assert orchestrator.cancel_stream(stream.request_id) is True

        events = [event async for event in stream.reader]
        with pytest.raises(asyncio.CancelledError):
            await stream.task

        assert ChatEventType.ERROR not in types_of(events)
        assert ChatEventType.STREAM_COMPLETE not in types_of(events)
        assert stream.reader.closed
        assert orchestrator.active_count == 0
        assert orchestrator.cancel_stream(stream.request_id) is False

    @pytest.mark.asyncio
    async def test_shutdown_stops_all_streams(self, store):
        """Test shutdown cancels and awaits every producer."""
        executor = ScriptedExecutor([TextDelta("x")] * 100, delay=0.01)
        orchestrator = ChatOrchestrator(store, executor)

        streams = [orchestrator.stream_chat("Question", None, STUDENT) for _ in range(3)]
        await asyncio.sleep(0.02)
        await orchestrator.shutdown()

        assert all(stream.done for stream in streams)
        assert orchestrator.active_count == 0

    @pytest.mark.asyncio
    async def test_bounded_channel_delivers_everything(self, store):
        """Test a small channel capacity only slows the producer down."""
        executor = ScriptedExecutor([TextDelta(str(i)) for i in range(20)])
        orchestrator = ChatOrchestrator(store, executor, channel_capacity=1)

        events = await collect(orchestrator.stream_chat("Count", None, STUDENT))

        chunks = [e.payload for e in events if e.type == ChatEventType.CONTENT_CHUNK]
        assert chunks == [str(i) for i in range(20)]
        assert events[-1].type == ChatEventType.STREAM_COMPLETE


class TestConversationQueries:
    """Tests for list, load and delete with ownership checks."""

    @pytest.mark.asyncio
    async def test_list_conversations_most_recent_first(self, store):
        """Test the listing is ordered by latest activity."""
        first = await store.create_conversation(STUDENT.user_id, title="First")
        second = await store.create_conversation(STUDENT.user_id, title="Second")
        await store.create_conversation(OTHER.user_id, title="Not mine")
        await store.append_message(first, ChatRole.USER, "bump")

        orchestrator = ChatOrchestrator(store, ScriptedExecutor())
        conversations = await orchestrator.list_conversations(STUDENT.user_id)

        assert [c.id for c in conversations] == [first, second]
        assert conversations[0].message_count == 1

    @pytest.mark.asyncio
    async def test_get_messages_requires_ownership(self, store):
        """Test another user's conversation reads as empty."""
        conversation_id = await store.create_conversation(STUDENT.user_id)
        await store.append_message(conversation_id, ChatRole.USER, "Private")

        orchestrator = ChatOrchestrator(store, ScriptedExecutor())

        assert await orchestrator.get_messages(conversation_id, OTHER.user_id) == []
        own = await orchestrator.get_messages(conversation_id, STUDENT.user_id)
        assert [m.content for m in own] == ["Private"]

    @pytest.mark.asyncio
    async def test_get_messages_hides_tool_turns(self, store):
        """Test only user and assistant turns are returned."""
        conversation_id = await store.create_conversation(STUDENT.user_id)
        await store.append_message(conversation_id, ChatRole.USER, "Q")
        await store.append_message(conversation_id, ChatRole.TOOL, "raw tool output")
        await store.append_message(conversation_id, ChatRole.ASSISTANT, "A")

        orchestrator = ChatOrchestrator(store, ScriptedExecutor())
        messages = await orchestrator.get_messages(conversation_id, STUDENT.user_id)

        assert [m.content for m in messages] == ["Q", "A"]

    @pytest.mark.asyncio
    async def test_delete_not_owned_leaves_record(self, store):
        """Test deleting someone else's conversation fails without side effects."""
        conversation_id = await store.create_conversation(OTHER.user_id)
        orchestrator = ChatOrchestrator(store, ScriptedExecutor())

        assert await orchestrator.delete_conversation(conversation_id, STUDENT.user_id) is False
        record = await store.get_conversation(conversation_id)
        assert record.is_active is True

    @pytest.mark.asyncio
    async def test_delete_missing_conversation(self, store):
        """Test deleting an unknown id returns False."""
        orchestrator = ChatOrchestrator(store, ScriptedExecutor())
        assert await orchestrator.delete_conversation(999, STUDENT.user_id) is False

    @pytest.mark.asyncio
    async def test_delete_owned_conversation(self, store):
        """Test a deleted conversation disappears from the listing."""
        conversation_id = await store.create_conversation(STUDENT.user_id)
        orchestrator = ChatOrchestrator(store, ScriptedExecutor())

        assert await orchestrator.delete_conversation(conversation_id, STUDENT.user_id) is True
        assert await orchestrator.list_conversations(STUDENT.user_id) == []
        assert await orchestrator.delete_conversation(conversation_id, STUDENT.user_id) is False
