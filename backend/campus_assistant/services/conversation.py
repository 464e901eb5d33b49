"""
Conversation persistence for the AI chat assistant.

The streaming core talks to a ConversationStore; the production store keeps
conversations and messages in Pocketbase, the in-memory one backs tests
and local development.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from campus_assistant.models.chat import (
    ChatMessage,
    ChatRole,
    ConversationRecord,
    ConversationSummary,
    DEFAULT_CONVERSATION_TITLE,
    SourceReference,
)
from campus_assistant.services.pocketbase import (
    PocketbaseService,
    new_record_id,
    pocketbase,
    quote_filter_value,
)

logger = logging.getLogger(__name__)

CONVERSATIONS_COLLECTION = "ai_conversations"
MESSAGES_COLLECTION = "ai_messages"


class ConversationStore(Protocol):
    """Persistence operations consumed by the chat orchestrator."""

    async def create_conversation(
        self,
        user_id: str,
        campus_id: Optional[int] = None,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> int: ...

    async def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]: ...

    async def append_message(
        self,
        conversation_id: int,
        role: ChatRole,
        content: str,
        sources: Optional[list[SourceReference]] = None,
    ) -> int: ...

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]: ...

    async def get_messages(self, conversation_id: int) -> list[ChatMessage]: ...

    async def delete_conversation(self, conversation_id: int) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sort_most_recent_first(summaries: list[ConversationSummary]) -> list[ConversationSummary]:
    return sorted(
        summaries,
        key=lambda s: s.last_message_at or s.created_at,
        reverse=True,
    )


class InMemoryConversationStore:
    """Conversation store kept in process memory."""

    def __init__(self):
        self._conversations: dict[int, ConversationRecord] = {}
        self._messages: dict[int, list[ChatMessage]] = {}
        self._next_conversation_id = 1
        self._next_message_id = 1

    async def create_conversation(
        self,
        user_id: str,
        campus_id: Optional[int] = None,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> int:
        conversation_id = self._next_conversation_id
        self._next_conversation_id += 1
        self._conversations[conversation_id] = ConversationRecord(
            id=conversation_id,
            user_id=user_id,
            title=title,
            campus_id=campus_id,
            created_at=_utcnow(),
        )
        self._messages[conversation_id] = []
        return conversation_id

    async def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]:
        return self._conversations.get(conversation_id)

    async def append_message(
        self,
        conversation_id: int,
        role: ChatRole,
        content: str,
        sources: Optional[list[SourceReference]] = None,
    ) -> int:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation {conversation_id} not found")

        message_id = self._next_message_id
        self._next_message_id += 1
        now = _utcnow()
        self._messages[conversation_id].append(
            ChatMessage(
                id=message_id,
                conversation_id=conversation_id,
                role=role,
                content=content,
                sources=list(sources or []),
                timestamp=now,
            )
        )
        self._conversations[conversation_id] = conversation.model_copy(
            update={"last_message_at": now}
        )
        return message_id

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        summaries = [
            ConversationSummary(
                id=record.id,
                title=record.title,
                created_at=record.created_at,
                last_message_at=record.last_message_at,
                message_count=len(self._messages.get(record.id, [])),
            )
            for record in self._conversations.values()
            if record.user_id == user_id and record.is_active
        ]
        return _sort_most_recent_first(summaries)

    async def get_messages(self, conversation_id: int) -> list[ChatMessage]:
        return sorted(self._messages.get(conversation_id, []), key=lambda m: (m.timestamp, m.id))

    async def delete_conversation(self, conversation_id: int) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or not conversation.is_active:
            return False
        self._conversations[conversation_id] = conversation.model_copy(update={"is_active": False})
        return True


class PocketbaseConversationStore:
    """Conversation store backed by Pocketbase collections."""

    def __init__(self, client: PocketbaseService):
        self._client = client

    async def create_conversation(
        self,
        user_id: str,
        campus_id: Optional[int] = None,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> int:
        record = await self._client.create_record(
            CONVERSATIONS_COLLECTION,
            {
                "id": new_record_id(),
                "user_id": user_id,
                "title": title,
                "campus_id": campus_id,
                "is_active": True,
            },
        )
        logger.info("Created conversation %s for user %s", record["id"], user_id)
        return int(record["id"])

    async def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]:
        record = await self._client.find_record(CONVERSATIONS_COLLECTION, self._record_id(conversation_id))
        return self._to_conversation(record) if record else None

    async def append_message(
        self,
        conversation_id: int,
        role: ChatRole,
        content: str,
        sources: Optional[list[SourceReference]] = None,
    ) -> int:
        now = _utcnow().isoformat()
        record = await self._client.create_record(
            MESSAGES_COLLECTION,
            {
                "id": new_record_id(),
                "conversation_id": self._record_id(conversation_id),
                "role": role.value,
                "content": content,
                "sources": [source.model_dump() for source in sources] if sources else None,
                "timestamp": now,
            },
        )
        await self._client.update_record(
            CONVERSATIONS_COLLECTION,
            self._record_id(conversation_id),
            {"last_message_at": now},
        )
        return int(record["id"])

    async def list_conversations(self, user_id: str) -> list[ConversationSummary]:
        summaries = []
        async for record in self._client.iter_records(
            CONVERSATIONS_COLLECTION,
            filter=f"user_id = {quote_filter_value(user_id)} && is_active = true",
        ):
            conversation = self._to_conversation(record)
            message_count = await self._client.count_records(
                MESSAGES_COLLECTION,
                filter=f"conversation_id = {quote_filter_value(record['id'])}",
            )
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    title=conversation.title,
                    created_at=conversation.created_at,
                    last_message_at=conversation.last_message_at,
                    message_count=message_count,
                )
            )
        return _sort_most_recent_first(summaries)

    async def get_messages(self, conversation_id: int) -> list[ChatMessage]:
        return [
            self._to_message(record)
            async for record in self._client.iter_records(
                MESSAGES_COLLECTION,
                filter=f"conversation_id = {quote_filter_value(self._record_id(conversation_id))}",
                sort="timestamp,id",
            )
        ]

    async def delete_conversation(self, conversation_id: int) -> bool:
        record = await self._client.find_record(CONVERSATIONS_COLLECTION, self._record_id(conversation_id))
        if not record or not record.get("is_active"):
            return False
        await self._client.update_record(
            CONVERSATIONS_COLLECTION,
            record["id"],
            {"is_active": False},
        )
        return True

    # ==================== Mapping ====================

    @staticmethod
    def _record_id(conversation_id: int) -> str:
        return f"{conversation_id:015d}"

    @staticmethod
    def _parse_time(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        # Pocketbase formats dates as "2024-01-01 10:00:00.123Z"
        return datetime.fromisoformat(value.replace(" ", "T").replace("Z", "+00:00"))

    def _to_conversation(self, record: dict) -> ConversationRecord:
        return ConversationRecord(
            id=int(record["id"]),
            user_id=record.get("user_id", ""),
            title=record.get("title") or DEFAULT_CONVERSATION_TITLE,
            campus_id=record.get("campus_id") or None,
            created_at=self._parse_time(record.get("created")) or _utcnow(),
            last_message_at=self._parse_time(record.get("last_message_at")),
            is_active=bool(record.get("is_active", True)),
        )

    def _to_message(self, record: dict) -> ChatMessage:
        sources = record.get("sources") or []
        if isinstance(sources, str):
            sources = json.loads(sources)
        return ChatMessage(
            id=int(record["id"]),
            conversation_id=int(record["conversation_id"]),
            role=ChatRole(record.get("role", ChatRole.USER.value)),
            content=record.get("content", ""),
            sources=[SourceReference(**source) for source in sources],
            timestamp=self._parse_time(record.get("timestamp")) or _utcnow(),
        )


# Singleton instance
conversation_store = PocketbaseConversationStore(pocketbase)
