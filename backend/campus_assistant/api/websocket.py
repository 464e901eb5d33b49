"""
WebSocket hub for real-time AI chat.

Endpoint: /hubs/ai-chat?access_token=<token>

Incoming frames:
- {"type": "SendMessage", "conversationId": int | null, "message": "..."}
- {"type": "GetConversations"}
- {"type": "LoadConversation", "conversationId": int}
- {"type": "DeleteConversation", "conversationId": int}
- {"type": "IngestDocuments"} - admins only

Outgoing frames are {"type": <name>, "args": [...]}:
- ConversationCreated, ThinkingStep, StreamStarted, ContentChunk,
  SourceCitation, StreamComplete, Error - chat stream events
- ConversationsList, ConversationMessages, ConversationDeleted
- IngestionProgress, IngestionComplete
"""
import asyncio
import json
import logging
from typing import Literal, Optional, Union

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from campus_assistant.api.dependencies import get_ingestion_service, get_orchestrator, get_user_directory
from campus_assistant.services.connection_manager import WebSocketSender, manager
from campus_assistant.services.ingestion import IngestionService
from campus_assistant.services.relay import ConnectionRelay
from campus_assistant.services.streaming import ChatOrchestrator
from campus_assistant.services.streaming.notifier import ERROR
from campus_assistant.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

router = APIRouter()


class HubRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(HubRequest):
    type: Literal["SendMessage"]
    conversation_id: Optional[int] = Field(default=None, alias="conversationId")
    message: Optional[str] = None


class GetConversationsRequest(HubRequest):
    type: Literal["GetConversations"]


class LoadConversationRequest(HubRequest):
    type: Literal["LoadConversation"]
    conversation_id: int = Field(alias="conversationId")


class DeleteConversationRequest(HubRequest):
    type: Literal["DeleteConversation"]
    conversation_id: int = Field(alias="conversationId")


class IngestDocumentsRequest(HubRequest):
    type: Literal["IngestDocuments"]


InboundRequest = Union[
    SendMessageRequest,
    GetConversationsRequest,
    LoadConversationRequest,
    DeleteConversationRequest,
    IngestDocumentsRequest,
]

INBOUND_REQUESTS: dict[str, type[HubRequest]] = {
    "SendMessage": SendMessageRequest,
    "GetConversations": GetConversationsRequest,
    "LoadConversation": LoadConversationRequest,
    "DeleteConversation": DeleteConversationRequest,
    "IngestDocuments": IngestDocumentsRequest,
}


async def parse_request(raw_data: str, sender: WebSocketSender) -> Optional[InboundRequest]:
    """Parse one inbound frame, answering malformed ones with an Error frame."""
    try:
        data = json.loads(raw_data)
    except json.JSONDecodeError:
        await sender.send(ERROR, "Invalid JSON format")
        return None

    msg_type = data.get("type") if isinstance(data, dict) else None
    request_model = INBOUND_REQUESTS.get(msg_type) if isinstance(msg_type, str) else None
    if request_model is None:
        await sender.send(ERROR, f"Unknown message type: {msg_type}")
        return None

    try:
        return request_model.model_validate(data)
    except ValidationError as e:
        logger.debug("Invalid %s request: %s", msg_type, e)
        await sender.send(ERROR, f"Invalid {msg_type} request")
        return None


async def invoke(relay: ConnectionRelay, request: InboundRequest) -> None:
    """Run one hub operation; failures are logged, never raised into the receive loop."""
    try:
        if isinstance(request, SendMessageRequest):
            await relay.handle_send_message(request.conversation_id, request.message)
        elif isinstance(request, GetConversationsRequest):
            await relay.handle_get_conversations()
        elif isinstance(request, LoadConversationRequest):
            await relay.handle_load_conversation(request.conversation_id)
        elif isinstance(request, DeleteConversationRequest):
            await relay.handle_delete_conversation(request.conversation_id)
        elif isinstance(request, IngestDocumentsRequest):
            await relay.handle_ingest_documents()
    except Exception:
        logger.exception("Hub operation %s failed", request.type)


@router.websocket("/hubs/ai-chat")
async def ai_chat_hub(
    websocket: WebSocket,
    access_token: Optional[str] = Query(default=None),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    ingestion: IngestionService = Depends(get_ingestion_service),
    directory: UserDirectory = Depends(get_user_directory),
):
    """
    Hub connection loop.

    Every inbound operation runs as its own task so the loop keeps reading
    and notices a disconnect while a response is streaming. On disconnect
    all tasks of the connection are cancelled and awaited.
    """
    if not access_token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    sender = await manager.connect(websocket)
    relay = ConnectionRelay(access_token, sender, orchestrator, ingestion, directory)
    tasks: set[asyncio.Task] = set()

    try:
        while True:
            raw_data = await websocket.receive_text()
            request = await parse_request(raw_data, sender)
            if request is None:
                continue

            task = asyncio.create_task(invoke(relay, request), name=f"hub-{request.type}")
            tasks.add(task)
            task.add_done_callback(tasks.discard)

    except WebSocketDisconnect:
        logger.info("Hub connection closed with %d operations in flight", len(tasks))

    finally:
        pending = list(tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        manager.disconnect(websocket)
