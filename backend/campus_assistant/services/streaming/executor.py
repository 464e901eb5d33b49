"""
Chat Executor.

Executes LLM streaming using the PydanticAI chat agent.
Single Responsibility: Only handles LLM execution, not event sequencing
or persistence.
"""
import logging
from typing import AsyncIterator, Optional, Sequence, Union

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from campus_assistant.ai.agent import create_chat_agent
from campus_assistant.ai.context import ChatDeps
from campus_assistant.ai.prompts import build_system_prompt
from campus_assistant.config import settings
from campus_assistant.models.chat import ChatRole
from campus_assistant.services.document_index import DocumentIndex, document_index
from campus_assistant.services.role_profiles import RoleProfileRegistry, role_profiles

from .types import ChatRequest, Citation, GenerationError, GenerationUpdate, TextDelta, ToolStep

logger = logging.getLogger(__name__)

ModelSpec = Union[str, Model]


class ChatExecutor:
    """
    Executes streaming LLM calls.

    Uses PydanticAI's run_stream() for real-time token streaming and turns
    the agent's tool log and citations into generation updates.

    Models are tried in order; the next one is used only if the current one
    fails before yielding anything, since text already sent to the client
    cannot be taken back.
    """

    def __init__(
        self,
        index: DocumentIndex,
        models: Optional[Sequence[ModelSpec]] = None,
        profiles: RoleProfileRegistry = role_profiles,
        agent: Optional[Agent] = None,
    ):
        self._index = index
        self._models = list(models) if models else None
        self._profiles = profiles
        self._agent = agent

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = create_chat_agent()
        return self._agent

    @property
    def models(self) -> list[ModelSpec]:
        return self._models or settings.get_llm_models()

    def build_message_history(self, request: ChatRequest) -> list[ModelMessage]:
        """System prompt followed by the persisted user/assistant turns."""
        profile = self._profiles.get(request.user_context.role)
        history: list[ModelMessage] = [
            ModelRequest(parts=[SystemPromptPart(content=build_system_prompt(request.user_context, profile))])
        ]
        for message in request.history:
            if message.role == ChatRole.USER:
                history.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
            elif message.role == ChatRole.ASSISTANT:
                history.append(ModelResponse(parts=[TextPart(content=message.content)]))
        return history

    async def execute(self, request: ChatRequest) -> AsyncIterator[GenerationUpdate]:
        """
        Execute a streaming LLM call with model fallback.

        Yields ToolStep, TextDelta and Citation updates in the order they
        become known.
        """
        last_error: Optional[Exception] = None

        for model in self.models:
            produced = False
            try:
                async for update in self._execute_with_model(request, model):
                    produced = True
                    yield update
                return
            except Exception as e:
                if produced:
                    raise
                last_error = e
                logger.warning(
                    "Model %s failed for request %s, trying next: %s",
                    model,
                    request.request_id,
                    e,
                )

        raise GenerationError("All configured models failed") from last_error

    async def _execute_with_model(
        self,
        request: ChatRequest,
        model: ModelSpec,
    ) -> AsyncIterator[GenerationUpdate]:
        deps = ChatDeps(
            user_context=request.user_context,
            document_index=self._index,
            max_search_results=settings.max_search_results,
        )
        reported_steps = 0
        reported_sources = 0

        def drain() -> list[GenerationUpdate]:
            nonlocal reported_steps, reported_sources
            updates: list[GenerationUpdate] = [ToolStep(step) for step in deps.tool_log[reported_steps:]]
            updates.extend(Citation(source) for source in deps.sources[reported_sources:])
            reported_steps = len(deps.tool_log)
            reported_sources = len(deps.sources)
            return updates

        logger.info("Starting stream for request %s with model %s", request.request_id, model)

        async with self.agent.run_stream(
            request.message,
            deps=deps,
            model=model,
            message_history=self.build_message_history(request),
            model_settings={
                "temperature": settings.llm_temperature,
                "max_tokens": settings.llm_max_tokens,
            },
        ) as result:
            # Tool calls run before the final text response starts streaming
            for update in drain():
                yield update

            async for delta in result.stream_text(delta=True):
                if delta:
                    yield TextDelta(delta)
                for update in drain():
                    yield update

        for update in drain():
            yield update

        logger.info("Stream completed for request %s", request.request_id)


# Singleton instance
chat_executor = ChatExecutor(document_index)
