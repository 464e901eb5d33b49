"""
PydanticAI Agent definition for the school AI assistant.

The agent is created without a model: the stream executor picks the model
per run so it can fall back through the configured list. The system prompt
is role-specific and travels at the head of the message history.
"""
import logging

from pydantic_ai import Agent

from campus_assistant.ai.context import ChatDeps
from campus_assistant.ai import tools

logger = logging.getLogger(__name__)


def create_chat_agent() -> Agent[ChatDeps, str]:
    """
    Create and configure the PydanticAI chat agent.

    Returns:
        Configured Agent instance (model supplied at run time)
    """
    agent: Agent[ChatDeps, str] = Agent(deps_type=ChatDeps)

    for tool in tools.CHAT_TOOLS:
        agent.tool(tool)

    logger.info("Chat agent created with %d tools", len(tools.CHAT_TOOLS))
    return agent
