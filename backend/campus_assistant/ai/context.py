"""
Context structures for the chat agent.

ChatDeps - dependencies injected into PydanticAI RunContext. Tools record
what they did (tool log) and which materials they read (sources) so the
orchestrator can turn them into ThinkingStep and SourceCitation events.
"""
from dataclasses import dataclass, field

from campus_assistant.models.chat import SourceReference
from campus_assistant.models.user import UserContext
from campus_assistant.services.document_index import DocumentIndex


@dataclass
class ChatDeps:
    """Dependencies injected into PydanticAI agent via RunContext."""

    user_context: UserContext
    document_index: DocumentIndex
    max_search_results: int = 5
    tool_log: list[str] = field(default_factory=list)
    sources: list[SourceReference] = field(default_factory=list)

    def record_step(self, description: str) -> None:
        """Log a user-readable description of a tool invocation."""
        self.tool_log.append(description)

    def cite(self, source: SourceReference) -> None:
        self.sources.append(source)
