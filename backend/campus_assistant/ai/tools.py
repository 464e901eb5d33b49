"""
Tools for the school AI assistant.

These tools allow the agent to:
- Search indexed study materials (textbooks, syllabi, notes)
- Look up who it is talking to

Each tool records a thinking step on the deps so the client can show
what the assistant is doing while it works.
"""
import logging

from pydantic_ai import RunContext

from campus_assistant.ai.context import ChatDeps
from campus_assistant.services.document_index import DocumentIndexError
from campus_assistant.services.pocketbase import PocketbaseError

logger = logging.getLogger(__name__)


async def search_study_materials(ctx: RunContext[ChatDeps], query: str) -> list[dict]:
    """
    Search the school's indexed study materials for passages about a topic.

    Use this whenever the user asks about course content, textbooks,
    syllabus topics or anything that may be covered in uploaded materials.

    Args:
        query: Topic or question to look up, in plain words

    Returns:
        Matching passages with their source document, chapter and page
    """
    deps = ctx.deps
    deps.record_step(f"Searching study materials for \"{query}\"")

    try:
        chunks = await deps.document_index.search(query, limit=deps.max_search_results)
    except (DocumentIndexError, PocketbaseError) as e:
        logger.warning("Study material search failed: %s", e)
        return [{"error": "Study materials are not available right now."}]

    logger.info("Material search '%s' returned %d passages", query[:50], len(chunks))

    results = []
    for chunk in chunks:
        deps.cite(chunk.to_source())
        results.append(
            {
                "text": chunk.text,
                "file_name": chunk.file_name,
                "subject": chunk.subject_name,
                "chapter": chunk.chapter_name,
                "page_number": chunk.page_number,
            }
        )
    return results


async def describe_current_user(ctx: RunContext[ChatDeps]) -> dict:
    """
    Get the profile of the user you are talking to.

    Returns:
        Name, role and the student/employee/campus identifiers of the user
    """
    user = ctx.deps.user_context
    ctx.deps.record_step("Looking up your profile")
    return {
        "name": user.full_name,
        "role": user.role,
        "student_id": user.student_id,
        "employee_id": user.employee_id,
        "campus_id": user.campus_id,
    }


CHAT_TOOLS = [search_study_materials, describe_current_user]
