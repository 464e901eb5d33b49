"""
System prompts for the school AI assistant.
"""
from datetime import date
from typing import Optional

from campus_assistant.models.user import UserContext
from campus_assistant.services.role_profiles import RoleProfile

BASE_SYSTEM_PROMPT_TEMPLATE = """You are a helpful, friendly School AI Assistant for the School Management System.
You help users understand academic performance, study materials, and school information.
Always be encouraging and supportive. When discussing grades, provide constructive feedback.
When citing information from study materials, mention the source document and page number.
Use clear formatting with bullet points and headers when presenting data.
If you don't have enough information to answer accurately, say so rather than guessing.
Today's date is {today}.

{role_prompt}
"""


def _render_role_prompt(profile: RoleProfile, user_context: UserContext) -> str:
    values = {
        "full_name": user_context.full_name,
        "student_id": user_context.student_id if user_context.student_id is not None else "unknown",
        "employee_id": user_context.employee_id if user_context.employee_id is not None else "unknown",
        "campus_id": user_context.campus_id if user_context.campus_id is not None else "unknown",
    }
    try:
        return profile.prompt.format(**values)
    except (KeyError, IndexError, ValueError):
        # Profiles with stray braces are used verbatim
        return profile.prompt


def build_system_prompt(
    user_context: UserContext,
    profile: RoleProfile,
    today: Optional[date] = None,
) -> str:
    """
    Build the complete system prompt for the caller's role.

    Args:
        user_context: Caller resolved for this request
        profile: Role profile matching user_context.role
        today: Date mentioned in the prompt (defaults to today)

    Returns:
        Complete system prompt
    """
    today = today or date.today()
    return BASE_SYSTEM_PROMPT_TEMPLATE.format(
        today=today.strftime("%B %d, %Y"),
        role_prompt=_render_role_prompt(profile, user_context),
    ).strip()
