"""
Role profiles for the chat assistant.

Each role (Admin, Teacher, Student) has a prompt addendum describing what
the user may ask about, plus the suggested questions shown in the chat UI.
Profiles are loaded from YAML at startup (see config_loader).
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "default"


@dataclass(frozen=True)
class SuggestedQuestion:
    """Question shortcut shown in the chat UI."""

    text: str
    icon: str = "fas fa-question-circle"


@dataclass
class RoleProfile:
    """Prompt and UI configuration for one user role."""

    role: str
    prompt: str
    suggested_questions: list[SuggestedQuestion] = field(default_factory=list)


FALLBACK_PROFILE = RoleProfile(
    role=DEFAULT_PROFILE_NAME,
    prompt="You are helping a school staff member.",
)


class RoleProfileRegistry:
    """Registry of role profiles keyed by role name."""

    def __init__(self):
        self._profiles: dict[str, RoleProfile] = {}

    def register(self, profile: RoleProfile) -> None:
        self._profiles[profile.role] = profile
        logger.debug("Registered role profile: %s", profile.role)

    def get(self, role: str) -> RoleProfile:
        """Profile for the role, falling back to the default profile."""
        profile: Optional[RoleProfile] = self._profiles.get(role)
        if profile is None:
            profile = self._profiles.get(DEFAULT_PROFILE_NAME, FALLBACK_PROFILE)
        return profile

    def list_roles(self) -> list[str]:
        return list(self._profiles.keys())

    def clear(self) -> None:
        self._profiles.clear()


# Singleton instance
role_profiles = RoleProfileRegistry()
