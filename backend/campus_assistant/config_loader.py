"""
Configuration loader for role profiles.

Loads YAML configuration files at startup.
"""
import logging
from pathlib import Path

import yaml

from campus_assistant.services.role_profiles import (
    RoleProfile,
    RoleProfileRegistry,
    SuggestedQuestion,
    role_profiles,
)

logger = logging.getLogger(__name__)

# Default path relative to backend directory
ROLES_DIR = Path(__file__).parent.parent / "roles"


def parse_role_profile(data: dict) -> RoleProfile:
    """Build a RoleProfile from a parsed YAML document."""
    questions = [
        SuggestedQuestion(
            text=item["text"],
            icon=item.get("icon", "fas fa-question-circle"),
        )
        for item in data.get("suggested_questions", [])
    ]
    return RoleProfile(
        role=data["role"],
        prompt=(data.get("prompt") or "").strip(),
        suggested_questions=questions,
    )


def load_role_profiles(
    directory: Path = ROLES_DIR,
    registry: RoleProfileRegistry = role_profiles,
) -> int:
    """Load all role profiles from directory."""
    if not directory.exists():
        logger.warning("Roles directory not found: %s", directory)
        return 0

    count = 0
    for path in sorted(list(directory.glob("*.yaml")) + list(directory.glob("*.yml"))):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)

            registry.register(parse_role_profile(data))
            count += 1
            logger.debug("Loaded role profile: %s", data["role"])

        except Exception as e:
            logger.error("Failed to load role profile %s: %s", path.name, e)

    logger.info("Loaded %d role profiles", count)
    return count
