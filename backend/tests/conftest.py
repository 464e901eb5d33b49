"""
Pytest configuration for backend tests.

Adds the backend directory to Python path so imports like
'from campus_assistant.xxx import ...' work correctly, and provides
in-memory collaborators shared by the test modules.
"""
import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from campus_assistant.models.user import Identity  # noqa: E402
from campus_assistant.services.conversation import InMemoryConversationStore  # noqa: E402
from campus_assistant.services.user_directory import InMemoryUserDirectory  # noqa: E402

ADMIN_TOKEN = "admin-token"
TEACHER_TOKEN = "teacher-token"
STUDENT_TOKEN = "student-token"


class RecordingSender:
    """Client sender that records every outbound message."""

    def __init__(self):
        self.messages: list[tuple[str, tuple]] = []
        self._watchers: list[tuple[str, int, asyncio.Event]] = []

    async def send(self, method: str, *args: Any) -> None:
        self.messages.append((method, args))
        for name, count, event in self._watchers:
            if self.count(name) >= count:
                event.set()

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.messages]

    def count(self, name: str) -> int:
        return self.names.count(name)

    def args_of(self, name: str) -> list[tuple]:
        return [args for method, args in self.messages if method == name]

    def when_sent(self, name: str, count: int = 1) -> asyncio.Event:
        """Event set once `count` messages named `name` were sent."""
        event = asyncio.Event()
        self._watchers.append((name, count, event))
        return event


class ScriptedExecutor:
    """Yields a fixed list of generation updates, optionally failing afterwards."""

    def __init__(self, updates=(), fail_with: Optional[Exception] = None, delay: float = 0.0):
        self.updates = list(updates)
        self.fail_with = fail_with
        self.delay = delay
        self.requests = []
        self.finished = False

    async def execute(self, request):
        self.requests.append(request)
        for update in self.updates:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield update
        if self.fail_with is not None:
            raise self.fail_with
        self.finished = True


@pytest.fixture
def identities() -> dict[str, Identity]:
    return {
        ADMIN_TOKEN: Identity(
            user_id="user-admin",
            full_name="Alice Admin",
            email="alice@school.test",
            roles=("Admin",),
            employee_id=7,
            campus_id=1,
        ),
        TEACHER_TOKEN: Identity(
            user_id="user-teacher",
            full_name="Tom Teacher",
            roles=("Teacher",),
            employee_id=12,
            campus_id=1,
        ),
        STUDENT_TOKEN: Identity(
            user_id="user-student",
            full_name="Sam Student",
            roles=("Student",),
            student_id=42,
            campus_id=1,
        ),
    }


@pytest.fixture
def directory(identities) -> InMemoryUserDirectory:
    return InMemoryUserDirectory(identities)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
