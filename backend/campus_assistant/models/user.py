"""
Identity and per-request user context.

Identity is what the user directory returns for a connection principal.
UserContext is the read-only projection built from it at the start of every
hub operation; it is never cached between operations.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    """Primary role used to shape the assistant's behaviour."""

    ADMIN = "Admin"
    TEACHER = "Teacher"
    STUDENT = "Student"


ROLE_PRECEDENCE = (UserRole.ADMIN, UserRole.TEACHER, UserRole.STUDENT)


@dataclass(frozen=True)
class Identity:
    """User record resolved from a connection principal."""

    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    roles: tuple[str, ...] = field(default_factory=tuple)
    student_id: Optional[int] = None
    employee_id: Optional[int] = None
    campus_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "User"


@dataclass(frozen=True)
class UserContext:
    """Per-request view of the caller."""

    user_id: str
    full_name: str
    role: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    student_id: Optional[int] = None
    employee_id: Optional[int] = None
    campus_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN.value in self.roles

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserContext":
        return cls(
            user_id=identity.user_id,
            full_name=identity.display_name,
            role=resolve_primary_role(identity.roles),
            roles=tuple(identity.roles),
            student_id=identity.student_id,
            employee_id=identity.employee_id,
            campus_id=identity.campus_id,
        )


def resolve_primary_role(roles) -> str:
    """
    Pick the primary role.

    Admin > Teacher > Student > first assigned role > "Student".
    """
    assigned = list(roles or [])
    for role in ROLE_PRECEDENCE:
        if role.value in assigned:
            return role.value
    if assigned:
        return assigned[0]
    return UserRole.STUDENT.value
