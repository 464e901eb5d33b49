"""
User directory: resolves a connection principal to an Identity.

The principal is the Pocketbase auth token the client connected with.
Every hub operation resolves it again, so role changes and revoked tokens
take effect on the next call.
"""
import logging
from typing import Optional, Protocol

from campus_assistant.models.user import Identity, UserContext
from campus_assistant.services.pocketbase import PocketbaseError, PocketbaseService, pocketbase

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"


class UserDirectory(Protocol):
    """Identity lookup for authenticated principals."""

    async def resolve_identity(self, principal: str) -> Optional[Identity]: ...


async def resolve_user_context(directory: UserDirectory, principal: Optional[str]) -> Optional[UserContext]:
    """
    Build a fresh UserContext for the principal.

    Returns None when the principal is missing or cannot be resolved;
    callers never proceed with a partial or anonymous context.
    """
    if not principal:
        return None

    identity = await directory.resolve_identity(principal)
    if identity is None:
        return None
    return UserContext.from_identity(identity)


def _optional_int(value) -> Optional[int]:
    if value in (None, "", 0):
        return None
    return int(value)


class PocketbaseUserDirectory:
    """Resolves Pocketbase user tokens via auth-refresh."""

    def __init__(self, client: PocketbaseService, collection: str = USERS_COLLECTION):
        self._client = client
        self._collection = collection

    async def resolve_identity(self, principal: str) -> Optional[Identity]:
        try:
            payload = await self._client.auth_refresh(self._collection, principal)
        except PocketbaseError as e:
            if e.status_code in (401, 403, 404):
                logger.info("Rejected user token: %s", e.message)
                return None
            raise

        record = payload.get("record") or {}
        if not record.get("id"):
            return None

        roles = record.get("roles") or []
        if isinstance(roles, str):
            roles = [role.strip() for role in roles.split(",") if role.strip()]

        return Identity(
            user_id=record["id"],
            full_name=record.get("full_name") or record.get("name") or None,
            email=record.get("email") or None,
            roles=tuple(roles),
            student_id=_optional_int(record.get("student_id")),
            employee_id=_optional_int(record.get("employee_id")),
            campus_id=_optional_int(record.get("campus_id")),
        )


class InMemoryUserDirectory:
    """Static principal -> identity mapping for tests and local development."""

    def __init__(self, identities: Optional[dict[str, Identity]] = None):
        self._identities = dict(identities or {})

    def add(self, principal: str, identity: Identity) -> None:
        self._identities[principal] = identity

    def revoke(self, principal: str) -> None:
        self._identities.pop(principal, None)

    async def resolve_identity(self, principal: str) -> Optional[Identity]:
        return self._identities.get(principal)


# Singleton instance
user_directory = PocketbaseUserDirectory(pocketbase)
