import logging
import random
import time
from typing import Any, AsyncIterator, Optional

import httpx

from campus_assistant.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
PAGE_SIZE = 200


class PocketbaseError(Exception):
    """Custom exception for Pocketbase errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def new_record_id() -> str:
    """
    Generate a 15-digit numeric record id.

    Pocketbase ids are 15-character strings; numeric ones let the chat
    protocol expose conversation and message ids as integers while keeping
    creation order (millisecond timestamp followed by two random digits).
    """
    return f"{int(time.time() * 1000):013d}{random.randint(0, 99):02d}"


def quote_filter_value(value: Any) -> str:
    """Quote a value for use inside a Pocketbase filter expression."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


class PocketbaseService:
    """Async client for Pocketbase REST API with admin authentication."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.pocketbase_url).rstrip("/")
        self._admin_token: Optional[str] = None

    async def _ensure_admin_auth(self) -> Optional[str]:
        """
        Authenticate as admin and get token.

        Returns the admin token or None if authentication fails.
        """
        if self._admin_token:
            return self._admin_token

        email = settings.pocketbase_admin_email
        password = settings.pocketbase_admin_password

        if not email or not password:
            logger.debug("No admin credentials configured")
            return None

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/api/collections/_superusers/auth-with-password",
                    json={"identity": email, "password": password},
                    timeout=DEFAULT_TIMEOUT,
                )
        except httpx.RequestError as e:
            logger.warning("Failed to authenticate as admin: %s", e)
            return None

        if response.status_code != 200:
            logger.warning("Pocketbase admin auth failed: %s", response.text)
            return None

        self._admin_token = response.json().get("token")
        logger.info("Pocketbase admin authentication successful")
        return self._admin_token

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        token: Optional[str] = None,
        require_admin: bool = True,
    ) -> Any:
        """
        Make an HTTP request to Pocketbase.

        Chat collections are locked down, so requests go out with the admin
        token unless an explicit user token is supplied.
        """
        url = f"{self.base_url}{path}"

        headers = {}
        if token:
            headers["Authorization"] = token
        elif require_admin:
            admin_token = await self._ensure_admin_auth()
            if admin_token:
                headers["Authorization"] = admin_token

        async with httpx.AsyncClient() as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=DEFAULT_TIMEOUT,
                )
            except httpx.RequestError as e:
                raise PocketbaseError(f"Connection error: {e}")

        if response.status_code == 401 and not token and self._admin_token:
            # Expired admin token; the next request re-authenticates.
            self._admin_token = None

        if response.status_code >= 400:
            error_data = response.json() if response.text else {}
            error_msg = error_data.get("message", response.text or "Unknown error")
            raise PocketbaseError(error_msg, response.status_code)

        if response.text:
            return response.json()
        return None

    # ==================== Health ====================

    async def health_check(self) -> dict:
        """Check if Pocketbase is healthy."""
        return await self._request("GET", "/api/health", require_admin=False)

    # ==================== Collections ====================

    async def list_collections(self) -> list[dict]:
        """Get list of all collections (requires admin auth)."""
        result = await self._request("GET", "/api/collections", params={"perPage": PAGE_SIZE})
        return result.get("items", []) if result else []

    async def get_collection(self, name: str) -> dict:
        """Get collection info by name (requires admin auth)."""
        return await self._request("GET", f"/api/collections/{name}")

    async def create_collection(
        self,
        name: str,
        fields: list[dict],
        indexes: Optional[list[str]] = None,
    ) -> dict:
        """Create a superuser-only base collection (requires admin auth)."""
        data = {
            "name": name,
            "type": "base",
            "fields": fields,
            "indexes": indexes or [],
            # null rules: only superusers may access chat data
            "listRule": None,
            "viewRule": None,
            "createRule": None,
            "updateRule": None,
            "deleteRule": None,
        }
        return await self._request("POST", "/api/collections", json=data)

    # ==================== Records ====================

    async def list_records(
        self,
        collection: str,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
        fields: Optional[str] = None,
    ) -> dict:
        """Get one page of records from a collection."""
        params: dict[str, Any] = {"page": page, "perPage": per_page}
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort
        if fields:
            params["fields"] = fields

        return await self._request("GET", f"/api/collections/{collection}/records", params=params)

    async def iter_records(
        self,
        collection: str,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> AsyncIterator[dict]:
        """Iterate over every record matching the filter, page by page."""
        page = 1
        while True:
            result = await self.list_records(
                collection,
                filter=filter,
                sort=sort,
                page=page,
                per_page=PAGE_SIZE,
                fields=fields,
            )
            for item in result.get("items", []):
                yield item
            if page >= result.get("totalPages", 1):
                return
            page += 1

    async def count_records(self, collection: str, filter: Optional[str] = None) -> int:
        """Count records matching the filter."""
        result = await self.list_records(collection, filter=filter, per_page=1, fields="id")
        return int(result.get("totalItems", 0))

    async def get_record(self, collection: str, record_id: str) -> dict:
        """Get a single record by ID."""
        return await self._request("GET", f"/api/collections/{collection}/records/{record_id}")

    async def find_record(self, collection: str, record_id: str) -> Optional[dict]:
        """Get a single record by ID, or None if it does not exist."""
        try:
            return await self.get_record(collection, record_id)
        except PocketbaseError as e:
            if e.is_not_found:
                return None
            raise

    async def create_record(self, collection: str, data: dict) -> dict:
        """Create a new record in a collection."""
        return await self._request("POST", f"/api/collections/{collection}/records", json=data)

    async def update_record(self, collection: str, record_id: str, data: dict) -> dict:
        """Update an existing record."""
        return await self._request("PATCH", f"/api/collections/{collection}/records/{record_id}", json=data)

    async def delete_record(self, collection: str, record_id: str) -> None:
        """Delete a record."""
        await self._request("DELETE", f"/api/collections/{collection}/records/{record_id}")

    # ==================== Auth ====================

    async def auth_refresh(self, collection: str, token: str) -> dict:
        """
        Validate a user token and return the fresh auth payload.

        Raises PocketbaseError (401/403) when the token is invalid or expired.
        """
        return await self._request(
            "POST",
            f"/api/collections/{collection}/auth-refresh",
            token=token,
        )


# Singleton instance
pocketbase = PocketbaseService()
