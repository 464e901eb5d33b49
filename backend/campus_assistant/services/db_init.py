"""
Database initialization for Pocketbase collections.

Creates required system collections if they don't exist.
"""
import logging

from campus_assistant.services.conversation import CONVERSATIONS_COLLECTION, MESSAGES_COLLECTION
from campus_assistant.services.document_index import CHUNKS_COLLECTION
from campus_assistant.services.pocketbase import PocketbaseError, PocketbaseService, pocketbase

logger = logging.getLogger(__name__)

CREATED_FIELD = {"name": "created", "type": "autodate", "onCreate": True, "onUpdate": False}

# Collections required by the application
SYSTEM_COLLECTIONS = {
    CONVERSATIONS_COLLECTION: {
        "fields": [
            {"name": "user_id", "type": "text", "required": True},
            {"name": "title", "type": "text", "required": False},
            {"name": "campus_id", "type": "number", "required": False},
            {"name": "is_active", "type": "bool", "required": False},
            {"name": "last_message_at", "type": "date", "required": False},
            CREATED_FIELD,
        ],
        "indexes": [f"CREATE INDEX idx_ai_conv_user ON {CONVERSATIONS_COLLECTION} (user_id)"],
    },
    MESSAGES_COLLECTION: {
        "fields": [
            {"name": "conversation_id", "type": "text", "required": True},
            {
                "name": "role",
                "type": "select",
                "required": True,
                "maxSelect": 1,
                "values": ["user", "assistant", "tool"],
            },
            {"name": "content", "type": "text", "required": False},
            {"name": "sources", "type": "json", "required": False},
            {"name": "timestamp", "type": "date", "required": False},
            CREATED_FIELD,
        ],
        "indexes": [f"CREATE INDEX idx_ai_msg_conv ON {MESSAGES_COLLECTION} (conversation_id)"],
    },
    CHUNKS_COLLECTION: {
        "fields": [
            {"name": "chunk_key", "type": "text", "required": True},
            {"name": "document_id", "type": "text", "required": True},
            {"name": "file_name", "type": "text", "required": False},
            {"name": "file_path", "type": "text", "required": False},
            {"name": "subject_name", "type": "text", "required": False},
            {"name": "chapter_name", "type": "text", "required": False},
            {"name": "page_number", "type": "number", "required": False},
            {"name": "chunk_index", "type": "number", "required": False},
            {"name": "text", "type": "text", "required": True, "max": 0},
        ],
        "indexes": [f"CREATE INDEX idx_chunks_document ON {CHUNKS_COLLECTION} (document_id)"],
    },
}


async def get_existing_collections(client: PocketbaseService = pocketbase) -> set[str]:
    """Get names of existing collections."""
    try:
        collections = await client.list_collections()
        return {col.get("name") for col in collections}
    except PocketbaseError as e:
        logger.error("Failed to list collections: %s", e.message)
        return set()


async def create_collection_if_not_exists(
    name: str,
    config: dict,
    existing: set[str],
    client: PocketbaseService = pocketbase,
) -> bool:
    """
    Create a collection if it doesn't exist.

    Returns True if created, False if already exists or creation failed.
    """
    if name in existing:
        logger.debug("Collection '%s' already exists", name)
        return False

    try:
        await client.create_collection(name, config["fields"], config.get("indexes"))
        logger.info("Created collection: %s", name)
        return True
    except PocketbaseError as e:
        logger.error("Failed to create collection '%s': %s", name, e.message)
        return False


async def init_database(client: PocketbaseService = pocketbase) -> tuple[int, int]:
    """
    Initialize all required database collections.

    Returns tuple of (created_count, existing_count).
    """
    logger.info("Initializing database collections...")

    existing = await get_existing_collections(client)
    created = 0
    skipped = 0

    for name, config in SYSTEM_COLLECTIONS.items():
        if await create_collection_if_not_exists(name, config, existing, client):
            created += 1
        else:
            skipped += 1

    logger.info(
        "Database initialization complete: %d created, %d already existed",
        created,
        skipped,
    )
    return created, skipped


async def check_database_ready(client: PocketbaseService = pocketbase) -> tuple[bool, str]:
    """
    Check if all required collections exist.

    Returns tuple of (success, message).
    """
    existing = await get_existing_collections(client)
    missing = set(SYSTEM_COLLECTIONS) - existing

    if missing:
        return False, f"Missing collections: {', '.join(sorted(missing))}"
    return True, "All required collections exist"
