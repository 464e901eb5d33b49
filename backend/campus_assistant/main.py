import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campus_assistant.api.chat import router as chat_router
from campus_assistant.api.conversations import router as conversations_router
from campus_assistant.api.health import router as health_router
from campus_assistant.api.websocket import router as websocket_router
from campus_assistant.config import settings
from campus_assistant.config_loader import load_role_profiles
from campus_assistant.services.db_init import init_database
from campus_assistant.services.pocketbase import PocketbaseError, pocketbase
from campus_assistant.services.streaming import chat_orchestrator

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Campus assistant starting...")
    settings.export_api_keys()

    # Check Pocketbase connection
    try:
        health = await pocketbase.health_check()
        logger.info("Pocketbase connected: %s", health.get("message", "OK"))
        created, existing = await init_database()
        logger.info("Collections ready (%d created, %d existing)", created, existing)
    except PocketbaseError as e:
        logger.error("Pocketbase connection failed: %s", e.message)

    load_role_profiles()

    logger.info("Campus assistant started with model %s", settings.get_llm_model())

    yield

    # Shutdown
    logger.info("Campus assistant shutting down...")
    await chat_orchestrator.shutdown()


app = FastAPI(title="Campus Assistant Backend", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(websocket_router)
app.include_router(conversations_router)
app.include_router(chat_router)
