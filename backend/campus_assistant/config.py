import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Pocketbase
    pocketbase_url: str = "http://pocketbase:8090"
    pocketbase_admin_email: Optional[str] = None
    pocketbase_admin_password: Optional[str] = None

    # LLM Providers
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None

    # Chat model settings
    llm_provider: str = "groq"  # groq, openai, anthropic, ollama
    llm_model: str = "llama-3.3-70b-versatile"
    llm_fallback_models: list[str] = []  # extra "provider:model" entries tried in order
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2048

    # Study materials / retrieval
    materials_dir: Path = Path("materials")
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_search_results: int = 5

    # Streaming
    event_channel_capacity: int = 0  # 0 = unbounded

    # App settings
    log_level: str = "INFO"

    @field_validator("pocketbase_url")
    @classmethod
    def pocketbase_url_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("POCKETBASE_URL is required and cannot be empty")
        return v

    @field_validator("chunk_overlap")
    @classmethod
    def overlap_smaller_than_chunk(cls, v: int, info) -> int:
        chunk_size = info.data.get("chunk_size", 1000)
        if v < 0 or v >= chunk_size:
            raise ValueError("CHUNK_OVERLAP must be >= 0 and smaller than CHUNK_SIZE")
        return v

    @field_validator("event_channel_capacity")
    @classmethod
    def capacity_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("EVENT_CHANNEL_CAPACITY cannot be negative")
        return v

    def get_llm_model(self) -> str:
        """
        Get the primary LLM model string for pydantic-ai.

        Returns model in format: "provider:model"
        """
        if self.llm_provider in ("openai", "anthropic", "groq", "ollama"):
            return f"{self.llm_provider}:{self.llm_model}"
        return self.llm_model

    def get_llm_models(self) -> list[str]:
        """Primary model followed by the configured fallbacks, without duplicates."""
        models = [self.get_llm_model()]
        for model in self.llm_fallback_models:
            if model and model not in models:
                models.append(model)
        return models

    def export_api_keys(self) -> None:
        """
        Expose provider keys read from .env to the process environment.

        pydantic-ai providers read their credentials from environment
        variables; values already set in the environment win.
        """
        keys = {
            "OPENAI_API_KEY": self.openai_api_key,
            "ANTHROPIC_API_KEY": self.anthropic_api_key,
            "GROQ_API_KEY": self.groq_api_key,
        }
        for name, value in keys.items():
            if value:
                os.environ.setdefault(name, value)

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
