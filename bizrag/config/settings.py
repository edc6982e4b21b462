import math

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field

load_dotenv()


def effective_overlap(chunk_size: int, configured_overlap: int) -> int:
    """Chunk overlap the splitter actually uses.

    The result satisfies ``0 <= O < min(configured_overlap, 0.2 * chunk_size)``
    whenever that bound is positive, and is 0 otherwise.
    """
    bound = min(configured_overlap, math.ceil(chunk_size * 0.2))
    return max(0, bound - 1)


class Settings(BaseSettings):
    """Base settings for the application."""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "BizRAG Assistant"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "Business data sync and retrieval-augmented assistant API"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = ""
    LOCAL_SQLITE_PATH: str = "sqlite+aiosqlite:///./local.db"

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """Resolve the database URL for the application.

        Priority:
        1. Explicit DATABASE_URL (Postgres, SQLite, etc.)
        2. Local SQLite fallback for development: LOCAL_SQLITE_PATH
        """
        if self.DATABASE_URL and self.DATABASE_URL.strip():
            return self.DATABASE_URL.strip()
        if self.LOCAL_SQLITE_PATH and self.LOCAL_SQLITE_PATH.strip():
            return self.LOCAL_SQLITE_PATH.strip()
        return "sqlite+aiosqlite:///./local.db"

    # Business application (record source for sync)
    BUSINESS_API_URL: str = Field(default="http://localhost:3000/api", description="Base URL of the inventory/accounting API")
    BUSINESS_API_TOKEN: str = Field(default="", description="Bearer token used for read-only access")
    BUSINESS_API_TIMEOUT_SECONDS: float = 30.0

    # Embedding settings (OpenAI or any OpenAI-compatible server)
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_BASE_URL: str = Field(default="", description="Optional OpenAI-compatible base URL, e.g. http://localhost:11434/v1")

    # Vector store settings
    VECTOR_STORE_BACKEND: str = Field(default="pinecone", description="pinecone or memory")
    PINECONE_API_KEY: str = ""
    PINECONE_INDEX_NAME: str = "bizrag-documents"
    PINECONE_REGION: str = "us-east-1"
    READINESS_TIMEOUT_SECONDS: float = 30.0

    # Chunking / indexing
    AI_CHUNK_SIZE: int = Field(default=1500, ge=1)
    AI_CHUNK_OVERLAP: int = Field(default=300, ge=0)
    AI_INDEX_BATCH_SIZE: int = Field(default=50, ge=1)

    @computed_field
    @property
    def effective_chunk_overlap(self) -> int:
        """Overlap kept strictly below both the configured value and 20% of the chunk size."""
        return effective_overlap(self.AI_CHUNK_SIZE, self.AI_CHUNK_OVERLAP)

    # Sync settings
    AI_SYNC_INTERVAL_MINUTES: int = 60
    AI_SYNC_ON_STARTUP: bool = True
    SYNC_MAX_ATTEMPTS: int = 3
    SYNC_RECOVERY_DELAY_SECONDS: float = 2.0

    # Generation settings
    LLM_PROVIDER: str = Field(default="ollama", description="ollama or huggingface")
    OLLAMA_URL: str = "http://localhost:11434"
    OLLAMA_CHAT_MODEL: str = "llama3.1:8b"
    HUGGING_FACE_API_KEY: str = ""
    HUGGING_FACE_MODEL: str = "meta-llama/Llama-3.1-8B-Instruct"
    HUGGING_FACE_BASE_URL: str = "https://router.huggingface.co/v1"

    # Chat settings
    CHAT_MAX_MESSAGES: int = 30
    CHAT_SESSION_TTL_MINUTES: int = 60
    CHAT_SWEEP_INTERVAL_MINUTES: int = 10
    CHAT_PRIMARY_TIMEOUT_SECONDS: float = 45.0
    CHAT_FALLBACK_TIMEOUT_SECONDS: float = 25.0
    CHAT_MAX_SEARCH_RESULTS: int = 8


settings = Settings()
