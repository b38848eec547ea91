"""Configuration management for the storyloom book-context engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (book content + chunk store)
    SUPABASE_URL: str = Field(default="", description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="", description="Supabase service role key")

    # Default embedding provider. Empty key means no default provider.
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key for default embeddings")

    # Environment
    STORYLOOM_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-ada-002", description="Default OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(
        default=1536, description="Expected embedding dimension (0 disables the check)"
    )
    EMBEDDING_MAX_INPUT_CHARS: int = Field(
        default=8000, description="Embedding input is silently cut to this many characters"
    )
    EMBEDDING_TIMEOUT_SECONDS: float = Field(
        default=30.0, description="Timeout for a single embedding provider call"
    )
    OPENROUTER_BASE_URL: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )
    OLLAMA_BASE_URL: str = Field(
        default="http://localhost:11434", description="Ollama server base URL"
    )

    # Chunking
    CHUNK_SIZE: int = Field(default=800, description="Characters per embedding chunk")
    CHUNK_OVERLAP: int = Field(default=100, description="Characters shared by consecutive chunks")

    # Planning context budget
    PLANNING_MAX_TOKENS: int = Field(
        default=8000, description="Token budget for the assembled planning context"
    )
    PLANNING_CHARS_PER_TOKEN: int = Field(
        default=4, description="Approximate characters per token for budget estimates"
    )

    # Retrieval
    REINDEX_CONCURRENCY: int = Field(
        default=4, description="Max source entities embedded concurrently during a reindex"
    )
    SEARCH_DEFAULT_LIMIT: int = Field(default=20, description="Default number of search results")

    @property
    def max_planning_chars(self) -> int:
        """Character ceiling for the planning context blob."""
        return self.PLANNING_MAX_TOKENS * self.PLANNING_CHARS_PER_TOKEN


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If an environment variable has an invalid value
    """
    return Settings()
