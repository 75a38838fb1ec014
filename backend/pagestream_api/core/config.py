"""Configuration and settings"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # OpenAI API
    openai_api_key: str = Field(default="", env="OPENAI_API_KEY")
    content_model: str = Field(default="gpt-4o", env="CONTENT_MODEL")
    hero_model: str = Field(default="gpt-4o-mini", env="HERO_MODEL")
    layout_model: str = Field(default="gpt-4o-mini", env="LAYOUT_MODEL")
    embedding_model: str = Field(default="text-embedding-3-small", env="EMBEDDING_MODEL")
    image_model: str = Field(default="dall-e-3", env="IMAGE_MODEL")

    # Timeouts (seconds) for each external call
    hero_timeout: float = Field(default=15.0, env="HERO_TIMEOUT")
    content_timeout: float = Field(default=60.0, env="CONTENT_TIMEOUT")
    layout_timeout: float = Field(default=20.0, env="LAYOUT_TIMEOUT")
    embedding_timeout: float = Field(default=10.0, env="EMBEDDING_TIMEOUT")
    image_timeout: float = Field(default=60.0, env="IMAGE_TIMEOUT")
    store_timeout: float = Field(default=10.0, env="STORE_TIMEOUT")

    # Relational store
    database_url: str = Field(default="sqlite+aiosqlite:///./catalog.db", env="DATABASE_URL")

    # Image generation
    enable_image_generation: bool = Field(default=False, env="ENABLE_IMAGE_GENERATION")
    image_concurrency: int = Field(default=3, env="IMAGE_CONCURRENCY")

    # Streaming
    block_pacing_ms: int = Field(default=50, env="BLOCK_PACING_MS")
    page_base_url: str = Field(default="", env="PAGE_BASE_URL")

    # Sessions
    visitor_session_ttl_days: int = Field(default=30, env="VISITOR_SESSION_TTL_DAYS")
    generation_session_ttl_minutes: int = Field(default=30, env="GENERATION_SESSION_TTL_MINUTES")

    # Server
    backend_host: str = Field(default="localhost", env="BACKEND_HOST")
    backend_port: int = Field(default=8000, env="BACKEND_PORT")

    # Frontend
    frontend_url: str = Field(default="http://localhost:3000", env="FRONTEND_URL")

    # Environment
    environment: str = Field(default="development", env="ENVIRONMENT")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # API Configuration
    api_title: str = "PageStream API"
    api_version: str = "0.1.0"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
