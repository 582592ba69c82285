"""
Configuration settings using Pydantic
"""
from functools import lru_cache
from typing import Optional
from pathlib import Path
from pydantic_settings import BaseSettings

# Get the backend directory
BACKEND_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "Chatflow"
    DEBUG: bool = False

    # Supabase (empty values are only valid for tests, the client refuses them)
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # OpenAI (fallback when the workspace has no key of its own)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Late messaging gateway
    GATEWAY_BASE_URL: str = "https://getlate.dev/api/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0

    # Flow execution
    HTTP_NODE_TIMEOUT_SECONDS: float = 30.0
    MESSAGE_PACING_SECONDS: float = 0.5  # Pause between items of one sendMessage node
    MAX_STEPS_PER_PASS: int = 100

    # Scheduled jobs
    JOB_POLL_INTERVAL_SECONDS: int = 15
    JOB_BATCH_SIZE: int = 20
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RUNNER_ENABLED: bool = True
    CRON_SECRET: Optional[str] = None

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
