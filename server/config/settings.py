"""Application configuration settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List, Optional

# Get the server directory path
SERVER_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    SUPABASE_URL: str
    SUPABASE_KEY: str

    # LLM Configuration
    USE_CLOUD_LLM: bool = False
    LLM_ENDPOINT: str = "http://localhost:11434"
    LLM_MODEL: str = "llama3.1:8b"
    LLM_API_KEY: Optional[str] = None
    LLM_MAX_TOKENS: int = 1000

    # Per-phase LLM timeouts (seconds)
    LLM_CLASSIFY_TIMEOUT: int = 20
    LLM_EXTRACT_TIMEOUT: int = 20
    LLM_PLAN_TIMEOUT: int = 20
    LLM_CLARIFY_TIMEOUT: int = 10

    # Record store calls (seconds)
    DB_TIMEOUT: int = 10

    # Pipeline policy
    AUTO_EXECUTE_THRESHOLD: float = 0.8
    MAX_CLARIFICATION_TURNS: int = 3
    CONTEXT_WINDOW_MESSAGES: int = 10
    CONVERSATION_TTL_MINUTES: int = 60
    MAX_CONVERSATIONS: int = 5_000
    CONTEXT_PAYEE_LIMIT: int = 20
    CONTEXT_CATEGORY_LIMIT: int = 50

    # Extraction confidence blending
    CONFIDENCE_INTENT_WEIGHT: float = 0.6
    CONFIDENCE_ENTITY_WEIGHT: float = 0.4
    CONFIDENCE_COMPLETE_BONUS: float = 0.1
    CONFIDENCE_INCOMPLETE_PENALTY: float = 0.2

    # Authentication
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS: explicit list of allowed origins
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 60

    @model_validator(mode="after")
    def _validate_policy(self) -> "Settings":
        if not 0.0 <= self.AUTO_EXECUTE_THRESHOLD <= 1.0:
            raise ValueError("AUTO_EXECUTE_THRESHOLD must be between 0 and 1")
        if self.MAX_CLARIFICATION_TURNS < 1:
            raise ValueError("MAX_CLARIFICATION_TURNS must be at least 1")
        weights = self.CONFIDENCE_INTENT_WEIGHT + self.CONFIDENCE_ENTITY_WEIGHT
        if abs(weights - 1.0) > 1e-6:
            raise ValueError(
                "CONFIDENCE_INTENT_WEIGHT and CONFIDENCE_ENTITY_WEIGHT must sum to 1.0"
            )
        return self

    class Config:
        env_file = str(SERVER_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
