# expenseflow/core/config.py
import os
from pydantic_settings import BaseSettings
from pydantic import validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from .env"""

    # === Database ===
    DATABASE_URL: str
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 30
    DATABASE_CREATE_TABLES: bool = True  # create_all on startup; no migrations are shipped

    @validator("DATABASE_URL")
    def validate_database_url(cls, v):
        """Ensure database URL is safe for current environment"""
        env = os.getenv("ENVIRONMENT", "development").lower()
        if env == "production" and "localhost" in v:
            raise ValueError("🚨 Production environment cannot use localhost database!")
        return v

    # === JWT ===
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # === CORS ===
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    ALLOWED_METHODS: List[str] = ["*"]
    ALLOWED_HEADERS: List[str] = ["*"]

    # === System ===
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = False

    # === Currency ===
    EXCHANGE_RATE_API_URL: Optional[str] = None
    EXCHANGE_RATE_TIMEOUT: float = 10.0

    # === Business Rules ===
    FLOW_SELECTION_ORDER: str = "oldest"  # 'oldest' | 'newest'
    ESCALATION_TIME_UNIT: str = "hours"   # 'minutes' | 'hours' | 'days'
    ESCALATION_COMMENT: str = "Escalated to next step"
    FALLBACK_ESCALATION_COMMENT: str = "Escalated by admin"

    @validator("FLOW_SELECTION_ORDER")
    def validate_flow_selection_order(cls, v):
        if v.lower() not in ("oldest", "newest"):
            raise ValueError("FLOW_SELECTION_ORDER must be 'oldest' or 'newest'")
        return v.lower()

    @validator("ESCALATION_TIME_UNIT")
    def validate_escalation_time_unit(cls, v):
        if v.lower() not in ("minutes", "hours", "days"):
            raise ValueError("ESCALATION_TIME_UNIT must be 'minutes', 'hours' or 'days'")
        return v.lower()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Create a global settings instance
settings = Settings()
