"""
Configuration settings for Sihat TCM
"""
import os
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Sihat TCM"
    DEBUG: bool = False
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str = f"sqlite:///{BASE_DIR}/data/sihat_tcm.db"

    # Google Gemini via Vertex AI
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    GOOGLE_CLOUD_LOCATION: str = "us-central1"
    GEMINI_API_KEY: Optional[str] = os.getenv('GEMINI_API_KEY') or os.getenv('GOOGLE_GENERATIVE_AI_API_KEY')
    DEFAULT_MODEL: str = "gemini-2.0-flash"

    # Anthropic key is only reported by the health check
    ANTHROPIC_API_KEY: Optional[str] = None

    # Auth
    JWT_SECRET_KEY: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480
    DEFAULT_ADMIN_EMAIL: str = "admin@sihat-tcm.local"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"

    # Monitoring
    ENABLE_ALERTING: bool = True

    # Diagnosis session drafts
    SESSION_TIMEOUT_MINUTES: int = 60
    SESSION_MAX_RETRIES: int = 3
    SESSION_RETRY_DELAY_SECONDS: float = 1.0

    # Storage
    DATA_DIR: Path = BASE_DIR / "data"

    class Config:
        env_file = ".env"
        extra = "allow"

    @property
    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT == "development"


settings = Settings()

# Ensure directories exist
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
