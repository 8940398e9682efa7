from pydantic_settings import BaseSettings
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


def parse_int_list(v: Any) -> List[int]:
    """Parse a list of integers from "30,60,90" or a JSON list"""
    if isinstance(v, list):
        return [int(item) for item in v]
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return [int(item) for item in json.loads(v)]
            except (json.JSONDecodeError, ValueError):
                pass
        return [int(item.strip()) for item in v.split(',') if item.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Thesis Supervision Tracker"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    SECRET_KEY: str
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    # ==========================================
    # Authentication (tokens are issued by the external auth service)
    # ==========================================
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Guidance scheduling
    # ==========================================
    TIMEZONE: str = "Asia/Jakarta"  # Defines the local calendar day for availability windows
    DEFAULT_GUIDANCE_DURATION: int = 60  # minutes
    MAX_GUIDANCE_DURATION: int = 240  # minutes
    GUIDANCE_DURATION_OPTIONS_STR: str = "30,60,90,120"

    @property
    def GUIDANCE_DURATION_OPTIONS(self) -> List[int]:
        """Durations offered to clients when proposing a session"""
        return parse_int_list(self.GUIDANCE_DURATION_OPTIONS_STR)

    # ==========================================
    # Redis cache
    # ==========================================
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_DB: int = 1
    CACHE_ENABLED: bool = True
    CACHE_TTL_GUIDANCE: int = 300  # 5 minutes
    CACHE_TTL_MILESTONES: int = 600  # 10 minutes

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # ==========================================
    # API client (used by GuidanceApiClient)
    # ==========================================
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    API_TIMEOUT: float = 15.0  # seconds

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    def is_dev_mode(self) -> bool:
        return self.ENVIRONMENT != "production"


settings = Settings()
