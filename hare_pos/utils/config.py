"""
Configuration module with environment-based settings.
Supports: development, staging, production
"""
from pydantic_settings import BaseSettings
from typing import List, Optional
from functools import lru_cache
from dotenv import load_dotenv
import os

# Load .env file
load_dotenv()


class BaseConfig(BaseSettings):
    """Base configuration shared across all environments."""

    # Application
    APP_NAME: str = "hare-pos"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Backend (Supabase / PostgREST)
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_TIMEOUT: float = 15.0
    CLIENT_INFO: str = "hare-pos"
    APP_STATE_TABLE: str = "app_state"
    APP_STATE_COLUMN: str = "state"
    EMPLOYEES_TABLE: str = "employees"
    DEFAULT_ORG_ID: Optional[str] = None

    # Redis (local cache + realtime push)
    REDIS_URL: str | None = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_USERNAME: str | None = None
    REDIS_PASSWORD: str | None = None
    REDIS_CACHE_TTL: int = 3600
    STATE_CACHE_TTL: int = 7 * 24 * 3600
    REALTIME_CHANNEL_PREFIX: str = "app_state"

    # Sync
    REALTIME_POLL_SECONDS: int = 15
    SESSION_IDLE_MINUTES: int = 240

    # Inventory / orders
    DEFAULT_USAGE_PER_CUP: float = 0.02
    DEFAULT_BEAN_GRAMS: int = 250
    DEDUPE_POLICY: str = "lower_stock"
    VOID_RESTOCK_DEFAULT: bool = False
    ALLOW_ORDER_RESTORE: bool = False
    MIRROR_ORDERS_TO_RPC: bool = False

    # Reports
    REPORT_MAX_ROWS: int = 5000
    DASHBOARD_LAST_DAYS: int = 4
    REPORT_TIMEZONE: str = "UTC"

    # Security
    CORS_ORIGINS: List[str] = ["*"]

    # Rate Limiting
    RATE_LIMIT_REQUESTS: int = 60
    RATE_LIMIT_PERIOD: str = "minute"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


class DevelopmentConfig(BaseConfig):
    """Development environment configuration."""
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"

    # Relaxed rate limits for testing
    RATE_LIMIT_REQUESTS: int = 1000


class ProductionConfig(BaseConfig):
    """Production environment configuration."""
    ENVIRONMENT: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "WARNING"

    # Strict rate limits
    RATE_LIMIT_REQUESTS: int = 60

    # Stricter CORS in production
    CORS_ORIGINS: List[str] = []


class StagingConfig(BaseConfig):
    """Staging environment configuration."""
    ENVIRONMENT: str = "staging"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    RATE_LIMIT_REQUESTS: int = 100


@lru_cache()
def get_settings() -> BaseConfig:
    """
    Factory function that returns the appropriate config based on ENVIRONMENT.
    Uses lru_cache for singleton pattern.
    """
    env = os.getenv("ENVIRONMENT", "development").lower()

    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "staging": StagingConfig,
        "stage": StagingConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
    }

    config_class = config_map.get(env, DevelopmentConfig)
    return config_class()


# Default settings instance
settings = get_settings()
