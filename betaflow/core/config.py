# betaflow/core/config.py
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings
from dotenv import load_dotenv
load_dotenv()


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite://db.sqlite3"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:8080"]

    # Where imported rows land: the local database via tortoise, or the hosted
    # Supabase REST endpoint.
    IMPORT_STORE: Literal["database", "supabase"] = "database"
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    INSERT_TIMEOUT_SECONDS: float = 10.0
    INSERT_MAX_RETRIES: int = 2
    INSERT_RETRY_BACKOFF_SECONDS: float = 0.5
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

settings = Settings()
