from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "CloudStore API"
    DATABASE_URL: str = "" # Logic: If set, use Postgres. Else, use SQLite.
    SQLITE_PATH: str = "files.db"
    REDIS_URL: str = "redis://localhost:6379/0" # Default local Redis
    REDIS_TLS_VERIFY: bool = True # Set False for managed rediss:// endpoints with self-signed certs
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    MAX_UPLOAD_SIZE_MB: int = 50
    LOG_LEVEL: str = "INFO"

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # ─── Tagging Queue ───────────────────────────────────────────────────
    TAGGING_QUEUE: str = "ai:tagging"
    WORKER_POP_TIMEOUT_SECONDS: int = 1 # 0 = block forever (no shutdown between jobs)
    PROCESSING_DELAY_SECONDS: float = 2.0

    # ─── Storage ─────────────────────────────────────────────────────────
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "" # Empty: share links use the request's base URL

    class Config:
        env_file = ".env"

settings = Settings()
