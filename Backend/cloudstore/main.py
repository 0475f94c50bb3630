import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from cloudstore.api.routes import files
from cloudstore.core.config import settings
from cloudstore.core.exceptions import DatabaseUnavailableError
from cloudstore.core.limiter import limiter
from cloudstore.core.redis_client import create_redis_client, ping_redis
from cloudstore.db import Database
from cloudstore.services.file_repository import FileRepository
from cloudstore.services.job_queue import JobEnqueuer, JobQueue
from cloudstore.services.storage import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

def create_app(
    database: Optional[Database] = None,
    redis_client: Optional[redis.Redis] = None,
    storage: Optional[StorageProvider] = None,
) -> FastAPI:
    """
    Build the API. Handles not passed in are created from settings; the app
    opens them on startup and releases them on shutdown.
    """
    if database is None:
        database = Database()
    if redis_client is None:
        redis_client = create_redis_client()
    if storage is None:
        storage = get_storage_provider()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            database.connect()
        except DatabaseUnavailableError as e:
            # Keep serving /health; file routes answer 503 until the DB is back
            logger.error(f"DATABASE INIT FAILED: {e}")

        if not ping_redis(redis_client):
            logger.warning("Uploads will be stored but tagging jobs cannot be queued until Redis is reachable.")

        app.state.database = database
        app.state.repository = FileRepository(database)
        app.state.redis = redis_client
        app.state.enqueuer = JobEnqueuer(JobQueue(redis_client))
        app.state.storage = storage
        yield
        database.close()
        redis_client.close()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    # Rate Limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(DatabaseUnavailableError)
    async def database_unavailable_handler(request: Request, exc: DatabaseUnavailableError):
        logger.error(f"Result store unavailable: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})

    cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(files.router, prefix="/api/files", tags=["files"])
    app.mount("/uploads", StaticFiles(directory=str(storage.base_dir)), name="uploads")

    @app.get("/health")
    def health_check():
        return {
            "status": "healthy",
            "project": settings.PROJECT_NAME,
            "database": database.is_connected,
            "redis": ping_redis(redis_client),
        }

    @app.get("/")
    def root():
        return {"message": "Backend is working!"}

    return app

app = create_app()
