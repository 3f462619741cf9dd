"""FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from app.api.tasks import router as tasks_router
from app.core.auth import verify_api_key
from app.core.config import settings
from app.core.database import close_db, create_tables

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    yield
    from app.tasks import shutdown_thread_executor

    shutdown_thread_executor()
    close_db()


app = FastAPI(
    title="Coding Agent API",
    description="Runs AI coding agents against GitHub repositories in sandboxes",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(tasks_router, prefix="/v1", tags=["tasks"])


@app.get("/health")
def health_check(api_key: str = Depends(verify_api_key)):
    """Health check endpoint."""
    return {"status": "healthy"}
