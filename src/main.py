"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api import auth, feed, websocket
from src.api.errors import register_error_handlers
from src.config import get_settings
from src.database import init_db
from src.logging_config import setup_logging
from src.services.realtime import create_broadcast_hub

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    setup_logging(settings.log_level)
    if settings.auto_create_tables:
        init_db()
    Path(settings.images_dir).mkdir(parents=True, exist_ok=True)

    hub = create_broadcast_hub(settings)
    await hub.start()
    app.state.broadcast_hub = hub
    logger.info(f"Feed API started ({settings.broadcast_backend} broadcast)")
    yield
    await hub.stop()
    logger.info("Feed API shutting down")


app = FastAPI(
    title="Feed API",
    description="Social post feed with live updates",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for development
if settings.is_development:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_error_handlers(app)

# Register routers
app.include_router(auth.router)
app.include_router(feed.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "environment": settings.environment}
