"""FastAPI dependencies for authentication and services."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from src.database import get_db
from src.services.assets import ImageStore, get_image_store
from src.services.auth import verify_access_token
from src.services.errors import Unauthenticated
from src.services.feed_service import FeedService
from src.services.realtime import BroadcastHub

# auto_error=False so a missing header is reported as 401 by our own handler
security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> int:
    """Get the authenticated user id from the bearer token.

    Only the token is consulted; endpoints that need the User row load it
    themselves and report NotFound if it is gone.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Not authenticated")
    claims = verify_access_token(credentials.credentials)
    return claims.user_id


def get_broadcast_hub(request: Request) -> BroadcastHub:
    """Get the process-wide hub created in the app lifespan."""
    return request.app.state.broadcast_hub


def get_feed_service(
    db: Annotated[Session, Depends(get_db)],
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
    images: Annotated[ImageStore, Depends(get_image_store)],
) -> FeedService:
    """Get feed service with dependencies."""
    return FeedService(db, hub, images)
