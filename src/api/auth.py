"""Authentication API endpoints.

Endpoints are sync so bcrypt runs in the threadpool instead of on the event loop.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from src.api.dependencies import get_current_user_id
from src.database import get_db
from src.schemas.auth import (
    LoginResponse,
    SignupResponse,
    StatusResponse,
    StatusUpdate,
    UserLogin,
    UserSignup,
)
from src.services import auth as auth_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(
    user_data: UserSignup,
    db: Annotated[Session, Depends(get_db)],
):
    """Register a new user."""
    user = auth_service.signup(db, user_data.email, user_data.name, user_data.password)
    return SignupResponse(user_id=user.id)


@router.post("/login", response_model=LoginResponse)
def login(
    credentials: UserLogin,
    db: Annotated[Session, Depends(get_db)],
):
    """Login with email and password."""
    token, user = auth_service.login(db, credentials.email, credentials.password)
    return LoginResponse(access_token=token, user_id=user.id)


@router.get("/status", response_model=StatusResponse)
def get_status(
    user_id: Annotated[int, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Get the current user's status."""
    return StatusResponse(status=auth_service.get_status(db, user_id))


@router.patch("/status", response_model=StatusResponse)
def update_status(
    status_data: StatusUpdate,
    user_id: Annotated[int, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Update the current user's status."""
    user = auth_service.set_status(db, user_id, status_data.status)
    return StatusResponse(status=user.status)
