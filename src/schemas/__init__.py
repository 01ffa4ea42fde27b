"""Pydantic schemas for API requests and responses."""

from src.schemas.auth import (
    LoginResponse,
    SignupResponse,
    StatusResponse,
    StatusUpdate,
    UserLogin,
    UserSignup,
)
from src.schemas.post import (
    CreatorSummary,
    PostInput,
    PostListResponse,
    PostMutationResponse,
    PostResponse,
)

__all__ = [
    "UserSignup",
    "UserLogin",
    "SignupResponse",
    "LoginResponse",
    "StatusUpdate",
    "StatusResponse",
    "PostInput",
    "CreatorSummary",
    "PostResponse",
    "PostListResponse",
    "PostMutationResponse",
]
