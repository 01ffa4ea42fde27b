"""Post schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PostInput(BaseModel):
    """User-settable text fields of a post, validated on create and update."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=255)
    content: str = Field(..., min_length=5, max_length=10000)


class CreatorSummary(BaseModel):
    """Snapshot of a post's creator, embedded in responses and events."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class PostResponse(BaseModel):
    """Post response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    image_url: str
    creator: CreatorSummary
    created_at: datetime
    updated_at: datetime


class PostListResponse(BaseModel):
    """One page of the feed."""

    message: str = "Posts fetched"
    posts: list[PostResponse]
    total_items: int
    page: int
    per_page: int


class PostMutationResponse(BaseModel):
    """Response for a created or edited post."""

    message: str
    post: PostResponse
