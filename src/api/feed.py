"""Feed API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from src.api.dependencies import get_current_user_id, get_feed_service
from src.schemas.post import PostListResponse, PostMutationResponse, PostResponse
from src.services.feed_service import FeedService

router = APIRouter(prefix="/api/v1/feed", tags=["feed"])


@router.get("/posts", response_model=PostListResponse)
def list_posts(
    service: Annotated[FeedService, Depends(get_feed_service)],
    page: int = Query(default=1, ge=1),
):
    """Get one page of posts, newest first."""
    result = service.list_posts(page)
    return PostListResponse(
        posts=[PostResponse.model_validate(post) for post in result.items],
        total_items=result.total_count,
        page=result.page,
        per_page=result.per_page,
    )


@router.post("/posts", response_model=PostMutationResponse, status_code=status.HTTP_201_CREATED)
def create_post(
    user_id: Annotated[int, Depends(get_current_user_id)],
    service: Annotated[FeedService, Depends(get_feed_service)],
    title: Annotated[str, Form()],
    content: Annotated[str, Form()],
    image: Annotated[UploadFile | None, File(description="PNG or JPEG image")] = None,
):
    """Publish a new post."""
    post = service.create_post(user_id, title, content, image)
    return PostMutationResponse(
        message="Post created successfully", post=PostResponse.model_validate(post)
    )


@router.get("/posts/{post_id}", response_model=PostResponse)
def get_post(
    post_id: int,
    service: Annotated[FeedService, Depends(get_feed_service)],
):
    """Get a single post."""
    return service.get_post(post_id)


@router.put("/posts/{post_id}", response_model=PostMutationResponse)
def update_post(
    post_id: int,
    user_id: Annotated[int, Depends(get_current_user_id)],
    service: Annotated[FeedService, Depends(get_feed_service)],
    title: Annotated[str, Form()],
    content: Annotated[str, Form()],
    image: Annotated[UploadFile | None, File(description="Replacement image")] = None,
    image_url: Annotated[str | None, Form(description="Keep this existing image")] = None,
):
    """Edit a post owned by the current user."""
    post = service.update_post(user_id, post_id, title, content, image=image, image_url=image_url)
    return PostMutationResponse(
        message="Post edited successfully", post=PostResponse.model_validate(post)
    )


@router.delete("/posts/{post_id}")
def delete_post(
    post_id: int,
    user_id: Annotated[int, Depends(get_current_user_id)],
    service: Annotated[FeedService, Depends(get_feed_service)],
):
    """Delete a post owned by the current user."""
    service.delete_post(user_id, post_id)
    return {"message": "Post deleted"}
