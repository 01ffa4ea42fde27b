"""Feed service: post CRUD with ownership checks and live broadcast."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from src.config import get_settings
from src.models.post import Post
from src.models.user import User
from src.schemas.post import PostInput, PostResponse
from src.services.assets import ImageStore
from src.services.errors import Internal, NotFound, Unauthorized, ValidationFailed
from src.services.realtime import POSTS_TOPIC, BroadcastHub, PostAction

logger = logging.getLogger(__name__)


class ImageUpload(Protocol):
    """The parts of an uploaded file the service needs (FastAPI's UploadFile fits)."""

    filename: str | None
    content_type: str | None
    file: Any


@dataclass
class PostPage:
    """One page of the feed plus the size of the whole collection."""

    items: list[Post]
    total_count: int
    page: int
    per_page: int


def serialize_post(post: Post) -> dict[str, Any]:
    """JSON-ready post with its creator snapshot taken from the User row."""
    return PostResponse.model_validate(post).model_dump(mode="json")


def validation_error(field: str, message: str, error_type: str = "missing") -> ValidationFailed:
    return ValidationFailed(
        message, errors=[{"field": field, "message": message, "type": error_type}]
    )


class FeedService:
    """Orchestrates feed mutations: validate, check ownership, persist, broadcast.

    Store writes for a post and its owner's post set share one commit. Events
    are published only after that commit succeeds.
    """

    def __init__(
        self,
        db: Session,
        hub: BroadcastHub,
        images: ImageStore,
        per_page: int | None = None,
    ):
        self.db = db
        self.hub = hub
        self.images = images
        self.per_page = per_page or get_settings().posts_per_page

    # --- Reads ---

    def list_posts(self, page: int = 1) -> PostPage:
        """Newest-first page of posts with creators loaded."""
        if page < 1:
            raise ValidationFailed(
                "Page must be a positive integer",
                errors=[{"field": "page", "message": "must be >= 1", "type": "value_error"}],
            )
        total_count = self.db.query(Post).count()
        items = (
            self.db.query(Post)
            .options(selectinload(Post.creator))
            .order_by(Post.created_at.desc(), Post.id.desc())
            .offset((page - 1) * self.per_page)
            .limit(self.per_page)
            .all()
        )
        return PostPage(items=items, total_count=total_count, page=page, per_page=self.per_page)

    def get_post(self, post_id: int) -> Post:
        post = (
            self.db.query(Post)
            .options(selectinload(Post.creator))
            .filter(Post.id == post_id)
            .first()
        )
        if post is None:
            raise NotFound("Could not find post")
        return post

    def get_owned_post(self, user_id: int, post_id: int) -> Post:
        """Load a post and check that ``user_id`` created it."""
        post = self.get_post(post_id)
        if post.creator_id != user_id:
            logger.info(f"User {user_id} denied access to post {post_id}")
            raise Unauthorized("Not authorized to modify this post")
        return post

    # --- Mutations ---

    def create_post(
        self, user_id: int, title: str, content: str, image: ImageUpload | None
    ) -> Post:
        fields = self._validate_fields(title, content)
        if image is None or not image.filename:
            raise validation_error("image", "No image provided")

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User does not exist")

        image_url = self._store_image(image)
        post = Post(title=fields.title, content=fields.content, image_url=image_url)
        # Adding through the owner's collection keeps the post set and the
        # posts table in the same commit.
        user.posts.append(post)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.images.discard(image_url)
            logger.error(f"Failed to create post for user {user_id}: {e}")
            raise Internal() from e
        self.db.refresh(post)
        logger.info(f"User {user_id} created post {post.id}")

        self._broadcast({"action": PostAction.CREATE.value, "post": serialize_post(post)})
        return post

    def update_post(
        self,
        user_id: int,
        post_id: int,
        title: str,
        content: str,
        image: ImageUpload | None = None,
        image_url: str | None = None,
    ) -> Post:
        """Edit a post. A new upload wins over ``image_url``; one of them must be present."""
        post = self.get_owned_post(user_id, post_id)
        fields = self._validate_fields(title, content)

        has_upload = image is not None and bool(image.filename)
        if not has_upload and not image_url:
            raise validation_error("image", "No file picked")

        # Without an upload the post keeps its own image. Image files are never
        # shared between posts.
        if not has_upload and image_url.replace("\\", "/") != post.image_url:
            raise validation_error(
                "image", "Must be the post's current image or a new upload", "value_error"
            )

        old_image_url = post.image_url
        new_image_url = self._store_image(image) if has_upload else post.image_url

        post.title = fields.title
        post.content = fields.content
        post.image_url = new_image_url
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            if has_upload:
                self.images.discard(new_image_url)
            logger.error(f"Failed to update post {post_id}: {e}")
            raise Internal() from e
        self.db.refresh(post)
        self.images.replace(old_image_url, new_image_url)
        logger.info(f"User {user_id} updated post {post_id}")

        self._broadcast({"action": PostAction.UPDATE.value, "post": serialize_post(post)})
        return post

    def delete_post(self, user_id: int, post_id: int) -> None:
        post = self.get_owned_post(user_id, post_id)
        image_url = post.image_url

        # Removing from the owner's set orphans the post, which the
        # relationship cascade deletes in the same commit.
        post.creator.posts.remove(post)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete post {post_id}: {e}")
            raise Internal() from e
        self.images.discard(image_url)
        logger.info(f"User {user_id} deleted post {post_id}")

        self._broadcast({"action": PostAction.DELETE.value, "post_id": post_id})

    # --- Helpers ---

    def _validate_fields(self, title: str, content: str) -> PostInput:
        try:
            return PostInput(title=title, content=content)
        except ValidationError as e:
            raise ValidationFailed.from_pydantic(e) from e

    def _store_image(self, image: ImageUpload) -> str:
        return self.images.save(image.filename, image.file, image.content_type)

    def _broadcast(self, payload: dict[str, Any]) -> None:
        self.hub.publish(POSTS_TOPIC, payload)
