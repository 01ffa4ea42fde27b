"""Image asset storage on local disk.

A post owns exactly one image. The stored reference is a forward-slash path
relative to the working directory, e.g. ``images/3f2a...-cat.png``.
"""

import logging
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from src.config import get_settings
from src.services.errors import Internal, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpg", "image/jpeg"}
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg"}


class ImageStore:
    """Saves uploaded images and deletes them when a post lets go of them."""

    def __init__(self, root: str | Path, max_bytes: int | None = None):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def save(self, filename: str | None, fileobj: BinaryIO, content_type: str | None = None) -> str:
        """Write an upload to disk and return its reference."""
        suffix = Path(filename or "").suffix.lower()
        if suffix not in ALLOWED_EXTENSIONS or (
            content_type is not None and content_type not in ALLOWED_IMAGE_TYPES
        ):
            raise ValidationFailed(
                "Unsupported image type",
                errors=[
                    {
                        "field": "image",
                        "message": "Image must be a PNG or JPEG file",
                        "type": "value_error",
                    }
                ],
            )

        self.root.mkdir(parents=True, exist_ok=True)
        stored_name = f"{uuid.uuid4().hex}-{Path(filename).name}"
        path = self.root / stored_name
        try:
            with path.open("wb") as out:
                shutil.copyfileobj(fileobj, out)
        except OSError as e:
            logger.error(f"Failed to store image {stored_name}: {e}")
            path.unlink(missing_ok=True)
            raise Internal() from e

        if self.max_bytes is not None and path.stat().st_size > self.max_bytes:
            path.unlink(missing_ok=True)
            raise ValidationFailed(
                "Image too large",
                errors=[
                    {
                        "field": "image",
                        "message": f"Maximum size is {self.max_bytes} bytes",
                        "type": "value_error",
                    }
                ],
            )
        return self.reference_for(stored_name)

    def reference_for(self, stored_name: str) -> str:
        return str(PurePosixPath(self.root.name) / stored_name)

    def path_for(self, ref: str) -> Path | None:
        """Resolve a reference to a file inside the store, or None if it escapes it."""
        name = PurePosixPath(ref.replace("\\", "/")).name
        if not name:
            return None
        path = (self.root / name).resolve()
        if path.parent != self.root.resolve():
            return None
        return path

    def discard(self, ref: str | None) -> bool:
        """Delete the asset behind ``ref``. Best-effort: failures are logged only."""
        if not ref:
            return False
        path = self.path_for(ref)
        if path is None:
            logger.warning(f"Refusing to delete image outside the store: {ref}")
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Image already gone: {ref}")
            return False
        except OSError as e:
            logger.warning(f"Failed to delete image {ref}: {e}")
            return False
        logger.debug(f"Deleted image {ref}")
        return True

    def replace(self, old_ref: str | None, new_ref: str) -> bool:
        """Release ``old_ref`` once a post points at ``new_ref`` instead."""
        if old_ref == new_ref:
            return False
        return self.discard(old_ref)


def get_image_store() -> ImageStore:
    """Dependency that provides the configured image store."""
    settings = get_settings()
    return ImageStore(settings.images_dir, max_bytes=settings.max_image_bytes)
