"""
content/images.py -- Article image references and the external image host.

Images are uploaded to an external host by the client; articles only store
the resulting URL. image_upload is the guard that checks that reference
before an article is written. When an article is deleted, the route schedules
ImageStore.delete() as a background task.
"""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlparse

from auth.guards import GuardContext, GuardRequest, Halt
from core import errors

logger = logging.getLogger("forsetti.content.images")

ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


class ImageStore(Protocol):
    def delete(self, url: str) -> None: ...


class LoggingImageStore:
    """Default image host adapter: records the request and keeps nothing."""

    def delete(self, url: str) -> None:
        logger.info("Image deletion requested for %s", url)


def remove_image(images: ImageStore, url: str) -> None:
    """Background-task entry point. Failures are logged, never raised."""
    try:
        images.delete(url)
    except Exception:
        logger.exception("Image deletion failed for %s", url)


def is_valid_image_url(url: str) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(ALLOWED_EXTENSIONS)


def image_upload(request: GuardRequest, context: GuardContext) -> GuardContext | Halt:
    """Check payload.image, when present, is an http(s) URL to a supported image type.

    Must run after validate_body. An empty string clears the image.
    """
    payload = context.payload
    image = getattr(payload, "image", None)
    if not image:
        return context
    if not is_valid_image_url(image):
        return Halt(
            errors.ValidationError(f"image must be an http(s) URL ending in one of: {', '.join(ALLOWED_EXTENSIONS)}")
        )
    return context
