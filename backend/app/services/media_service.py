"""
Papir Backend — Card Media Service
===================================

What:  Decodes, validates, stores and removes the media object attached to a card.
How:   Works purely against the injected MediaStorage; it never touches the
       database. CardService performs the activation check before calling it.
Who:   Called by CardService.upload_media() and CardService.delete().

Upload Flow (POST /api/upload-media):
    1. Strip an optional data-URL header ("data:video/mp4;base64,")
    2. Base64-decode; reject malformed input
    3. Reject payloads under 100 bytes (a truncated or mis-split base64 string
       decodes to a few bytes) and payloads over MAX_MEDIA_SIZE
    4. Upload to "<CARD_ID>/<epoch millis>_<sanitized name>" (upsert)
    5. Prune every other object under "<CARD_ID>/" so a card keeps one media
       object; prune failures are logged, the new upload stands

    The new object is written before the old ones are removed. A failed upload
    leaves the previous media (and the row pointing at it) intact.
"""

import base64
import binascii
import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from app.config import settings
from app.exceptions import PapirError, ValidationError
from app.models.card import CARD_ID_PATTERN
from app.services.storage import MediaStorage

logger = logging.getLogger(__name__)

# Smallest decoded payload accepted as a real media file
MIN_MEDIA_BYTES = 100

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class MediaCleanup(str, enum.Enum):
    """Outcome of removing a card's stored media."""

    NONE = "none"          # nothing was stored
    DELETED = "deleted"    # every object removed
    PARTIAL = "partial"    # some objects removed, some failed
    FAILED = "failed"      # listing failed or nothing could be removed


@dataclass(frozen=True)
class StoredMedia:
    """Result of a successful upload, mirrored into the HTTP response."""

    url: str
    path: str
    file_name: str
    file_size: int
    file_type: Optional[str]


def safe_file_name(name: str) -> str:
    """Replace every character outside [A-Za-z0-9._-] with an underscore."""
    return _UNSAFE_NAME_CHARS.sub("_", name)


def decode_media_payload(file_data: str) -> bytes:
    """
    Decode a base64 upload, optionally prefixed with a data URL header.

    Raises:
        ValidationError: malformed base64, or decoded size outside
        [MIN_MEDIA_BYTES, settings.max_media_size].
    """
    payload = file_data.split(",", 1)[1] if "," in file_data else file_data
    try:
        content = base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(
            message="File data is not valid Base64",
            field="fileData",
        ) from e

    if len(content) < MIN_MEDIA_BYTES:
        logger.error("Decoded media too small (%d bytes) - Base64 parsing issue", len(content))
        raise ValidationError(
            message="File data too small - check Base64 encoding",
            field="fileData",
            context={"decoded_size": len(content), "min_size": MIN_MEDIA_BYTES},
        )

    if len(content) > settings.max_media_size:
        max_mb = settings.max_media_size / (1024 * 1024)
        raise ValidationError(
            message=f"File size ({len(content) / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
            field="fileData",
            context={"decoded_size": len(content), "max_size": settings.max_media_size},
        )

    return content


class MediaService:
    """Stores and removes media under a card's storage prefix."""

    def __init__(self, storage: MediaStorage):
        self.storage = storage

    @staticmethod
    def card_prefix(card_id: str) -> str:
        """
        Storage prefix of a card: the normalized ID itself.

        IDs are never rewritten, so two cards can never share a prefix.
        Raises ValidationError for anything outside [A-Z0-9_-]{1,64}.
        """
        if not CARD_ID_PATTERN.fullmatch(card_id):
            raise ValidationError(message="Invalid card ID", field="cardId", context={"card_id": card_id[:80]})
        return card_id

    async def store_card_media(
        self,
        card_id: str,
        file_data: str,
        file_name: str,
        file_type: Optional[str] = None,
    ) -> StoredMedia:
        """
        Decode and upload a card's media, replacing anything stored before.

        Raises:
            ValidationError: missing file name or bad payload
            MediaStorageError: the store rejected the upload
        """
        if not file_name or not file_name.strip():
            raise ValidationError(message="Missing required fields: fileData, fileName, cardId", field="fileName")

        content = decode_media_payload(file_data)
        prefix = self.card_prefix(card_id)
        path = f"{prefix}/{int(time.time() * 1000)}_{safe_file_name(file_name.strip())}"

        logger.info("Uploading media: %s for %s (%d bytes)", file_name, card_id, len(content))
        await self.storage.upload(path, content, content_type=file_type, upsert=True)

        await self._prune(prefix, keep=path)

        return StoredMedia(
            url=self.storage.public_url(path),
            path=path,
            file_name=file_name,
            file_size=len(content),
            file_type=file_type,
        )

    async def remove_card_media(self, card_id: str) -> MediaCleanup:
        """
        Best-effort removal of everything stored under a card's prefix.

        Never raises: failures are logged and reported through the return value.
        """
        try:
            paths = await self.storage.list_objects(self.card_prefix(card_id))
        except (PapirError, OSError) as e:
            logger.warning("Could not list media for %s: %s", card_id, e)
            return MediaCleanup.FAILED

        if not paths:
            return MediaCleanup.NONE

        removed = 0
        for path in paths:
            try:
                await self.storage.remove([path])
                removed += 1
            except (PapirError, OSError) as e:
                logger.warning("Could not remove media %s: %s", path, e)

        if removed == len(paths):
            return MediaCleanup.DELETED
        return MediaCleanup.PARTIAL if removed else MediaCleanup.FAILED

    async def _prune(self, prefix: str, keep: str) -> None:
        try:
            stale = [p for p in await self.storage.list_objects(prefix) if p != keep]
            if stale:
                await self.storage.remove(stale)
                logger.info("Replaced %d older media object(s) under %s", len(stale), prefix)
        except (PapirError, OSError) as e:
            logger.warning("Could not prune older media under %s: %s", prefix, e)
