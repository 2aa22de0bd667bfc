"""
Papir Backend — Media Storage Interface and Local Implementation
=================================================================

What:  Abstract contract for the media object store plus a local-disk implementation.
How:   MediaService depends only on MediaStorage; LocalMediaStorage writes objects
       beneath STORAGE_ROOT with aiofiles and serves them through GET /api/files/.
Who:   Constructed once at startup (app.dependencies) and injected into
       MediaService; tests construct LocalMediaStorage on a tmp_path or a stub.

Object Layout:
    storage/
    └── CARD_AB12CD34/
        └── 1718031234567_birthday.mp4

    Object paths are always "<CARD_ID>/<name>", so a card's media can be listed
    and removed by prefix.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles
import aiofiles.os

from app.config import settings
from app.exceptions import MediaStorageError, ValidationError

logger = logging.getLogger(__name__)


class MediaStorage(ABC):
    """
    Contract for an object store holding card media.

    Contract:
        - Paths are "/"-separated and relative to the store root
        - upload() with upsert=True overwrites an existing object
        - list_objects() returns full paths under a prefix, sorted
        - remove() deletes each path; missing paths are not an error
        - Implementation failures are raised as MediaStorageError
    """

    @abstractmethod
    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = True,
    ) -> None:
        ...

    @abstractmethod
    async def list_objects(self, prefix: str) -> List[str]:
        ...

    @abstractmethod
    async def remove(self, paths: Iterable[str]) -> None:
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        ...


class LocalMediaStorage(MediaStorage):
    """
    MediaStorage on the local file system.

    Public URLs point at the GET /api/files/{path} route, which resolves the
    same path through resolve().
    """

    def __init__(self, storage_root: Optional[str] = None, public_base_url: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
            public_base_url: Override the base of generated URLs.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalMediaStorage initialized with storage_root=%s", self.storage_root)

    def resolve(self, path: str) -> Path:
        """
        Map an object path to an absolute file path inside the storage root.

        Raises:
            ValidationError if the path escapes the root (e.g. "../../etc/passwd").
        """
        full_path = (self.storage_root / path).resolve()
        if full_path != self.storage_root and self.storage_root not in full_path.parents:
            raise ValidationError(message="Invalid file path", field="path")
        return full_path

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        upsert: bool = True,
    ) -> None:
        full_path = self.resolve(path)
        if full_path.exists() and not upsert:
            raise MediaStorageError(
                message="Storage upload failed: object already exists",
                context={"path": path},
            )
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(full_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Failed to store media at %s: %s", path, str(e))
            raise MediaStorageError(context={"path": path, "os_error": str(e)}) from e

        logger.info("Media stored: %s (%d bytes, %s)", path, len(data), content_type or "unknown type")

    async def list_objects(self, prefix: str) -> List[str]:
        directory = self.resolve(prefix.rstrip("/"))
        if not directory.is_dir():
            return []
        try:
            names = sorted(entry.name for entry in directory.iterdir() if entry.is_file())
        except OSError as e:
            raise MediaStorageError(
                message="Could not list stored media",
                context={"prefix": prefix, "os_error": str(e)},
            ) from e
        base = prefix.rstrip("/")
        return [f"{base}/{name}" for name in names]

    async def remove(self, paths: Iterable[str]) -> None:
        paths = list(paths)
        for path in paths:
            full_path = self.resolve(path)
            try:
                await aiofiles.os.remove(full_path)
                logger.info("Removed media: %s", path)
            except FileNotFoundError:
                logger.debug("Media already gone: %s", path)
            except OSError as e:
                raise MediaStorageError(
                    message="Could not remove stored media",
                    context={"path": path, "os_error": str(e)},
                ) from e

        # Drop empty card directories so the prefix disappears with its last object
        for parent in {self.resolve(p).parent for p in paths}:
            try:
                if parent != self.storage_root and parent.is_dir() and not any(parent.iterdir()):
                    await aiofiles.os.rmdir(parent)
            except OSError as e:
                logger.warning("Could not remove empty media directory %s: %s", parent, str(e))

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/api/files/{path}"
