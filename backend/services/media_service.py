# backend/services/media_service.py
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from errors import ValidationError

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})


@dataclass(frozen=True)
class MediaAsset:
    url: str
    public_id: str


class LocalMediaStore:
    """Stores uploaded media on local disk under ``root``, served from ``base_url``.

    ``public_id`` is ``<folder>/<name>`` without the extension, the handle
    used to delete the file again. Files are served from the API origin, so
    only suffixes in ``allowed_suffixes`` are stored.
    """

    def __init__(self, root: str | Path, base_url: str = "/media", allowed_suffixes=IMAGE_SUFFIXES):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.allowed_suffixes = frozenset(allowed_suffixes)

    async def upload(self, file: Optional[UploadFile], folder: str = "uploads") -> Optional[MediaAsset]:
        if file is None or not file.filename:
            return None
        suffix = Path(file.filename).suffix.lower()
        if suffix not in self.allowed_suffixes:
            logger.warning("Refusing upload %r with suffix %r", file.filename, suffix)
            raise ValidationError("Only image files are allowed")
        data = await file.read()
        if not data:
            logger.warning("Refusing to store empty upload %r", file.filename)
            return None

        name = uuid.uuid4().hex
        target = self.root / folder / f"{name}{suffix}"
        try:
            await run_in_threadpool(self._write, target, data)
        except OSError:
            logger.exception("Could not store upload %r in %s", file.filename, folder)
            return None

        asset = MediaAsset(url=f"{self.base_url}/{folder}/{name}{suffix}", public_id=f"{folder}/{name}")
        logger.debug("Stored %s (%d bytes)", asset.public_id, len(data))
        return asset

    async def delete_by_public_id(self, public_id: str) -> bool:
        """Best-effort removal; failures are logged, never raised."""
        try:
            return await run_in_threadpool(self._delete, public_id)
        except OSError:
            logger.exception("Could not delete media %s", public_id)
            return False

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def _delete(self, public_id: str) -> bool:
        folder, _, name = public_id.rpartition("/")
        directory = (self.root / folder).resolve()
        if self.root.resolve() not in (directory, *directory.parents):
            logger.warning("Refusing to delete media outside the store: %s", public_id)
            return False
        removed = False
        for path in directory.glob(f"{name}*"):
            if name and path.stem == name:
                path.unlink(missing_ok=True)
                removed = True
        return removed
