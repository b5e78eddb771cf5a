"""Disk storage for uploaded source videos, and input-reference resolution."""

import logging
import re
import threading
import time
from pathlib import Path
from typing import Union

from fastapi import UploadFile

from .errors import ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
_SAFE_SUFFIX = re.compile(r"^\.[a-z0-9]{1,10}$")


class UploadStore:
    """Stores uploads as {field}-{timestamp}{ext} under one root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _reserve(self, field_name: str, original_name: str) -> Path:
        suffix = Path(original_name or "").suffix.lower()
        if not _SAFE_SUFFIX.match(suffix):
            suffix = ""
        with self._lock:
            stem = f"{field_name}-{int(time.time() * 1000)}"
            path = self.root / f"{stem}{suffix}"
            n = 1
            while path.exists():
                path = self.root / f"{stem}-{n}{suffix}"
                n += 1
            path.touch()
            return path

    async def save(self, upload: UploadFile, field_name: str = "video") -> Path:
        """Stream an upload to disk and return where it landed."""
        path = self._reserve(field_name, upload.filename)
        size = 0
        try:
            with open(path, "wb") as f:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    f.write(chunk)
                    size += len(chunk)
        except Exception:
            path.unlink(missing_ok=True)
            raise
        finally:
            await upload.close()

        logger.info(f"[Uploads] Stored {upload.filename!r} as {path.name} ({size} bytes)")
        return path

    def resolve(self, ref: str) -> str:
        """
        Map an input reference to a path inside the upload root.

        Accepts a bare stored name ("video-1718000000000.mp4") or a path as
        returned by the upload endpoints. Existence is not checked here.
        """
        if not ref or "\x00" in ref:
            raise ValidationError(f"Input file not found: {ref}")

        root = self.root.resolve()
        path = Path(ref)
        if len(path.parts) == 1:
            candidate = (root / path).resolve()
        else:
            candidate = path.resolve()

        if root not in candidate.parents:
            logger.warning(f"[Uploads] Rejected input reference outside upload root: {ref}")
            raise ValidationError(f"Input file not found: {ref}")
        return str(candidate)
