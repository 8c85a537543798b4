from __future__ import annotations

import secrets
from pathlib import Path
from typing import BinaryIO

import structlog

from tokenmarket.core.errors import ValidationError

logger = structlog.get_logger(__name__)

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".json"}
CHUNK_SIZE = 64 * 1024


class LocalStorage:
    """Stores uploaded assets in a directory served under ``url_prefix``."""

    def __init__(self, root: str, url_prefix: str, max_bytes: int) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def save(self, filename: str, stream: BinaryIO) -> tuple[str, str]:
        """
        Copy ``stream`` to a fresh random name keeping the extension.

        Returns:
            (public url, stored file name)
        """
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(f"Unsupported file type '{ext or filename}'")

        self.root.mkdir(parents=True, exist_ok=True)
        stored_name = f"{secrets.token_hex(12)}{ext}"
        target = self.root / stored_name

        written = 0
        with target.open("wb") as out:
            while chunk := stream.read(CHUNK_SIZE):
                written += len(chunk)
                if written > self.max_bytes:
                    break
                out.write(chunk)

        if written > self.max_bytes:
            target.unlink(missing_ok=True)
            raise ValidationError("File too large")
        if written == 0:
            target.unlink(missing_ok=True)
            raise ValidationError("No file uploaded")

        logger.info("asset_stored", filename=stored_name, size=written)
        return f"{self.url_prefix}/{stored_name}", stored_name
