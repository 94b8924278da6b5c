"""
Image upload handling.

Base64 payloads are decoded and written under a single image directory with a
generated name. The client-supplied name is only kept as metadata.
"""
import base64
import binascii
import logging
import mimetypes
import re
import secrets
import time
from pathlib import Path
from typing import Optional

from werkzeug.utils import secure_filename

from config import Settings
from database import Database
from errors import PersistenceError, ValidationError
from models import ImageRecord

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:image/([a-zA-Z0-9.+-]+);base64,")
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
MIME_EXTENSIONS = {"jpeg": ".jpg", "jpg": ".jpg", "png": ".png", "gif": ".gif", "webp": ".webp"}


def _human_size(size: int) -> str:
    mib = 1024 * 1024
    if size >= mib and size % mib == 0:
        return f"{size // mib}MB"
    return f"{size} bytes"


class UploadService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.image_dir = Path(settings.image_dir).resolve()
        self.max_bytes = settings.max_image_bytes
        self.image_dir.mkdir(parents=True, exist_ok=True)

    def decode(self, data_base64: Optional[str]):
        """Return ``(bytes, mime subtype or None)`` for a raw or data-URL payload."""
        if not data_base64 or not isinstance(data_base64, str):
            raise ValidationError("Missing image data")
        subtype = None
        match = DATA_URL_RE.match(data_base64)
        if match:
            subtype = match.group(1).lower()
            data_base64 = data_base64[match.end():]
        data_base64 = data_base64.strip()
        # cheap bound before decoding: 4 base64 chars carry 3 bytes
        if len(data_base64) * 3 // 4 > self.max_bytes + 3:
            raise ValidationError(f"File too large (max {_human_size(self.max_bytes)})")
        try:
            raw = base64.b64decode(data_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Invalid file format")
        if not raw:
            raise ValidationError("Missing image data")
        if len(raw) > self.max_bytes:
            raise ValidationError(f"File too large (max {_human_size(self.max_bytes)})")
        return raw, subtype

    def _extension(self, original: Optional[str], subtype: Optional[str]) -> str:
        if original:
            suffix = Path(original).suffix.lower()
            if suffix in IMAGE_EXTENSIONS:
                return ".jpg" if suffix == ".jpeg" else suffix
        if subtype in MIME_EXTENSIONS:
            return MIME_EXTENSIONS[subtype]
        return ".jpg"

    def _target(self, filename: str) -> Path:
        target = (self.image_dir / filename).resolve()
        if target.parent != self.image_dir:
            raise ValidationError("Invalid filename")
        return target

    def store_image(self, data_base64: Optional[str], filename: Optional[str] = None, prefix: str = "upload") -> dict:
        raw, subtype = self.decode(data_base64)

        original = secure_filename(filename) if isinstance(filename, str) else ""
        original = original or None
        stored_name = f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(8)}{self._extension(original, subtype)}"
        target = self._target(stored_name)
        mime_type = mimetypes.guess_type(stored_name)[0]

        try:
            target.write_bytes(raw)
        except OSError as exc:
            logger.exception("Failed to write image %s", target)
            raise PersistenceError("Upload failed") from exc

        try:
            with self.db.transaction() as session:
                session.add(ImageRecord(
                    filename=stored_name,
                    original_filename=original or stored_name,
                    file_path=str(target),
                    file_size=len(raw),
                    mime_type=mime_type,
                ))
        except PersistenceError:
            target.unlink(missing_ok=True)
            raise

        logger.info("Stored image %s (%d bytes)", stored_name, len(raw))
        return {
            "message": "Image uploaded successfully",
            "url": f"/images/{stored_name}",
            "filename": stored_name,
            "size": len(raw),
        }
