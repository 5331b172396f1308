import logging
import os
import re
import secrets
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from pydantic import BaseModel

from crm.config import settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".pdf", ".doc", ".docx"}
ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

class UploadRejected(Exception):
    """The file is too large or of a type we do not accept."""

class StoredFile(BaseModel):
    path: str
    url: str
    filename: str
    content_type: Optional[str] = None

def sanitize_filename(name: str) -> str:
    name = os.path.basename(name or "file")
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return cleaned or "file"

def validate_upload(filename: str, content_type: Optional[str], size: int, max_bytes: int) -> None:
    if size > max_bytes:
        raise UploadRejected(f"File too large (max {max_bytes // (1024 * 1024)} MB)")
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS or (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise UploadRejected("Only images (jpeg, jpg, png) and documents (pdf, doc, docx) are allowed")

class FileStorage:
    """Stores uploads on local disk and serves them under /uploads."""

    def __init__(
        self,
        upload_dir: str = settings.UPLOAD_DIR,
        base_url: str = settings.BACKEND_URL,
        max_bytes: int = settings.MAX_UPLOAD_BYTES,
    ):
        self.upload_dir = Path(upload_dir)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    def save(self, upload: UploadFile) -> StoredFile:
        # Read one byte past the limit
        content = upload.file.read(self.max_bytes + 1)
        validate_upload(upload.filename, upload.content_type, len(content), self.max_bytes)

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        original = sanitize_filename(upload.filename)
        stored_name = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}-{original}"
        path = self.upload_dir / stored_name
        path.write_bytes(content)

        return StoredFile(
            path=str(path),
            url=f"{self.base_url}/uploads/{stored_name}",
            filename=upload.filename or original,
            content_type=upload.content_type,
        )

    def delete(self, path: Optional[str]) -> None:
        """Remove a stored file; a missing file is only logged."""
        if not path:
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            logger.warning("Attachment already gone: %s", path)
        except OSError as exc:
            logger.warning("Could not delete attachment %s: %s", path, exc)

    def resolve(self, filename: str) -> Optional[Path]:
        """Path of a stored file, or None if it is missing or outside the upload dir."""
        root = self.upload_dir.resolve()
        candidate = (root / filename).resolve()
        if root not in candidate.parents or not candidate.is_file():
            return None
        return candidate

def get_storage() -> FileStorage:
    return FileStorage()
