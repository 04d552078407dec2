"""File storage service for Huddle.

Files are stored flat in ``{upload_dir}/{uuid}{ext}``.
"""
import logging
import uuid
from pathlib import Path
from typing import Optional

from .schemas import UploadedFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 10 * 1024 * 1024


class FileTooLarge(ValueError):
    """Upload exceeded the configured size limit."""


class FileStorageService:
    """Writes uploads to disk and resolves stored names back to paths."""

    def __init__(self, upload_dir: str, max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_size_bytes = max_size_bytes
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def save_file(self, filename: str, content: bytes, mime_type: str) -> UploadedFile:
        """Save an uploaded file to disk.

        Args:
            filename: Original filename
            content: File content as bytes
            mime_type: MIME type of the file

        Returns:
            UploadedFile with the stored name and size

        Raises:
            FileTooLarge: If file exceeds the size limit
        """
        size_bytes = len(content)
        if size_bytes > self.max_size_bytes:
            raise FileTooLarge(
                f"File size ({size_bytes} bytes) exceeds limit "
                f"({self.max_size_bytes} bytes)"
            )

        ext = Path(filename).suffix.lower()
        stored_filename = f"{uuid.uuid4()}{ext}"
        file_path = self.upload_dir / stored_filename
        file_path.write_bytes(content)

        logger.info(f"Saved file: {file_path} ({size_bytes} bytes)")

        return UploadedFile(
            stored_filename=stored_filename,
            original_filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
        )

    def get_file_path(self, stored_filename: str) -> Optional[Path]:
        """Return the on-disk path for a stored name, or None if absent."""
        # Only bare names produced by save_file are valid.
        if Path(stored_filename).name != stored_filename:
            return None
        file_path = self.upload_dir / stored_filename
        if not file_path.is_file():
            return None
        return file_path
