"""Pydantic schemas for file upload functionality.

- UploadedFile: what the upload service stored
- FileUploadResponse: API response after a successful upload
"""
import time

from pydantic import BaseModel, Field

from huddle.chat.schemas import MessageType


class UploadedFile(BaseModel):
    """Metadata for a stored upload."""
    stored_filename: str = Field(..., description="Filename on disk (UUID-based)")
    original_filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="MIME type of the file")
    size_bytes: int = Field(..., description="File size in bytes")
    uploaded_at: float = Field(default_factory=time.time, description="Upload timestamp")


class FileUploadResponse(BaseModel):
    """Response after a successful upload.

    ``url``, ``name``, ``size`` and ``mimeType`` are copied by the client into
    the file fields of a send_message payload. ``filename`` and
    ``originalname`` are kept for older clients.
    """
    filename: str
    originalname: str
    url: str
    name: str
    size: int
    mimeType: str
    type: MessageType


MESSAGE_TYPE_PREFIXES = {
    "image/": MessageType.IMAGE,
    "audio/": MessageType.AUDIO,
    "video/": MessageType.VIDEO,
}


def get_message_type(mime_type: str) -> MessageType:
    """Suggest a message type for an attachment from its MIME type.

    Examples:
        >>> get_message_type("image/png")
        <MessageType.IMAGE: 'image'>
        >>> get_message_type("application/pdf")
        <MessageType.FILE: 'file'>
    """
    for prefix, message_type in MESSAGE_TYPE_PREFIXES.items():
        if mime_type.startswith(prefix):
            return message_type
    return MessageType.FILE
