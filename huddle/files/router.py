"""FastAPI router for file upload endpoints."""
import logging

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from .schemas import FileUploadResponse, get_message_type
from .service import FileStorageService, FileTooLarge

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def get_file_service(request: Request) -> FileStorageService:
    return request.app.state.files


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(request: Request, file: UploadFile = File(None)) -> FileUploadResponse:
    """Upload a file to attach to a chat message.

    Returns:
        FileUploadResponse with the public URL, name, size and MIME type

    Raises:
        HTTPException 400: If no file was sent
        HTTPException 413: If file exceeds the size limit
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    service = get_file_service(request)
    content = await file.read()
    mime_type = file.content_type or "application/octet-stream"

    try:
        stored = service.save_file(
            filename=file.filename or "unnamed",
            content=content,
            mime_type=mime_type,
        )
    except FileTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))

    url = f"/uploads/{stored.stored_filename}"

    logger.info(
        f"File uploaded: {stored.original_filename} "
        f"({stored.size_bytes} bytes) as {stored.stored_filename}"
    )

    return FileUploadResponse(
        filename=stored.stored_filename,
        originalname=stored.original_filename,
        url=url,
        name=stored.original_filename,
        size=stored.size_bytes,
        mimeType=stored.mime_type,
        type=get_message_type(stored.mime_type),
    )


@router.get("/uploads/{filename}")
async def download_file(request: Request, filename: str) -> FileResponse:
    """Serve a previously uploaded file.

    Raises:
        HTTPException 404: If file not found
    """
    file_path = get_file_service(request).get_file_path(filename)
    if file_path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path=file_path)
