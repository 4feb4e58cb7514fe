from pathlib import Path
from uuid import uuid4

from fastapi import HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from tablet_loans.core.config import settings
from tablet_loans.core.logging import get_logger

logger = get_logger("api.uploads")


async def _read_limited(file: UploadFile) -> bytes:
    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.MAX_UPLOAD_SIZE_MB} MB limit",
        )
    return content


async def read_csv_upload(file: UploadFile) -> str:
    """Read an uploaded CSV file as text."""
    content = await _read_limited(file)
    if not content.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a UTF-8 encoded CSV"
        )


async def save_loss_document(file: UploadFile) -> str:
    """Store a loss report attachment under a random name and return its path."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in settings.ALLOWED_DOCUMENT_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported document type: {ext or 'none'}",
        )
    content = await _read_limited(file)

    upload_dir = Path(settings.UPLOAD_DIR) / "loss_reports"
    await run_in_threadpool(upload_dir.mkdir, parents=True, exist_ok=True)
    path = upload_dir / f"{uuid4().hex}{ext}"
    await run_in_threadpool(path.write_bytes, content)

    logger.info(f"Loss document stored: {path} ({len(content)} bytes)")
    return str(path)


async def remove_loss_document(path: str) -> None:
    await run_in_threadpool(Path(path).unlink, missing_ok=True)
    logger.info(f"Loss document removed: {path}")
