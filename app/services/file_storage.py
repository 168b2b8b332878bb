"""
Local disk storage for uploaded files.

Files land under settings.UPLOAD_DIR/<area>/ with a generated name; the
database keeps the path and the original file name.
"""
import os
import shutil
import uuid
from typing import Optional, Set, Tuple

from fastapi import HTTPException, UploadFile

from app.core.config import settings
from app.db.models import FileType

STEP_EXTENSIONS = {".step", ".stp"}
PDF_EXTENSIONS = {".pdf"}
EXCEL_EXTENSIONS = {".xls", ".xlsx", ".csv"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}

RFQ_EXTENSIONS = STEP_EXTENSIONS | PDF_EXTENSIONS | EXCEL_EXTENSIONS | IMAGE_EXTENSIONS | {".iges", ".igs", ".dxf", ".dwg"}
DOCUMENT_EXTENSIONS = PDF_EXTENSIONS | IMAGE_EXTENSIONS | EXCEL_EXTENSIONS | {".doc", ".docx"}
ATTACHMENT_EXTENSIONS = RFQ_EXTENSIONS | DOCUMENT_EXTENSIONS | {".txt", ".zip"}

PDF_MAGIC = b"%PDF"


def extension_of(filename: Optional[str]) -> str:
    return os.path.splitext(filename or "")[1].lower()


def classify(filename: Optional[str]) -> str:
    """Map a file name to the stored FileType value."""
    ext = extension_of(filename)
    if ext in STEP_EXTENSIONS:
        return FileType.STEP.value
    if ext in PDF_EXTENSIONS:
        return FileType.PDF.value
    if ext in EXCEL_EXTENSIONS:
        return FileType.EXCEL.value
    if ext in IMAGE_EXTENSIONS:
        return FileType.IMAGE.value
    # CAD exchange formats are stored alongside STEP models
    return FileType.STEP.value


def is_pdf(filename: Optional[str], content: bytes) -> bool:
    """PDF by extension and by magic bytes."""
    return extension_of(filename) in PDF_EXTENSIONS and content[:4] == PDF_MAGIC


async def save_upload(
    file: UploadFile,
    area: str,
    allowed_extensions: Optional[Set[str]] = None,
) -> Tuple[str, int, bytes]:
    """
    Validate and write an upload to disk.

    Returns (storage_path, size, content).
    """
    ext = extension_of(file.filename)
    if allowed_extensions is not None and ext not in allowed_extensions:
        raise HTTPException(
            status_code=400,
            detail=f"File type not allowed. Allowed: {', '.join(sorted(allowed_extensions))}",
        )

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="File too large")

    storage_dir = os.path.join(settings.UPLOAD_DIR, area)
    os.makedirs(storage_dir, exist_ok=True)
    storage_path = os.path.join(storage_dir, f"{uuid.uuid4().hex}{ext}")

    with open(storage_path, "wb") as f:
        f.write(content)

    return storage_path, len(content), content


def copy_stored_file(source_path: str, area: str) -> str:
    """Duplicate a stored file under a fresh name; used when reordering."""
    storage_dir = os.path.join(settings.UPLOAD_DIR, area)
    os.makedirs(storage_dir, exist_ok=True)
    target = os.path.join(storage_dir, f"{uuid.uuid4().hex}{extension_of(source_path)}")
    shutil.copyfile(source_path, target)
    return target


def ensure_exists(path: Optional[str]) -> str:
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found on server")
    return path
