"""
Files API - uploads linked to an RFQ, order, quality check or supplier quote,
and authorized downloads.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File, Form
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, LinkedToType
from app.db.storage import Storage
from app.core.rbac import get_current_user, is_admin_user
from app.api.schemas import FileOut
from app.services import file_storage

router = APIRouter(prefix="/api/files", tags=["Files"])


def check_upload_allowed(storage: Storage, user: User, kind: LinkedToType, target_id: int) -> None:
    """Raise 404/403 unless the user may attach files to the target."""
    target = storage.resolve_file_target(kind.value, target_id)
    if target is None:
        raise HTTPException(status_code=404, detail=f"{kind.value.replace('_', ' ').capitalize()} not found")
    if is_admin_user(user):
        return

    if kind == LinkedToType.RFQ:
        allowed = storage.can_access_rfq(user, target)
    elif kind == LinkedToType.ORDER:
        allowed = storage.can_access_order(user, target)
    elif kind == LinkedToType.QUALITY_CHECK:
        allowed = False
    elif kind == LinkedToType.SUPPLIER_QUOTE:
        allowed = target.supplier_id in storage.company_user_ids(user)
    else:
        allowed = False
    if not allowed:
        raise HTTPException(status_code=403, detail="Access denied")


@router.post("/upload", response_model=List[FileOut], status_code=201)
async def upload_files(
    request: Request,
    linked_to_type: str = Form(...),
    linked_to_id: int = Form(...),
    files: List[UploadFile] = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        kind = LinkedToType(linked_to_type)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"linked_to_type must be one of: {', '.join(t.value for t in LinkedToType)}",
        )
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")

    storage = Storage(db)
    check_upload_allowed(storage, user, kind, linked_to_id)

    stored = []
    for upload in files:
        path, size, _ = await file_storage.save_upload(upload, kind.value, file_storage.ATTACHMENT_EXTENSIONS)
        stored.append(storage.create_file(
            user_id=user.id,
            file_name=upload.filename or "unnamed",
            file_url=path,
            file_size=size,
            file_type=file_storage.classify(upload.filename),
            linked_to_type=kind.value,
            linked_to_id=linked_to_id,
        ))

    storage.audit("upload_files", user_id=user.id, entity_type=kind.value, entity_id=linked_to_id,
                  details={"files": [f.file_name for f in stored]},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    for f in stored:
        db.refresh(f)
    return stored


@router.get("/{file_id}/download")
async def download_file(
    file_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    stored = storage.get_file(file_id)
    if not stored:
        raise HTTPException(status_code=404, detail="File not found")
    if not storage.can_access_file(user, stored, is_admin=is_admin_user(user)):
        raise HTTPException(status_code=403, detail="Access denied")

    path = file_storage.ensure_exists(stored.file_url)
    return FileResponse(path, filename=stored.file_name)
