"""
Messaging API - threaded direct messages between portal users and S-Hub staff.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import User, NotificationType
from app.db.storage import Storage
from app.core.rbac import get_current_user, is_admin_user
from app.api.schemas import MessageOut, AttachmentOut
from app.services import file_storage

router = APIRouter(prefix="/api/messages", tags=["Messages"])


# ============= SCHEMAS =============

class ThreadSummary(BaseModel):
    thread_id: str
    category: str
    subject: Optional[str] = None
    other_user_id: int
    other_user_name: Optional[str] = None
    other_user_email: Optional[str] = None
    last_message: str
    last_message_at: Optional[datetime] = None
    unread_count: int
    message_count: int


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    receiver_id: Optional[int] = None
    thread_id: Optional[str] = None
    category: str = "general"
    subject: Optional[str] = Field(None, max_length=255)
    related_type: Optional[str] = None
    related_id: Optional[int] = None


# ============= HELPERS =============

def resolve_receiver(storage: Storage, sender: User, data: SendMessageRequest) -> int:
    """
    Explicit receiver first, then the other participant of the given thread.
    Customers and suppliers writing without a receiver reach the first admin.
    """
    if data.receiver_id is not None:
        if not storage.get_user(data.receiver_id):
            raise HTTPException(status_code=404, detail="Receiver not found")
        return data.receiver_id

    if data.thread_id:
        for message in storage.get_thread_messages(data.thread_id):
            other = message.receiver_id if message.sender_id == sender.id else message.sender_id
            if other != sender.id:
                return other

    if not is_admin_user(sender):
        admins = storage.get_admin_users()
        if admins:
            return admins[0].id
        raise HTTPException(status_code=400, detail="No admin available to receive messages")

    raise HTTPException(status_code=400, detail="Receiver is required")


def require_participant(storage: Storage, user: User, thread_id: str) -> None:
    if not storage.is_thread_participant(user.id, thread_id):
        raise HTTPException(status_code=403, detail="Access denied")


# ============= ROUTES =============

@router.get("/threads", response_model=List[ThreadSummary])
async def list_threads(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return Storage(db).list_threads(user)


@router.get("/threads/{thread_id}", response_model=List[MessageOut])
async def get_thread(
    thread_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    require_participant(storage, user, thread_id)
    return storage.get_thread_messages(thread_id)


@router.post("/threads/{thread_id}/read")
async def mark_thread_read(
    thread_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mark everything addressed to the caller in the thread as read."""
    storage = Storage(db)
    require_participant(storage, user, thread_id)
    count = storage.mark_thread_read(user.id, thread_id)
    db.commit()
    return {"marked_read": count}


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return {"unread_count": Storage(db).unread_message_count(user.id)}


@router.post("", response_model=MessageOut, status_code=201)
async def send_message(
    request: Request,
    data: SendMessageRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    receiver_id = resolve_receiver(storage, user, data)
    if receiver_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot send a message to yourself")

    try:
        message = storage.send_message(
            user,
            receiver_id,
            data.content,
            category=data.category,
            subject=data.subject,
            thread_id=data.thread_id,
            related_type=data.related_type,
            related_id=data.related_id,
        )
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    storage.create_notification(
        receiver_id, NotificationType.MESSAGE.value,
        f"New message from {user.name or user.email}",
        data.content[:200],
        related_id=message.id,
    )
    storage.audit("send_message", user_id=user.id, entity_type="message", entity_id=message.id,
                  details={"thread_id": message.thread_id, "receiver_id": receiver_id},
                  ip_address=request.client.host if request.client else None)
    db.commit()
    db.refresh(message)
    return message


@router.post("/{message_id}/attachments", response_model=List[AttachmentOut], status_code=201)
async def upload_attachments(
    message_id: int,
    files: List[UploadFile] = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Only the sender may attach files to a message."""
    storage = Storage(db)
    message = storage.get_message(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message.sender_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")

    attachments = []
    for upload in files:
        path, size, _ = await file_storage.save_upload(upload, "messages", file_storage.ATTACHMENT_EXTENSIONS)
        attachments.append(storage.add_attachment(
            message,
            file_name=path.rsplit("/", 1)[-1],
            original_name=upload.filename or "unnamed",
            file_path=path,
            file_size=size,
            mime_type=upload.content_type,
        ))
    db.commit()
    for attachment in attachments:
        db.refresh(attachment)
    return attachments


@router.get("/attachments/{attachment_id}")
async def download_attachment(
    attachment_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    storage = Storage(db)
    attachment = storage.get_attachment(attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="Attachment not found")
    message = storage.get_message(attachment.message_id)
    if user.id not in (message.sender_id, message.receiver_id):
        raise HTTPException(status_code=403, detail="Access denied")

    path = file_storage.ensure_exists(attachment.file_path)
    return FileResponse(path, filename=attachment.original_name, media_type=attachment.mime_type)
