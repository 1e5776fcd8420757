import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ipcr_portal.core.config import settings
from ipcr_portal.core.exceptions import ForbiddenError, NotFoundError
from ipcr_portal.core.limiter import limiter
from ipcr_portal.core.permissions import Actor
from ipcr_portal.database import get_db
from ipcr_portal.models.attachment import Attachment
from ipcr_portal.routers.auth_deps import get_blob_store, get_current_actor
from ipcr_portal.routers.responses import respond
from ipcr_portal.services.evidence import EvidenceQuotaManager
from ipcr_portal.services.storage import LocalBlobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ipcr", tags=["ipcr-attachments"])


@router.get("/attachments/download")
def download_attachment(
    path: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
    db: Session = Depends(get_db),
    store: LocalBlobStore = Depends(get_blob_store)
):
    """Serve a file behind a signed link; the link itself is the credential."""
    if not store.verify_signature(path, expires, signature):
        raise ForbiddenError("Download link is invalid or has expired")

    attachment = db.query(Attachment).filter(Attachment.storage_path == path).first()
    if not attachment or not store.exists(path):
        raise NotFoundError("File not found")
    return FileResponse(
        store.resolve(path),
        media_type=attachment.file_type,
        filename=attachment.file_name
    )


@router.get("/{form_id}/attachments")
def list_attachments(
    form_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_blob_store)
):
    return respond(EvidenceQuotaManager(db, store).list_attachments(actor, form_id))


@router.post("/{form_id}/attachments")
@limiter.limit(settings.upload_rate_limit)
async def upload_attachment(
    request: Request,
    form_id: int,
    file: UploadFile = File(...),
    indicator_id: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_blob_store)
):
    # One byte past the limit is enough for the size check to reject it
    content = await file.read(settings.evidence.max_file_size + 1)
    logger.info(f"Evidence upload for IPCR {form_id}: {file.filename} ({len(content)} bytes)")
    result = EvidenceQuotaManager(db, store).upload(
        actor,
        form_id,
        file_name=file.filename or "file",
        content_type=file.content_type,
        content=content,
        indicator_id=indicator_id
    )
    return respond(result, success_code=201)


@router.delete("/attachments/{attachment_id}")
def delete_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_blob_store)
):
    return respond(EvidenceQuotaManager(db, store).delete(actor, attachment_id))
