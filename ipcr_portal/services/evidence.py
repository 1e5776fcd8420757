"""
Evidence Service

Supporting files for an IPCR, attached either to the form or to one of its
indicators. Blob and metadata are kept consistent by ordering:

- upload writes the blob first, then the metadata row; a failed metadata
  write deletes the blob again
- delete removes the blob first and drops the row only after the store
  confirmed; a refused or failed blob delete keeps the row
"""
from collections import defaultdict
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ipcr_portal.core.config import EvidenceSettings, settings
from ipcr_portal.core.exceptions import ForbiddenError, NotFoundError, StorageError, ValidationError
from ipcr_portal.core.permissions import Action, Actor, authorize, is_allowed, require_actor
from ipcr_portal.models.attachment import Attachment
from ipcr_portal.models.indicator import Indicator
from ipcr_portal.models.performance_form import PerformanceForm
from ipcr_portal.schemas.attachment import AttachmentListing, AttachmentResponse, DeleteResult
from ipcr_portal.services.audit import AuditService
from ipcr_portal.services.base import BaseService, service_action
from ipcr_portal.services.storage import LocalBlobStore, build_storage_path


class EvidenceQuotaManager(BaseService):

    def __init__(self, db, store: LocalBlobStore, evidence: Optional[EvidenceSettings] = None):
        super().__init__(db)
        self.store = store
        self.evidence = evidence or settings.evidence
        self.audit = AuditService(db)

    @service_action
    def list_attachments(self, actor: Optional[Actor], form_id: int) -> AttachmentListing:
        form = self._load_form(form_id)
        authorize(actor, Action.VIEW_FORM, form.employee_id, form.employee.division_id)

        rows = (
            self.db.query(Attachment)
            .filter(Attachment.form_id == form.id)
            .order_by(Attachment.created_at.desc(), Attachment.id.desc())
            .all()
        )
        form_level = []
        per_indicator = defaultdict(list)
        for row in rows:
            item = self._response(row)
            if row.indicator_id is None:
                form_level.append(item)
            else:
                per_indicator[row.indicator_id].append(item)
        return AttachmentListing(form_attachments=form_level, indicator_attachments=dict(per_indicator))

    @service_action
    def upload(
        self,
        actor: Optional[Actor],
        form_id: int,
        file_name: str,
        content_type: Optional[str],
        content: bytes,
        indicator_id: Optional[int] = None
    ) -> AttachmentResponse:
        actor = require_actor(actor)
        form = self._load_form(form_id, lock=True)
        authorize(actor, Action.UPLOAD_EVIDENCE, form.employee_id, form.employee.division_id)
        if indicator_id is not None:
            indicator = self.db.get(Indicator, indicator_id)
            if not indicator or indicator.form_id != form.id:
                raise NotFoundError("Indicator not found on this IPCR")

        if len(content) > self.evidence.max_file_size:
            raise ValidationError(
                f"File size exceeds {self.evidence.max_file_size // (1024 * 1024)}MB limit",
                details={"file_size": len(content), "max_file_size": self.evidence.max_file_size}
            )
        if form.is_finalized:
            raise ValidationError("Cannot upload attachments to a finalized IPCR")

        limit = self.evidence.indicator_limit if indicator_id is not None else self.evidence.form_limit
        count = self._count(form.id, indicator_id)
        if count >= limit:
            where = "per output" if indicator_id is not None else "for the IPCR"
            raise ValidationError(
                f"Maximum {limit} files allowed {where}",
                details={"limit": limit, "current": count}
            )

        content_type = (content_type or "").split(";")[0].strip().lower()
        if not self._accepts(content_type):
            raise ValidationError(
                "Only image and PDF files are accepted",
                details={"content_type": content_type}
            )

        scope = "indicator" if indicator_id is not None else "form"
        path = build_storage_path(actor.user_id, scope, indicator_id or form.id, file_name)
        self.store.put(path, content, content_type)

        try:
            attachment = Attachment(
                form_id=form.id,
                indicator_id=indicator_id,
                file_name=file_name,
                file_size=len(content),
                file_type=content_type,
                storage_path=path,
                uploaded_by=actor.user_id
            )
            self.db.add(attachment)
            self.db.flush()
            self.audit.log_action(
                "ipcr.attachment_uploaded", "ipcr_form", form.id, actor,
                details={"attachment_id": attachment.id, "indicator_id": indicator_id, "file_name": file_name}
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._discard_blob(path)
            self.log_error(f"Attachment metadata insert failed for {path}: {e}")
            raise StorageError("Failed to save attachment record") from e

        self.log_info(f"Attachment {attachment.id} uploaded to IPCR {form.id} by user {actor.user_id}")
        return self._response(attachment)

    @service_action
    def delete(self, actor: Optional[Actor], attachment_id: int) -> DeleteResult:
        actor = require_actor(actor)
        attachment = self.db.get(Attachment, attachment_id)
        if not attachment:
            raise NotFoundError("Attachment not found")
        if not self._may_delete(actor, attachment):
            raise ForbiddenError(
                "Only the uploader can delete this file",
                details={"attachment_id": attachment_id}
            )
        if attachment.form.is_finalized:
            raise ValidationError("Cannot delete attachments of a finalized IPCR")

        # StorageError propagates here and the row stays
        self.store.delete(attachment.storage_path, actor)

        self.db.delete(attachment)
        self.audit.log_action(
            "ipcr.attachment_deleted", "ipcr_form", attachment.form_id, actor,
            details={"attachment_id": attachment_id, "storage_path": attachment.storage_path}
        )
        return DeleteResult(attachment_id=attachment_id)

    def fresh_download_url(self, storage_path: str) -> str:
        return self.store.signed_url(storage_path, self.evidence.signed_url_ttl_seconds)

    def _accepts(self, content_type: str) -> bool:
        # Entries ending in "/" match a whole family, the rest match exactly
        for accepted in self.evidence.accepted_types:
            if accepted.endswith("/"):
                if content_type.startswith(accepted) and len(content_type) > len(accepted):
                    return True
            elif content_type == accepted:
                return True
        return False

    def _may_delete(self, actor: Actor, attachment: Attachment) -> bool:
        if attachment.uploaded_by == actor.user_id:
            return True
        return self.evidence.allow_admin_delete and is_allowed(actor, Action.DELETE_ANY_EVIDENCE)

    def _load_form(self, form_id: int, lock: bool = False) -> PerformanceForm:
        query = self.db.query(PerformanceForm).filter(PerformanceForm.id == form_id)
        if lock:
            query = query.with_for_update()
        form = query.first()
        if not form:
            raise NotFoundError("IPCR not found")
        return form

    def _count(self, form_id: int, indicator_id: Optional[int]) -> int:
        query = self.db.query(func.count(Attachment.id)).filter(Attachment.form_id == form_id)
        if indicator_id is None:
            query = query.filter(Attachment.indicator_id.is_(None))
        else:
            query = query.filter(Attachment.indicator_id == indicator_id)
        return query.scalar() or 0

    def _discard_blob(self, path: str) -> None:
        try:
            self.store.delete(path)
        except StorageError:
            self.log_error(f"Compensating delete failed, orphaned blob at {path}")

    def _response(self, attachment: Attachment) -> AttachmentResponse:
        response = AttachmentResponse.model_validate(attachment)
        response.download_url = self.fresh_download_url(attachment.storage_path)
        return response
