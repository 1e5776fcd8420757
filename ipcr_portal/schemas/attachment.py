from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Dict, List, Optional


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_id: int
    indicator_id: Optional[int] = None
    file_name: str
    file_size: int
    file_type: str
    storage_path: str
    uploaded_by: int
    created_at: Optional[datetime] = None
    # Generated per request, never stored
    download_url: Optional[str] = None


class AttachmentListing(BaseModel):
    form_attachments: List[AttachmentResponse] = []
    indicator_attachments: Dict[int, List[AttachmentResponse]] = {}


class DeleteResult(BaseModel):
    attachment_id: int
    deleted: bool = True
