from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ipcr_portal.database import Base


class Attachment(Base):
    """
    Metadata for an evidence file held in the blob store.
    A null indicator_id marks a form-level attachment.
    """
    __tablename__ = "ipcr_attachments"

    id = Column(Integer, primary_key=True, index=True)
    form_id = Column(Integer, ForeignKey("ipcr_forms.id"), nullable=False, index=True)
    indicator_id = Column(Integer, ForeignKey("ipcr_indicators.id"), nullable=True, index=True)

    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String, nullable=False)
    storage_path = Column(String, nullable=False, unique=True)

    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    form = relationship("PerformanceForm", back_populates="attachments")
    indicator = relationship("Indicator", back_populates="attachments")
    uploader = relationship("User")

    @property
    def scope(self) -> str:
        return "indicator" if self.indicator_id is not None else "form"
