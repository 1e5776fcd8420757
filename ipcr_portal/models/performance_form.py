from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from ipcr_portal.database import Base


class FormStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    FINALIZED = "finalized"
    RETURNED = "returned"


# States in which the owner may still change indicators
EDITABLE_STATUSES = (FormStatus.DRAFT.value, FormStatus.RETURNED.value)

# States in which reviewers enter scores
RATING_STATUSES = (FormStatus.SUBMITTED.value, FormStatus.REVIEWED.value)


class AdjectivalRating(str, enum.Enum):
    OUTSTANDING = "Outstanding"
    VERY_SATISFACTORY = "Very Satisfactory"
    SATISFACTORY = "Satisfactory"
    UNSATISFACTORY = "Unsatisfactory"
    POOR = "Poor"


class PerformanceForm(Base):
    """An employee's IPCR for one rating cycle."""
    __tablename__ = "ipcr_forms"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    cycle_id = Column(Integer, ForeignKey("rating_cycles.id"), nullable=False, index=True)
    immediate_supervisor_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    status = Column(String, default=FormStatus.DRAFT.value, nullable=False, index=True)
    # Bumped on every indicator write and transition; finalize may reject a stale read
    version = Column(Integer, default=1, nullable=False)

    review_comments = Column(Text, nullable=True)
    final_remarks = Column(Text, nullable=True)

    final_average_rating = Column(Numeric(5, 3), nullable=True)
    adjectival_rating = Column(String, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("employee_id", "cycle_id", name="uq_ipcr_forms_employee_cycle"),
    )

    employee = relationship("User", foreign_keys=[employee_id], back_populates="ipcr_forms")
    immediate_supervisor = relationship("User", foreign_keys=[immediate_supervisor_id])
    cycle = relationship("RatingCycle")
    indicators = relationship("Indicator", back_populates="form", cascade="all, delete-orphan")
    attachments = relationship("Attachment", back_populates="form")

    def __repr__(self):
        return f"<PerformanceForm {self.id} employee={self.employee_id} cycle={self.cycle_id} {self.status}>"

    @property
    def is_finalized(self) -> bool:
        return self.status == FormStatus.FINALIZED.value

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES
