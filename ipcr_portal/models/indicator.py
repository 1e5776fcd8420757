from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from ipcr_portal.database import Base


class IndicatorCategory(str, enum.Enum):
    STRATEGIC = "strategic"
    CORE = "core"
    SUPPORT = "support"


# Display order of categories on the form
CATEGORY_ORDER = {
    IndicatorCategory.STRATEGIC.value: 1,
    IndicatorCategory.CORE.value: 2,
    IndicatorCategory.SUPPORT.value: 3,
}

SCORE_FIELDS = ("quantity_score", "quality_score", "timeliness_score")


class Indicator(Base):
    """A target/output line on an IPCR, rated on quantity, quality and timeliness."""
    __tablename__ = "ipcr_indicators"

    id = Column(Integer, primary_key=True, index=True)
    form_id = Column(Integer, ForeignKey("ipcr_forms.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String, nullable=False)
    output_order = Column(Integer, default=0, nullable=False)

    description = Column(Text, nullable=False)  # major final output
    indicator_text = Column(Text, nullable=True)  # success indicator (target + measure)
    actual_accomplishment = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)

    quantity_score = Column(Integer, nullable=True)
    quality_score = Column(Integer, nullable=True)
    timeliness_score = Column(Integer, nullable=True)
    average_score = Column(Numeric(4, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    form = relationship("PerformanceForm", back_populates="indicators")
    attachments = relationship("Attachment", back_populates="indicator")

    def __repr__(self):
        return f"<Indicator {self.id} form={self.form_id} {self.category}>"

    @property
    def scores(self):
        return tuple(getattr(self, field) for field in SCORE_FIELDS)

    @property
    def is_fully_scored(self) -> bool:
        return all(score is not None and 1 <= score <= 5 for score in self.scores)
