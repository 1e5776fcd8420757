from sqlalchemy import Column, Integer, String, Date, Boolean, DateTime, Index, true
from sqlalchemy.sql import func
from ipcr_portal.database import Base


class RatingCycle(Base):
    """An SPMS rating period. Only one cycle may be active at a time."""
    __tablename__ = "rating_cycles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "uq_rating_cycles_single_active",
            "is_active",
            unique=True,
            sqlite_where=(is_active == true()),
            postgresql_where=(is_active == true()),
        ),
    )

    def __repr__(self):
        return f"<RatingCycle {self.name} active={self.is_active}>"
