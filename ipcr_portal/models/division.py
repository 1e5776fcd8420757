from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ipcr_portal.database import Base


class Division(Base):
    __tablename__ = "divisions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    code = Column(String, nullable=False, unique=True)  # Short code like "ADM", "TAX"
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("User", back_populates="division")

    def __repr__(self):
        return f"<Division {self.code}: {self.name}>"
