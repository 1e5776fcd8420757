"""
User profile as read from the identity collaborator.
Role and division are looked up on every privileged request.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from ipcr_portal.database import Base


class Role(str, enum.Enum):
    """
    Office roles, persisted verbatim.

    - EMPLOYEE: files their own IPCR
    - DIVISION_CHIEF: endorses or returns IPCRs of their division
    - HR_MANAGER / HEAD_OF_OFFICE: office-wide review, rating and finalization
    """
    EMPLOYEE = "employee"
    DIVISION_CHIEF = "divisionChief"
    HR_MANAGER = "hrManager"
    HEAD_OF_OFFICE = "headOfOffice"

    @property
    def is_hr_manager(self) -> bool:
        return self in (Role.HR_MANAGER, Role.HEAD_OF_OFFICE)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    position = Column(String, nullable=True)

    role = Column(
        Enum(Role, values_callable=lambda roles: [r.value for r in roles], name="user_role"),
        default=Role.EMPLOYEE,
        nullable=False
    )
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=True, index=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    division = relationship("Division", back_populates="members")
    ipcr_forms = relationship("PerformanceForm", foreign_keys="PerformanceForm.employee_id", back_populates="employee")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"
