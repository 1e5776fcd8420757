# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    user, division, rating_cycle, performance_form, indicator,
    attachment, audit_log, notification
)

# Explicit class exports for cleaner imports
from .user import User, Role
from .division import Division
from .rating_cycle import RatingCycle
from .performance_form import PerformanceForm, FormStatus, AdjectivalRating
from .indicator import Indicator, IndicatorCategory
from .attachment import Attachment
from .audit_log import AuditLog
from .notification import Notification

__all__ = [
    "User",
    "Role",
    "Division",
    "RatingCycle",
    "PerformanceForm",
    "FormStatus",
    "AdjectivalRating",
    "Indicator",
    "IndicatorCategory",
    "Attachment",
    "AuditLog",
    "Notification",
]
