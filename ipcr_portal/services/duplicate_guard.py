from typing import Optional

from sqlalchemy.orm import Session

from ipcr_portal.models.performance_form import PerformanceForm


class DuplicateGuard:
    """
    Friendly pre-check for "one IPCR per employee per cycle".

    The unique constraint uq_ipcr_forms_employee_cycle is what actually
    enforces the rule; this lookup only lets the caller offer the existing
    form instead of surfacing a constraint violation.
    """

    def __init__(self, db: Session):
        self.db = db

    def exists(self, employee_id: int, cycle_id: int) -> Optional[int]:
        row = (
            self.db.query(PerformanceForm.id)
            .filter(
                PerformanceForm.employee_id == employee_id,
                PerformanceForm.cycle_id == cycle_id
            )
            .first()
        )
        return row[0] if row else None
