"""
Rating Cycle Registry

Reads the active SPMS cycle for the workflow and lets HR managers maintain
the SPMS calendar. The active cycle is queried fresh on every call.
"""
from typing import List, Optional

from ipcr_portal.core.exceptions import NotFoundError, ValidationError
from ipcr_portal.core.permissions import Action, Actor, authorize
from ipcr_portal.models.rating_cycle import RatingCycle
from ipcr_portal.schemas.cycle import CycleCreate, CycleResponse, CycleUpdate
from ipcr_portal.services.audit import AuditService
from ipcr_portal.services.base import BaseService, service_action


class RatingCycleRegistry(BaseService):

    def get_active_cycle(self) -> Optional[RatingCycle]:
        return self.db.query(RatingCycle).filter(RatingCycle.is_active.is_(True)).first()

    def get_cycle(self, cycle_id: int) -> Optional[RatingCycle]:
        return self.db.get(RatingCycle, cycle_id)

    @service_action
    def list_cycles(self) -> List[CycleResponse]:
        cycles = self.db.query(RatingCycle).order_by(RatingCycle.period_start.desc()).all()
        return [CycleResponse.model_validate(c) for c in cycles]

    @service_action
    def active_cycle(self) -> Optional[CycleResponse]:
        cycle = self.get_active_cycle()
        return CycleResponse.model_validate(cycle) if cycle else None

    @service_action
    def create_cycle(self, actor: Optional[Actor], payload: CycleCreate) -> CycleResponse:
        actor = authorize(actor, Action.MANAGE_CYCLES)
        if payload.is_active:
            self._deactivate_all()
        cycle = RatingCycle(
            name=payload.name,
            period_start=payload.period_start,
            period_end=payload.period_end,
            is_active=payload.is_active
        )
        self.db.add(cycle)
        self.db.flush()
        AuditService(self.db).log_action(
            "spms_cycle.created", "rating_cycle", cycle.id, actor,
            details={"name": cycle.name, "is_active": cycle.is_active}
        )
        self.log_info(f"Rating cycle {cycle.id} created by user {actor.user_id}")
        return CycleResponse.model_validate(cycle)

    @service_action
    def update_cycle(self, actor: Optional[Actor], cycle_id: int, payload: CycleUpdate) -> CycleResponse:
        actor = authorize(actor, Action.MANAGE_CYCLES)
        cycle = self.get_cycle(cycle_id)
        if not cycle:
            raise NotFoundError("Rating cycle not found")

        changes = payload.model_dump(exclude_unset=True)
        start = changes.get("period_start", cycle.period_start)
        end = changes.get("period_end", cycle.period_end)
        if end < start:
            raise ValidationError("period_end must not be earlier than period_start")

        if changes.get("is_active"):
            self._deactivate_all(except_id=cycle.id)
        for field, value in changes.items():
            setattr(cycle, field, value)
        self.db.flush()

        AuditService(self.db).log_action(
            "spms_cycle.updated", "rating_cycle", cycle.id, actor, details=changes
        )
        return CycleResponse.model_validate(cycle)

    @service_action
    def set_active_cycle(self, actor: Optional[Actor], cycle_id: int) -> CycleResponse:
        actor = authorize(actor, Action.MANAGE_CYCLES)
        cycle = self.get_cycle(cycle_id)
        if not cycle:
            raise NotFoundError("Rating cycle not found")

        previous = self.get_active_cycle()
        self._deactivate_all(except_id=cycle.id)
        cycle.is_active = True
        self.db.flush()

        AuditService(self.db).log_action(
            "spms_cycle.activated", "rating_cycle", cycle.id, actor,
            before_state={"active_cycle_id": previous.id if previous else None},
            after_state={"active_cycle_id": cycle.id}
        )
        self.log_info(f"Rating cycle {cycle.id} activated")
        return CycleResponse.model_validate(cycle)

    def _deactivate_all(self, except_id: Optional[int] = None) -> None:
        query = self.db.query(RatingCycle).filter(RatingCycle.is_active.is_(True))
        if except_id is not None:
            query = query.filter(RatingCycle.id != except_id)
        query.update({RatingCycle.is_active: False}, synchronize_session="fetch")
        self.db.flush()
