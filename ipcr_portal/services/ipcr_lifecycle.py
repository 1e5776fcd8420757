"""
IPCR Lifecycle Service

Owns the performance form state machine:

    draft -> submitted -> reviewed -> finalized
                 |            |
                 +-> returned <+   (returned is editable like draft)

Every public method is a single unit of work wrapped by ``service_action``:
it either commits fully or is rolled back and reported as a failed
``ApiResponse``. Status changes are applied with a conditional UPDATE
(``WHERE status IN (...)``) so two racing transitions cannot both win; for
finalize that UPDATE is also the gate taken before the indicator snapshot is
read and scored.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ipcr_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from ipcr_portal.core.permissions import Action, Actor, Scope, authorize, require_actor, scope_for
from ipcr_portal.core.schemas import ApiResponse
from ipcr_portal.models.indicator import CATEGORY_ORDER, SCORE_FIELDS, Indicator
from ipcr_portal.models.performance_form import (
    EDITABLE_STATUSES, RATING_STATUSES, FormStatus, PerformanceForm,
)
from ipcr_portal.models.user import Role, User
from ipcr_portal.schemas.ipcr import (
    FinalizeResult, FormCreate, FormCreateResult, FormDetail, FormSummary,
    IndicatorBatchSave, IndicatorCreate, IndicatorResponse, IndicatorUpdate,
    RatingInput, TransitionResult,
)
from ipcr_portal.services import scoring
from ipcr_portal.services.audit import AuditService
from ipcr_portal.services.base import BaseService, service_action
from ipcr_portal.services.duplicate_guard import DuplicateGuard
from ipcr_portal.services.notification import NotificationService
from ipcr_portal.services.rating_cycles import RatingCycleRegistry

DUPLICATE_FORM_MESSAGE = "You already have an IPCR for this period. Would you like to edit it?"

# action -> (statuses it may start from, status it lands in)
TRANSITIONS = {
    Action.SUBMIT: (EDITABLE_STATUSES, FormStatus.SUBMITTED),
    Action.ENDORSE: ((FormStatus.SUBMITTED.value,), FormStatus.REVIEWED),
    Action.RETURN: ((FormStatus.SUBMITTED.value, FormStatus.REVIEWED.value), FormStatus.RETURNED),
    Action.FINALIZE: ((FormStatus.REVIEWED.value,), FormStatus.FINALIZED),
}

_REQUIRED_FIELDS = ("category", "description", "output_order")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_scores(values: Dict[str, Optional[int]]) -> None:
    for field in SCORE_FIELDS:
        value = values.get(field)
        if value is not None and not scoring.MIN_SCORE <= value <= scoring.MAX_SCORE:
            raise ValidationError("Scores must be between 1 and 5", details={field: value})


def _recompute_average(indicator: Indicator) -> None:
    indicator.average_score = scoring.average_score(*indicator.scores)


def _sorted_indicators(indicators: Iterable[Indicator]) -> List[Indicator]:
    return sorted(
        indicators,
        key=lambda i: (CATEGORY_ORDER.get(i.category, 99), i.output_order, i.id or 0)
    )


class PerformanceFormLifecycle(BaseService):
    """Creation, editing and review workflow of IPCR forms."""

    def __init__(
        self,
        db,
        registry: Optional[RatingCycleRegistry] = None,
        guard: Optional[DuplicateGuard] = None
    ):
        super().__init__(db)
        self.registry = registry or RatingCycleRegistry(db)
        self.guard = guard or DuplicateGuard(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @service_action
    def list_forms(
        self,
        actor: Optional[Actor],
        employee_id: Optional[int] = None,
        cycle_id: Optional[int] = None,
        status: Optional[str] = None
    ) -> List[FormSummary]:
        actor = require_actor(actor)
        query = self.db.query(PerformanceForm).join(User, PerformanceForm.employee_id == User.id)

        if employee_id is not None:
            target = self.db.get(User, employee_id)
            if not target:
                raise NotFoundError("Employee not found")
            authorize(actor, Action.VIEW_FORM, target.id, target.division_id)
            query = query.filter(PerformanceForm.employee_id == employee_id)
        else:
            scope = scope_for(actor.role, Action.VIEW_FORM)
            if scope == Scope.DIVISION:
                query = query.filter(User.division_id == actor.division_id)
            elif scope != Scope.ALL:
                query = query.filter(PerformanceForm.employee_id == actor.user_id)

        if cycle_id is not None:
            query = query.filter(PerformanceForm.cycle_id == cycle_id)
        if status and status != "all":
            query = query.filter(PerformanceForm.status == status)

        forms = query.order_by(PerformanceForm.created_at.desc(), PerformanceForm.id.desc()).all()
        counts = self._indicator_counts([f.id for f in forms])
        return [self._summary(f, counts.get(f.id, 0)) for f in forms]

    @service_action
    def get_form(self, actor: Optional[Actor], form_id: int) -> FormDetail:
        form = self._load_form(form_id)
        self._authorize_on(actor, Action.VIEW_FORM, form)
        return self._detail(form)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    @service_action
    def create_form(self, actor: Optional[Actor], payload: Optional[FormCreate] = None):
        payload = payload or FormCreate()
        actor = require_actor(actor)
        authorize(actor, Action.CREATE_FORM, owner_id=actor.user_id)

        active = self.registry.get_active_cycle()
        if active is None:
            raise ValidationError("No active SPMS cycle found")
        if payload.cycle_id is not None and payload.cycle_id != active.id:
            if self.registry.get_cycle(payload.cycle_id) is None:
                raise NotFoundError("Rating cycle not found")
            raise ValidationError("Selected SPMS cycle is not active")

        existing_id = self.guard.exists(actor.user_id, active.id)
        if existing_id is not None:
            return self._duplicate(existing_id)

        if payload.immediate_supervisor_id is not None and not self.db.get(User, payload.immediate_supervisor_id):
            raise NotFoundError("Immediate supervisor not found")

        form = PerformanceForm(
            employee_id=actor.user_id,
            cycle_id=active.id,
            status=FormStatus.DRAFT.value,
            immediate_supervisor_id=payload.immediate_supervisor_id
        )
        self.db.add(form)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent create; the constraint picked the winner
            self.db.rollback()
            existing_id = self.guard.exists(actor.user_id, active.id)
            if existing_id is None:
                raise
            return self._duplicate(existing_id)

        self.audit.log_action("ipcr.created", "ipcr_form", form.id, actor, details={"cycle_id": active.id})
        self.log_info(f"IPCR {form.id} created for employee {actor.user_id} in cycle {active.id}")
        return FormCreateResult(form_id=form.id, created=True)

    # ------------------------------------------------------------------
    # Indicator editing (owner, draft/returned only)
    # ------------------------------------------------------------------
    @service_action
    def add_indicator(self, actor: Optional[Actor], form_id: int, payload: IndicatorCreate) -> IndicatorResponse:
        form = self._load_form(form_id, lock=True)
        actor = self._authorize_on(actor, Action.EDIT_INDICATORS, form)
        self._require_editable(form)
        values = payload.model_dump()

        indicator = Indicator(form_id=form.id, **values)
        indicator.category = payload.category.value
        _recompute_average(indicator)
        self.db.add(indicator)
        self.db.flush()
        self._bump_version(form)

        self.audit.log_action(
            "ipcr.indicator_added", "ipcr_form", form.id, actor,
            details={"indicator_id": indicator.id, "category": indicator.category}
        )
        return IndicatorResponse.model_validate(indicator)

    @service_action
    def update_indicator(self, actor: Optional[Actor], indicator_id: int, payload: IndicatorUpdate) -> IndicatorResponse:
        indicator = self._load_indicator(indicator_id)
        form = self._load_form(indicator.form_id, lock=True)
        self._authorize_on(actor, Action.EDIT_INDICATORS, form)
        self._require_editable(form)

        changes = payload.model_dump(exclude_unset=True)
        cleared = [f for f in _REQUIRED_FIELDS if f in changes and changes[f] is None]
        if cleared:
            raise ValidationError("Required output fields cannot be cleared", details={"fields": cleared})
        for field, value in changes.items():
            if field == "category":
                value = value.value
            setattr(indicator, field, value)
        _recompute_average(indicator)
        self.db.flush()
        self._bump_version(form)
        return IndicatorResponse.model_validate(indicator)

    @service_action
    def delete_indicator(self, actor: Optional[Actor], indicator_id: int) -> Dict[str, int]:
        indicator = self._load_indicator(indicator_id)
        form = self._load_form(indicator.form_id, lock=True)
        actor = self._authorize_on(actor, Action.EDIT_INDICATORS, form)
        self._require_editable(form)
        self._require_no_evidence([indicator])

        self.db.delete(indicator)
        self.db.flush()
        self._bump_version(form)
        self.audit.log_action(
            "ipcr.indicator_deleted", "ipcr_form", form.id, actor, details={"indicator_id": indicator_id}
        )
        return {"indicator_id": indicator_id}

    @service_action
    def save_indicators(self, actor: Optional[Actor], form_id: int, payload: IndicatorBatchSave) -> List[IndicatorResponse]:
        """Upsert the given rows and drop the ones left out, as one save event."""
        form = self._load_form(form_id, lock=True)
        actor = self._authorize_on(actor, Action.EDIT_INDICATORS, form)
        self._require_editable(form)

        existing = {i.id: i for i in form.indicators}
        kept_ids = set()
        for item in payload.indicators:
            values = item.model_dump(exclude={"id"})
            values["category"] = item.category.value
            if item.id is not None:
                indicator = existing.get(item.id)
                if indicator is None:
                    raise NotFoundError(f"Indicator {item.id} does not belong to this IPCR")
                for field, value in values.items():
                    setattr(indicator, field, value)
                kept_ids.add(item.id)
            else:
                indicator = Indicator(form_id=form.id, **values)
                self.db.add(indicator)
            _recompute_average(indicator)

        removed = [i for i_id, i in existing.items() if i_id not in kept_ids]
        self._require_no_evidence(removed)
        removed_ids = [i.id for i in removed]
        for indicator in removed:
            self.db.delete(indicator)
        self.db.flush()
        self._bump_version(form)

        self.audit.log_action(
            "ipcr.outputs_saved", "ipcr_form", form.id, actor,
            details={"saved": len(payload.indicators), "removed": removed_ids}
        )
        rows = self.db.query(Indicator).filter(Indicator.form_id == form.id).all()
        return [IndicatorResponse.model_validate(i) for i in _sorted_indicators(rows)]

    @service_action
    def rate_indicator(self, actor: Optional[Actor], indicator_id: int, field: str, value: int) -> IndicatorResponse:
        """
        Write one score field. Reviewer edits land field by field; each write
        bumps the form version so a finalize holding an older version fails.
        """
        if field not in SCORE_FIELDS:
            raise ValidationError(f"Unknown score field: {field}")
        _validate_scores({field: value})

        indicator = self._load_indicator(indicator_id)
        form = self._load_form(indicator.form_id, lock=True)
        self._authorize_on(actor, Action.RATE, form)
        if form.is_finalized:
            raise ValidationError("Finalized IPCRs can no longer be changed")
        if form.status not in RATING_STATUSES:
            raise ValidationError("Scores can only be entered while the IPCR is under review")

        setattr(indicator, field, value)
        _recompute_average(indicator)
        self.db.flush()
        self._bump_version(form)
        return IndicatorResponse.model_validate(indicator)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    @service_action
    def submit(self, actor: Optional[Actor], form_id: int) -> TransitionResult:
        form = self._load_form(form_id)
        actor = self._authorize_on(actor, Action.SUBMIT, form)
        self._check_from_status(form, Action.SUBMIT)

        count = self.db.query(func.count(Indicator.id)).filter(Indicator.form_id == form.id).scalar()
        if not count:
            raise ValidationError("Add at least one output before submitting.")

        before = form.status
        self._transition(form, Action.SUBMIT, submitted_at=_now())
        self.audit.log_action(
            "ipcr.submitted", "ipcr_form", form.id, actor,
            before_state={"status": before}, after_state={"status": form.status}
        )
        NotificationService.notify_users(
            self.db,
            self._reviewer_ids(form),
            "IPCR Submitted",
            f"{form.employee.full_name or form.employee.email} submitted an IPCR for review.",
            link=f"/dashboard/ipcr/{form.id}"
        )
        return self._transition_result(form)

    @service_action
    def endorse(self, actor: Optional[Actor], form_id: int, comments: Optional[str] = None) -> TransitionResult:
        form = self._load_form(form_id)
        actor = self._authorize_on(actor, Action.ENDORSE, form)
        self._check_from_status(form, Action.ENDORSE)

        self._transition(form, Action.ENDORSE, reviewed_at=_now(), review_comments=comments or None)
        self.audit.log_action(
            "ipcr.reviewed", "ipcr_form", form.id, actor,
            before_state={"status": FormStatus.SUBMITTED.value}, after_state={"status": form.status}
        )
        return self._transition_result(form)

    @service_action
    def return_form(self, actor: Optional[Actor], form_id: int, remarks: str) -> TransitionResult:
        form = self._load_form(form_id)
        actor = self._authorize_on(actor, Action.RETURN, form)
        self._check_from_status(form, Action.RETURN)
        if not remarks or not remarks.strip():
            raise ValidationError("Remarks required for returning IPCR")

        before = form.status
        self._transition(form, Action.RETURN, final_remarks=remarks.strip())
        self.audit.log_action(
            "ipcr.returned", "ipcr_form", form.id, actor,
            details={"remarks": remarks.strip()},
            before_state={"status": before}, after_state={"status": form.status}
        )
        NotificationService.notify_users(
            self.db,
            [form.employee_id],
            "IPCR Returned",
            f"Your IPCR was returned for revision. Remarks: {remarks.strip()}",
            type="warning",
            link=f"/dashboard/ipcr/{form.id}"
        )
        return self._transition_result(form)

    @service_action
    def finalize(
        self,
        actor: Optional[Actor],
        form_id: int,
        ratings: Optional[List[RatingInput]] = None,
        final_remarks: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> FinalizeResult:
        form = self._load_form(form_id)
        actor = self._authorize_on(actor, Action.FINALIZE, form)
        self._check_from_status(form, Action.FINALIZE)
        if expected_version is not None and expected_version != form.version:
            raise ConflictError(
                "IPCR changed since it was loaded; reload and try again",
                details={"expected_version": expected_version, "current_version": form.version}
            )

        values = {"finalized_at": _now()}
        if final_remarks:
            values["final_remarks"] = final_remarks
        # Exclusive right to finalize; everything below reads after this gate
        self._transition(form, Action.FINALIZE, expected_version=expected_version, **values)

        indicators = self.db.query(Indicator).filter(Indicator.form_id == form.id).order_by(Indicator.id).all()
        if not indicators:
            raise ValidationError("IPCR has no outputs to rate")
        if ratings:
            self._apply_ratings(indicators, ratings)

        unscored = [i.id for i in indicators if not i.is_fully_scored]
        if unscored:
            raise ValidationError(
                "All outputs need quantity, quality and timeliness ratings (1-5) before finalizing",
                details={"unscored_indicator_ids": unscored}
            )

        averages, grand, band = scoring.score_form(i.scores for i in indicators)
        for indicator, avg in zip(indicators, averages):
            indicator.average_score = avg
        form.final_average_rating = grand
        form.adjectival_rating = band.value
        self.db.flush()

        self.audit.log_action(
            "ipcr.finalized", "ipcr_form", form.id, actor,
            details={"final_average_rating": str(grand), "adjectival_rating": band.value},
            before_state={"status": FormStatus.REVIEWED.value}, after_state={"status": form.status}
        )
        NotificationService.notify_users(
            self.db,
            [form.employee_id],
            "IPCR Finalized",
            f"Your IPCR has been finalized with a rating of {grand} ({band.value}).",
            type="success",
            link=f"/dashboard/ipcr/{form.id}"
        )
        self.log_info(f"IPCR {form.id} finalized: {grand} {band.value}")
        return FinalizeResult(
            form_id=form.id,
            status=FormStatus(form.status),
            version=form.version,
            final_average_rating=float(grand),
            adjectival_rating=band.value,
            indicator_averages=[float(a) for a in averages]
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _load_form(self, form_id: int, lock: bool = False) -> PerformanceForm:
        query = self.db.query(PerformanceForm).filter(PerformanceForm.id == form_id)
        if lock:
            query = query.with_for_update()
        form = query.first()
        if not form:
            raise NotFoundError("IPCR not found")
        return form

    def _load_indicator(self, indicator_id: int) -> Indicator:
        indicator = self.db.get(Indicator, indicator_id)
        if not indicator:
            raise NotFoundError("Indicator not found")
        return indicator

    def _authorize_on(self, actor: Optional[Actor], action: Action, form: PerformanceForm) -> Actor:
        return authorize(actor, action, form.employee_id, form.employee.division_id)

    def _require_editable(self, form: PerformanceForm) -> None:
        if form.is_finalized:
            raise ValidationError("Finalized IPCRs can no longer be changed")
        if not form.is_editable:
            raise ValidationError("Cannot edit submitted or reviewed IPCR")

    def _require_no_evidence(self, indicators: Iterable[Indicator]) -> None:
        blocked = [i.id for i in indicators if i.attachments]
        if blocked:
            raise ValidationError(
                "Remove the evidence files attached to this output first",
                details={"indicator_ids": blocked}
            )

    def _check_from_status(self, form: PerformanceForm, action: Action) -> None:
        allowed, _ = TRANSITIONS[action]
        if form.status not in allowed:
            raise ConflictError(
                f"Cannot {action.value} an IPCR that is {form.status}",
                details={"status": form.status, "allowed_from": list(allowed)}
            )

    def _transition(
        self,
        form: PerformanceForm,
        action: Action,
        expected_version: Optional[int] = None,
        **values
    ) -> None:
        allowed, target = TRANSITIONS[action]
        query = self.db.query(PerformanceForm).filter(
            PerformanceForm.id == form.id,
            PerformanceForm.status.in_(allowed)
        )
        if expected_version is not None:
            query = query.filter(PerformanceForm.version == expected_version)
        updates = {getattr(PerformanceForm, k): v for k, v in values.items()}
        updates[PerformanceForm.status] = target.value
        updates[PerformanceForm.version] = PerformanceForm.version + 1
        if query.update(updates, synchronize_session=False) != 1:
            raise ConflictError("IPCR was changed by another request; reload and try again")
        self.db.refresh(form)

    def _bump_version(self, form: PerformanceForm) -> None:
        self.db.query(PerformanceForm).filter(PerformanceForm.id == form.id).update(
            {PerformanceForm.version: PerformanceForm.version + 1}, synchronize_session=False
        )
        self.db.refresh(form)

    def _apply_ratings(self, indicators: List[Indicator], ratings: List[RatingInput]) -> None:
        by_id = {i.id: i for i in indicators}
        for rating in ratings:
            indicator = by_id.get(rating.indicator_id)
            if indicator is None:
                raise ValidationError(f"Indicator {rating.indicator_id} does not belong to this IPCR")
            values = rating.model_dump(exclude={"indicator_id"})
            _validate_scores(values)
            for field, value in values.items():
                setattr(indicator, field, value)

    def _reviewer_ids(self, form: PerformanceForm) -> List[int]:
        if form.immediate_supervisor_id:
            return [form.immediate_supervisor_id]
        chiefs = []
        if form.employee.division_id is not None:
            chiefs = [
                u.id for u in self.db.query(User).filter(
                    User.role == Role.DIVISION_CHIEF,
                    User.division_id == form.employee.division_id,
                    User.is_active.is_(True),
                    User.id != form.employee_id
                )
            ]
        if chiefs:
            return chiefs
        return [
            u.id for u in self.db.query(User).filter(
                User.role.in_([Role.HR_MANAGER, Role.HEAD_OF_OFFICE]),
                User.is_active.is_(True),
                User.id != form.employee_id
            )
        ]

    def _indicator_counts(self, form_ids: List[int]) -> Dict[int, int]:
        if not form_ids:
            return {}
        rows = (
            self.db.query(Indicator.form_id, func.count(Indicator.id))
            .filter(Indicator.form_id.in_(form_ids))
            .group_by(Indicator.form_id)
            .all()
        )
        return {form_id: count for form_id, count in rows}

    def _duplicate(self, form_id: int) -> ApiResponse:
        return ApiResponse.ok(
            FormCreateResult(form_id=form_id, created=False),
            metadata={"message": DUPLICATE_FORM_MESSAGE}
        )

    def _summary_fields(self, form: PerformanceForm, indicator_count: int) -> dict:
        return {
            "id": form.id,
            "employee_id": form.employee_id,
            "employee_name": form.employee.full_name,
            "division_id": form.employee.division_id,
            "cycle_id": form.cycle_id,
            "status": form.status,
            "version": form.version,
            "final_average_rating": form.final_average_rating,
            "adjectival_rating": form.adjectival_rating,
            "indicator_count": indicator_count,
            "created_at": form.created_at,
            "submitted_at": form.submitted_at,
            "finalized_at": form.finalized_at,
        }

    def _summary(self, form: PerformanceForm, indicator_count: int) -> FormSummary:
        return FormSummary(**self._summary_fields(form, indicator_count))

    def _detail(self, form: PerformanceForm) -> FormDetail:
        indicators = _sorted_indicators(form.indicators)
        return FormDetail(
            **self._summary_fields(form, len(indicators)),
            immediate_supervisor_id=form.immediate_supervisor_id,
            review_comments=form.review_comments,
            final_remarks=form.final_remarks,
            reviewed_at=form.reviewed_at,
            indicators=[IndicatorResponse.model_validate(i) for i in indicators]
        )

    def _transition_result(self, form: PerformanceForm) -> TransitionResult:
        return TransitionResult(form_id=form.id, status=FormStatus(form.status), version=form.version)
