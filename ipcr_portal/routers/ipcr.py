from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ipcr_portal.core.permissions import Actor
from ipcr_portal.database import get_db
from ipcr_portal.routers.auth_deps import get_current_actor
from ipcr_portal.routers.responses import respond
from ipcr_portal.schemas.ipcr import (
    EndorseRequest, FinalizeRequest, FormCreate, IndicatorBatchSave,
    IndicatorCreate, IndicatorUpdate, ReturnRequest, ScoreUpdate,
)
from ipcr_portal.services.ipcr_lifecycle import PerformanceFormLifecycle

router = APIRouter(prefix="/ipcr", tags=["ipcr"])


@router.get("")
def list_forms(
    employee_id: Optional[int] = Query(None),
    cycle_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).list_forms(actor, employee_id, cycle_id, status))


@router.post("")
def create_form(
    payload: Optional[FormCreate] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    result = PerformanceFormLifecycle(db).create_form(actor, payload)
    created = result.success and result.data.created
    return respond(result, success_code=201 if created else 200)


@router.get("/{form_id}")
def get_form(form_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(PerformanceFormLifecycle(db).get_form(actor, form_id))


# --- Indicators ---

@router.post("/{form_id}/indicators")
def add_indicator(
    form_id: int,
    payload: IndicatorCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).add_indicator(actor, form_id, payload), success_code=201)


@router.put("/{form_id}/indicators")
def save_indicators(
    form_id: int,
    payload: IndicatorBatchSave,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).save_indicators(actor, form_id, payload))


@router.patch("/indicators/{indicator_id}")
def update_indicator(
    indicator_id: int,
    payload: IndicatorUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).update_indicator(actor, indicator_id, payload))


@router.delete("/indicators/{indicator_id}")
def delete_indicator(indicator_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(PerformanceFormLifecycle(db).delete_indicator(actor, indicator_id))


@router.patch("/indicators/{indicator_id}/score")
def rate_indicator(
    indicator_id: int,
    payload: ScoreUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).rate_indicator(actor, indicator_id, payload.field, payload.value))


# --- Workflow transitions ---

@router.post("/{form_id}/submit")
def submit_form(form_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(PerformanceFormLifecycle(db).submit(actor, form_id))


@router.post("/{form_id}/endorse")
def endorse_form(
    form_id: int,
    payload: Optional[EndorseRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    comments = payload.comments if payload else None
    return respond(PerformanceFormLifecycle(db).endorse(actor, form_id, comments))


@router.post("/{form_id}/return")
def return_form(
    form_id: int,
    payload: ReturnRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(PerformanceFormLifecycle(db).return_form(actor, form_id, payload.remarks))


@router.post("/{form_id}/finalize")
def finalize_form(
    form_id: int,
    payload: Optional[FinalizeRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    payload = payload or FinalizeRequest()
    return respond(PerformanceFormLifecycle(db).finalize(
        actor,
        form_id,
        ratings=payload.ratings,
        final_remarks=payload.final_remarks,
        expected_version=payload.expected_version
    ))
