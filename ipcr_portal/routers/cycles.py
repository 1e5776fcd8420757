from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ipcr_portal.core.permissions import Actor
from ipcr_portal.database import get_db
from ipcr_portal.routers.auth_deps import get_current_actor
from ipcr_portal.routers.responses import respond
from ipcr_portal.schemas.cycle import CycleCreate, CycleUpdate
from ipcr_portal.services.rating_cycles import RatingCycleRegistry

router = APIRouter(prefix="/spms/cycles", tags=["spms-cycles"])


@router.get("")
def list_cycles(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(RatingCycleRegistry(db).list_cycles())


@router.get("/active")
def get_active_cycle(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(RatingCycleRegistry(db).active_cycle())


@router.post("")
def create_cycle(
    payload: CycleCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(RatingCycleRegistry(db).create_cycle(actor, payload), success_code=201)


@router.put("/{cycle_id}")
def update_cycle(
    cycle_id: int,
    payload: CycleUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return respond(RatingCycleRegistry(db).update_cycle(actor, cycle_id, payload))


@router.post("/{cycle_id}/activate")
def activate_cycle(cycle_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return respond(RatingCycleRegistry(db).set_active_cycle(actor, cycle_id))
