import pytest
from datetime import date

from ipcr_portal.models.audit_log import AuditLog
from ipcr_portal.models.rating_cycle import RatingCycle
from ipcr_portal.schemas.cycle import CycleCreate, CycleUpdate
from ipcr_portal.services.rating_cycles import RatingCycleRegistry


def _cycle_payload(name="July - December 2025", active=False):
    return CycleCreate(
        name=name,
        period_start=date(2025, 7, 1),
        period_end=date(2025, 12, 31),
        is_active=active
    )


def test_active_cycle_is_read_fresh(db_session, hr_manager, actor_of, active_cycle):
    registry = RatingCycleRegistry(db_session)
    assert registry.get_active_cycle().id == active_cycle.id

    result = registry.create_cycle(actor_of(hr_manager), _cycle_payload(active=True))
    assert result.success
    assert registry.get_active_cycle().id == result.data.id


def test_only_one_cycle_is_active(db_session, hr_manager, actor_of, active_cycle):
    registry = RatingCycleRegistry(db_session)
    created = registry.create_cycle(actor_of(hr_manager), _cycle_payload()).data
    assert not created.is_active

    result = registry.set_active_cycle(actor_of(hr_manager), created.id)
    assert result.success
    active = db_session.query(RatingCycle).filter(RatingCycle.is_active.is_(True)).all()
    assert [c.id for c in active] == [created.id]

    audit = db_session.query(AuditLog).filter(AuditLog.action == "spms_cycle.activated").one()
    assert audit.before_state == {"active_cycle_id": active_cycle.id}


def test_employee_cannot_manage_cycles(db_session, employee, actor_of):
    result = RatingCycleRegistry(db_session).create_cycle(actor_of(employee), _cycle_payload())
    assert not result.success
    assert result.error.code == "FORBIDDEN"
    assert db_session.query(RatingCycle).count() == 0


def test_update_rejects_inverted_period(db_session, hr_manager, actor_of, active_cycle):
    result = RatingCycleRegistry(db_session).update_cycle(
        actor_of(hr_manager), active_cycle.id, CycleUpdate(period_end=date(2024, 12, 31))
    )
    assert not result.success
    assert result.error.code == "VALIDATION_ERROR"


def test_update_missing_cycle(db_session, hr_manager, actor_of):
    result = RatingCycleRegistry(db_session).update_cycle(actor_of(hr_manager), 999, CycleUpdate(name="X"))
    assert result.error.code == "NOT_FOUND"


def test_cycle_endpoints(client, hr_manager, employee, auth_headers, active_cycle):
    response = client.get("/api/spms/cycles/active", headers=auth_headers(employee))
    assert response.status_code == 200
    assert response.json()["data"]["id"] == active_cycle.id

    response = client.post(
        "/api/spms/cycles",
        headers=auth_headers(hr_manager),
        json={"name": "July - December 2025", "period_start": "2025-07-01", "period_end": "2025-12-31"}
    )
    assert response.status_code == 201
    new_id = response.json()["data"]["id"]

    response = client.post(f"/api/spms/cycles/{new_id}/activate", headers=auth_headers(employee))
    assert response.status_code == 403

    response = client.post(f"/api/spms/cycles/{new_id}/activate", headers=auth_headers(hr_manager))
    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is True

    response = client.get("/api/spms/cycles", headers=auth_headers(employee))
    assert len(response.json()["data"]) == 2


def test_cycle_period_validation(client, hr_manager, auth_headers):
    response = client.post(
        "/api/spms/cycles",
        headers=auth_headers(hr_manager),
        json={"name": "Bad", "period_start": "2025-07-01", "period_end": "2025-01-01"}
    )
    assert response.status_code == 422
    assert response.json()["success"] is False
