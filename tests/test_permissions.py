import pytest

from ipcr_portal.core.exceptions import ForbiddenError, UnauthorizedError
from ipcr_portal.core.permissions import (
    PERMISSIONS, Action, Actor, Scope, authorize, is_allowed, scope_for,
)
from ipcr_portal.models.user import Role

EMPLOYEE = Actor(user_id=1, role=Role.EMPLOYEE, division_id=10)
CHIEF = Actor(user_id=2, role=Role.DIVISION_CHIEF, division_id=10)
OTHER_CHIEF = Actor(user_id=3, role=Role.DIVISION_CHIEF, division_id=20)
HR = Actor(user_id=4, role=Role.HR_MANAGER)
HEAD = Actor(user_id=5, role=Role.HEAD_OF_OFFICE)


def test_every_role_has_an_entry():
    assert set(PERMISSIONS) == set(Role)


def test_everyone_may_create_their_own_form():
    for role in Role:
        assert scope_for(role, Action.CREATE_FORM) == Scope.OWN


def test_employee_acts_only_on_own_records():
    assert is_allowed(EMPLOYEE, Action.SUBMIT, owner_id=1)
    assert not is_allowed(EMPLOYEE, Action.SUBMIT, owner_id=99, owner_division_id=10)
    assert not is_allowed(EMPLOYEE, Action.ENDORSE, owner_id=99, owner_division_id=10)


def test_division_chief_is_scoped_to_division():
    assert is_allowed(CHIEF, Action.ENDORSE, owner_id=1, owner_division_id=10)
    assert not is_allowed(OTHER_CHIEF, Action.ENDORSE, owner_id=1, owner_division_id=10)
    assert not is_allowed(CHIEF, Action.FINALIZE, owner_id=1, owner_division_id=10)


def test_hr_roles_have_office_wide_scope():
    for actor in (HR, HEAD):
        assert is_allowed(actor, Action.FINALIZE, owner_id=1, owner_division_id=10)
        assert is_allowed(actor, Action.MANAGE_CYCLES)
        assert is_allowed(actor, Action.DELETE_ANY_EVIDENCE)


def test_hr_cannot_submit_for_someone_else():
    assert not is_allowed(HR, Action.SUBMIT, owner_id=1, owner_division_id=10)


def test_authorize_raises():
    with pytest.raises(UnauthorizedError):
        authorize(None, Action.VIEW_FORM, owner_id=1)
    with pytest.raises(ForbiddenError) as exc_info:
        authorize(OTHER_CHIEF, Action.RETURN, owner_id=1, owner_division_id=10)
    assert exc_info.value.details["action"] == "return"
    assert authorize(CHIEF, Action.RETURN, owner_id=1, owner_division_id=10) is CHIEF
