"""
Permission table for the IPCR workflow.

Every privileged action is looked up once in ``PERMISSIONS`` by
(role, action). The value is the widest scope the role may act on:

- OWN: only records whose owner is the caller
- DIVISION: records whose owner belongs to the caller's division
- ALL: any record in the office

A missing entry means the role may not perform the action at all.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from ipcr_portal.core.exceptions import ForbiddenError, UnauthorizedError
from ipcr_portal.models.user import Role, User


class Action(str, enum.Enum):
    CREATE_FORM = "create_form"
    VIEW_FORM = "view_form"
    EDIT_INDICATORS = "edit_indicators"
    SUBMIT = "submit"
    ENDORSE = "endorse"
    RETURN = "return"
    RATE = "rate"
    FINALIZE = "finalize"
    UPLOAD_EVIDENCE = "upload_evidence"
    DELETE_ANY_EVIDENCE = "delete_any_evidence"
    MANAGE_CYCLES = "manage_cycles"


class Scope(str, enum.Enum):
    OWN = "own"
    DIVISION = "division"
    ALL = "all"


_OWNER_ACTIONS = {
    Action.CREATE_FORM: Scope.OWN,
    Action.VIEW_FORM: Scope.OWN,
    Action.EDIT_INDICATORS: Scope.OWN,
    Action.SUBMIT: Scope.OWN,
    Action.UPLOAD_EVIDENCE: Scope.OWN,
}

_HR_MANAGER_ACTIONS = {
    **_OWNER_ACTIONS,
    Action.VIEW_FORM: Scope.ALL,
    Action.ENDORSE: Scope.ALL,
    Action.RETURN: Scope.ALL,
    Action.RATE: Scope.ALL,
    Action.FINALIZE: Scope.ALL,
    Action.UPLOAD_EVIDENCE: Scope.ALL,
    Action.DELETE_ANY_EVIDENCE: Scope.ALL,
    Action.MANAGE_CYCLES: Scope.ALL,
}

PERMISSIONS = {
    Role.EMPLOYEE: dict(_OWNER_ACTIONS),
    Role.DIVISION_CHIEF: {
        **_OWNER_ACTIONS,
        Action.VIEW_FORM: Scope.DIVISION,
        Action.ENDORSE: Scope.DIVISION,
        Action.RETURN: Scope.DIVISION,
        Action.RATE: Scope.DIVISION,
        Action.UPLOAD_EVIDENCE: Scope.DIVISION,
    },
    Role.HR_MANAGER: dict(_HR_MANAGER_ACTIONS),
    Role.HEAD_OF_OFFICE: dict(_HR_MANAGER_ACTIONS),
}


@dataclass(frozen=True)
class Actor:
    """Caller identity as supplied by the identity collaborator."""
    user_id: int
    role: Role
    division_id: Optional[int] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=Role(user.role), division_id=user.division_id)

    @property
    def is_hr_manager(self) -> bool:
        return self.role.is_hr_manager


def scope_for(role: Role, action: Action) -> Optional[Scope]:
    return PERMISSIONS.get(role, {}).get(action)


def require_actor(actor: Optional[Actor]) -> Actor:
    if actor is None:
        raise UnauthorizedError()
    return actor


def is_allowed(
    actor: Actor,
    action: Action,
    owner_id: Optional[int] = None,
    owner_division_id: Optional[int] = None
) -> bool:
    scope = scope_for(actor.role, action)
    if scope is None:
        return False
    if scope == Scope.ALL:
        return True
    if owner_id is not None and owner_id == actor.user_id:
        return True
    if scope == Scope.DIVISION:
        return actor.division_id is not None and owner_division_id == actor.division_id
    return False


def authorize(
    actor: Optional[Actor],
    action: Action,
    owner_id: Optional[int] = None,
    owner_division_id: Optional[int] = None
) -> Actor:
    """Raise ForbiddenError unless the actor may perform ``action`` on the owner's record."""
    actor = require_actor(actor)
    if not is_allowed(actor, action, owner_id, owner_division_id):
        raise ForbiddenError(
            "Forbidden",
            details={"action": action.value, "role": actor.role.value}
        )
    return actor
