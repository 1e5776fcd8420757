from typing import Optional

from ipcr_portal.core.permissions import Actor
from ipcr_portal.models.audit_log import AuditLog
from ipcr_portal.services.base import BaseService


def _sanitize(obj):
    """Make nested pydantic models and enums JSON-safe."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if hasattr(obj, "value") and not isinstance(obj, (int, float, str)):
        return obj.value
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if obj is not None and not isinstance(obj, (int, float, str, bool)):
        return str(obj)
    return obj


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        actor: Optional[Actor],
        details: Optional[dict] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ) -> AuditLog:
        """
        Append an audit entry to the current unit of work.
        The entry commits or rolls back together with the action it records.
        """
        db_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=actor.user_id if actor else None,
            user_role=actor.role.value if actor else "system",
            details=_sanitize(details or {}),
            before_state=_sanitize(before_state),
            after_state=_sanitize(after_state)
        )
        self.db.add(db_log)
        return db_log
