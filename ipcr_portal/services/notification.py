from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ipcr_portal.models.notification import Notification


class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None
    ) -> Notification:
        """
        Internal utility for creating notifications.
        Joins the caller's transaction; delivery happens outside this service.
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link
        )
        db.add(notification)
        return notification

    @staticmethod
    def notify_users(
        db: Session,
        user_ids: Iterable[int],
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None
    ) -> List[Notification]:
        """
        Standardized notification trigger for one or more recipients.
        """
        return [
            NotificationService.create_notification(db, user_id, title, message, type, link)
            for user_id in sorted(set(user_ids))
        ]
