"""Notification service - in-app notifications for users"""

import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Notification, User
from .repository import NotificationRepository

logger = logging.getLogger(__name__)


def create_notification(db: Session, user_id: int, titulo: str, conteudo: str, commit: bool = True) -> Notification:
    """
    Add a notification for a user.

    Called from billing, referral and reminder flows; pass commit=False to
    keep the row inside the caller's transaction.
    """
    notification = NotificationRepository.add(db, user_id, titulo, conteudo)
    if commit:
        db.commit()
        db.refresh(notification)
    logger.info(f"🔔 Notification '{titulo}' queued for user {user_id}")
    return notification


class NotificationService:
    """Service layer for notification operations"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = NotificationRepository()

    def list_notifications(self, user: User, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        return self.repo.list_for_user(self.db, user.id, unread_only, limit)

    def mark_read(self, notification_id: int, user: User) -> Notification:
        notification = self.repo.get_by_id(self.db, notification_id, user.id)
        if not notification:
            raise HTTPException(status_code=404, detail="Notificação não encontrada")
        if not notification.lida:
            notification.lida = True
            self.db.commit()
            self.db.refresh(notification)
        return notification

    def mark_all_read(self, user: User) -> dict:
        updated = self.repo.mark_all_read(self.db, user.id)
        return {"success": True, "updated": updated}

    def unread_count(self, user: User) -> dict:
        return {"unread": self.repo.count_unread(self.db, user.id)}
