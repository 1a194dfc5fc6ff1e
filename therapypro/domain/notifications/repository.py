"""Notification repository - Database operations for in-app notifications"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Notification


class NotificationRepository:
    """Repository for notification database operations"""

    @staticmethod
    def list_for_user(db: Session, user_id: int, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        """Unread first, newest first within each group"""
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.lida.is_(False))
        return (
            query.order_by(Notification.lida.asc(), Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_by_id(db: Session, notification_id: int, user_id: int) -> Optional[Notification]:
        return (
            db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .first()
        )

    @staticmethod
    def count_unread(db: Session, user_id: int) -> int:
        return (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.lida.is_(False))
            .count()
        )

    @staticmethod
    def mark_all_read(db: Session, user_id: int) -> int:
        updated = (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.lida.is_(False))
            .update({Notification.lida: True}, synchronize_session=False)
        )
        db.commit()
        return updated

    @staticmethod
    def add(db: Session, user_id: int, titulo: str, conteudo: str) -> Notification:
        notification = Notification(user_id=user_id, titulo=titulo, conteudo=conteudo)
        db.add(notification)
        return notification
