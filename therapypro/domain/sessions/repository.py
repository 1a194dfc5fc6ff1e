"""Session repository - Database operations for sessions, packages and recurrence rules"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session as DBSession

from ...models import Client, Package, Payment, RecurringSession, Session


class SessionRepository:
    """Repository for session database operations"""

    @staticmethod
    def list_sessions(
        db: DBSession,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Session]:
        query = db.query(Session).filter(Session.user_id == user_id)
        if start_date:
            query = query.filter(Session.data >= start_date)
        if end_date:
            query = query.filter(Session.data <= end_date)
        if client_id:
            query = query.filter(Session.client_id == client_id)
        if status:
            query = query.filter(Session.status == status)
        return query.order_by(Session.data.asc(), Session.horario.asc()).all()

    @staticmethod
    def get_session(db: DBSession, session_id: int, user_id: int) -> Optional[Session]:
        return db.query(Session).filter(Session.id == session_id, Session.user_id == user_id).first()

    @staticmethod
    def get_client(db: DBSession, client_id: int, user_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.user_id == user_id).first()

    @staticmethod
    def sessions_needing_attention(db: DBSession, user_id: int, now: datetime) -> list[Session]:
        """Sessions still ``agendada`` whose date and time are already in the past"""
        today = now.date()
        return (
            db.query(Session)
            .filter(
                Session.user_id == user_id,
                Session.status == "agendada",
                or_(
                    Session.data < today,
                    and_(Session.data == today, Session.horario < now.time()),
                ),
            )
            .order_by(Session.data.asc(), Session.horario.asc())
            .all()
        )

    @staticmethod
    def payments_for_session(db: DBSession, session_id: int) -> list[Payment]:
        return db.query(Payment).filter(Payment.session_id == session_id).all()

    @staticmethod
    def sessions_on(db: DBSession, day: date) -> list[Session]:
        """Every scheduled session on a day, across users"""
        return (
            db.query(Session)
            .filter(Session.data == day, Session.status == "agendada", Session.reminder_sent_at.is_(None))
            .order_by(Session.user_id.asc(), Session.horario.asc())
            .all()
        )


class PackageRepository:
    """Repository for client session packages"""

    @staticmethod
    def list_packages(db: DBSession, user_id: int, client_id: Optional[int] = None, status: Optional[str] = None):
        query = db.query(Package).filter(Package.user_id == user_id)
        if client_id:
            query = query.filter(Package.client_id == client_id)
        if status:
            query = query.filter(Package.status == status)
        return query.order_by(Package.created_at.desc(), Package.id.desc()).all()

    @staticmethod
    def get_package(db: DBSession, package_id: int, user_id: int) -> Optional[Package]:
        return db.query(Package).filter(Package.id == package_id, Package.user_id == user_id).first()

    @staticmethod
    def count_realized(db: DBSession, package_id: int) -> int:
        return (
            db.query(func.count(Session.id))
            .filter(Session.package_id == package_id, Session.status == "realizada")
            .scalar()
            or 0
        )


class RecurringSessionRepository:
    """Repository for recurrence rules"""

    @staticmethod
    def list_rules(db: DBSession, user_id: int, client_id: Optional[int] = None) -> list[RecurringSession]:
        query = db.query(RecurringSession).filter(RecurringSession.user_id == user_id)
        if client_id:
            query = query.filter(RecurringSession.client_id == client_id)
        return query.order_by(RecurringSession.created_at.desc(), RecurringSession.id.desc()).all()

    @staticmethod
    def get_rule(db: DBSession, rule_id: int, user_id: int) -> Optional[RecurringSession]:
        return (
            db.query(RecurringSession)
            .filter(RecurringSession.id == rule_id, RecurringSession.user_id == user_id)
            .first()
        )

    @staticmethod
    def active_rules(db: DBSession) -> list[RecurringSession]:
        return db.query(RecurringSession).filter(RecurringSession.status == "ativa").all()

    @staticmethod
    def existing_dates(db: DBSession, rule_id: int) -> set[date]:
        rows = db.query(Session.data).filter(Session.recurring_session_id == rule_id).all()
        return {row[0] for row in rows}

    @staticmethod
    def delete_future_instances(db: DBSession, rule_id: int, from_date: date) -> int:
        sessions = (
            db.query(Session)
            .filter(
                Session.recurring_session_id == rule_id,
                Session.data >= from_date,
                Session.status == "agendada",
            )
            .all()
        )
        for session in sessions:
            for payment in session.payments:
                db.delete(payment)
            db.delete(session)
        return len(sessions)
