"""Payment repository - Database operations for session payments"""

from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from ...models import Payment

# Payments without a payment date fall back to their due date for period filters
PERIOD_DATE = func.coalesce(Payment.data_pagamento, Payment.data_vencimento)


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def _filtered(
        db: Session,
        user_id: int,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Query:
        query = db.query(Payment).filter(Payment.user_id == user_id)
        if status:
            query = query.filter(Payment.status == status)
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        if start_date:
            query = query.filter(PERIOD_DATE >= start_date)
        if end_date:
            query = query.filter(PERIOD_DATE <= end_date)
        return query

    @classmethod
    def list_payments(cls, db: Session, user_id: int, **filters) -> list[Payment]:
        return (
            cls._filtered(db, user_id, **filters)
            .order_by(PERIOD_DATE.desc(), Payment.id.desc())
            .all()
        )

    @classmethod
    def totals_by_status(cls, db: Session, user_id: int, **filters) -> dict[str, tuple[int, int]]:
        """{status: (count, total cents)} for the filtered payments"""
        rows = (
            cls._filtered(db, user_id, **filters)
            .with_entities(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.valor), 0))
            .group_by(Payment.status)
            .all()
        )
        return {status: (count, int(total)) for status, count, total in rows}

    @staticmethod
    def get_payment(db: Session, payment_id: int, user_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.id == payment_id, Payment.user_id == user_id).first()
