"""Referral repository - Database operations for referrals, payouts and audit rows"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import User
from ...models_referral import Referral, ReferralAuditLog, ReferralFraudSignal, ReferralPayout

OPEN_PAYOUT_STATUSES = ("pending", "approved", "requested")


class ReferralRepository:
    """Repository for referral database operations"""

    @staticmethod
    def get_user(db: Session, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_referral_for_referred(db: Session, referred_user_id: int) -> Optional[Referral]:
        return db.query(Referral).filter(Referral.referred_user_id == referred_user_id).first()

    @staticmethod
    def list_referrals(db: Session, referrer_user_id: int) -> list[Referral]:
        return (
            db.query(Referral)
            .filter(Referral.referrer_user_id == referrer_user_id)
            .order_by(Referral.created_at.desc())
            .all()
        )

    @staticmethod
    def payout_exists(db: Session, invoice_id: str, event_id: Optional[str], payment_type: Optional[str]) -> bool:
        """Idempotency check keyed by gateway invoice, gateway event and payment type (None matches any type)"""
        query = db.query(ReferralPayout.id).filter(ReferralPayout.gateway_invoice_id == invoice_id)
        if payment_type is not None:
            query = query.filter(ReferralPayout.payment_type == payment_type)
        if event_id is None:
            query = query.filter(ReferralPayout.gateway_event_id.is_(None))
        else:
            query = query.filter(ReferralPayout.gateway_event_id == event_id)
        return query.first() is not None

    @staticmethod
    def get_payout(db: Session, payout_id: int) -> Optional[ReferralPayout]:
        return db.query(ReferralPayout).filter(ReferralPayout.id == payout_id).first()

    @staticmethod
    def list_payouts_for_referrer(db: Session, referrer_user_id: int) -> list[ReferralPayout]:
        return (
            db.query(ReferralPayout)
            .filter(ReferralPayout.referrer_user_id == referrer_user_id)
            .order_by(ReferralPayout.created_at.desc(), ReferralPayout.id.desc())
            .all()
        )

    @staticmethod
    def list_available_payouts(db: Session, referrer_user_id: int, now: datetime) -> list[ReferralPayout]:
        """Pending or approved payouts whose approval window has closed"""
        return (
            db.query(ReferralPayout)
            .filter(
                ReferralPayout.referrer_user_id == referrer_user_id,
                ReferralPayout.status.in_(("pending", "approved")),
                or_(ReferralPayout.approval_deadline.is_(None), ReferralPayout.approval_deadline <= now),
            )
            .all()
        )

    @staticmethod
    def list_due_payouts(db: Session, now: datetime) -> list[ReferralPayout]:
        return (
            db.query(ReferralPayout)
            .filter(
                ReferralPayout.status.in_(OPEN_PAYOUT_STATUSES),
                or_(ReferralPayout.approval_deadline.is_(None), ReferralPayout.approval_deadline <= now),
            )
            .order_by(ReferralPayout.created_at.asc(), ReferralPayout.id.asc())
            .all()
        )

    @staticmethod
    def list_open_payouts_for_invoice(db: Session, invoice_id: str) -> list[ReferralPayout]:
        return (
            db.query(ReferralPayout)
            .filter(
                ReferralPayout.gateway_invoice_id == invoice_id,
                ReferralPayout.status.in_(OPEN_PAYOUT_STATUSES),
            )
            .all()
        )

    @staticmethod
    def add_audit(db: Session, action: str, **fields) -> ReferralAuditLog:
        entry = ReferralAuditLog(action=action, **fields)
        db.add(entry)
        return entry

    @staticmethod
    def add_fraud_signal(
        db: Session, referrer_user_id: int, referred_user_id: int, signal_type: str, details: Optional[dict] = None
    ) -> ReferralFraudSignal:
        signal = ReferralFraudSignal(
            referrer_user_id=referrer_user_id,
            referred_user_id=referred_user_id,
            signal_type=signal_type,
            details=details,
        )
        db.add(signal)
        return signal
