from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, index=True)
    referrer_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, converted, cancelled
    converted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    referrer = relationship("User", foreign_keys=[referrer_user_id])
    referred = relationship("User", foreign_keys=[referred_user_id])


class ReferralPayout(Base):
    __tablename__ = "referral_payouts"
    __table_args__ = (
        UniqueConstraint(
            "gateway_invoice_id",
            "gateway_event_id",
            "payment_type",
            "installment_number",
            name="uq_referral_payout_event",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    referrer_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    referral_id = Column(Integer, ForeignKey("referrals.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(3), default="BRL", nullable=False)
    # pending, approved, requested, processing, paid, failed, cancelled
    status = Column(String(20), default="pending", nullable=False, index=True)
    gateway = Column(String(10), nullable=False)  # stripe, asaas
    gateway_invoice_id = Column(String(255), nullable=True)
    gateway_event_id = Column(String(255), nullable=True)
    payment_type = Column(String(20), nullable=False)  # first_payment, recurring, yearly, proration
    installment_number = Column(Integer, default=1, nullable=False)
    total_installments = Column(Integer, default=1, nullable=False)
    commission_rate = Column(Integer, nullable=False)  # percent
    gross_amount = Column(Integer, nullable=True)
    gateway_fee = Column(Integer, nullable=True)
    net_amount = Column(Integer, nullable=True)
    billing_interval = Column(String(10), nullable=True)
    period_start = Column(DateTime, nullable=True)
    approval_deadline = Column(DateTime, nullable=True, index=True)
    requested_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payout_method = Column(String(10), nullable=True)  # pix, ted, stripe
    transfer_id = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    referrer = relationship("User", foreign_keys=[referrer_user_id])
    referred = relationship("User", foreign_keys=[referred_user_id])


class ReferralAuditLog(Base):
    __tablename__ = "referral_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    referrer_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    referred_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    payout_id = Column(Integer, ForeignKey("referral_payouts.id", ondelete="SET NULL"), nullable=True)
    gateway = Column(String(10), nullable=True)
    gross_amount = Column(Integer, nullable=True)
    net_amount = Column(Integer, nullable=True)
    commission_amount = Column(Integer, nullable=True)
    status = Column(String(30), nullable=True)
    ineligibility_reason = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class ReferralFraudSignal(Base):
    __tablename__ = "referral_fraud_signals"

    id = Column(Integer, primary_key=True, index=True)
    referrer_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    signal_type = Column(String(30), nullable=False)  # same_document, shared_customer_id, same_card, same_phone, same_ip
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
