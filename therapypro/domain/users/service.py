"""User service - login fingerprints and account deletion"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...email_service import send_security_notification
from ...models import (
    AuditLog,
    Client,
    Notification,
    Package,
    Payment,
    RecurringSession,
    RegistrationToken,
    User,
    UserLoginFingerprint,
)
from ...models import Session as TherapySession
from ...models_referral import Referral, ReferralAuditLog, ReferralFraudSignal, ReferralPayout
from ...models_twofa import TwoFactorBackupCode, TwoFactorEmailCode, TwoFactorResetRequest, TwoFactorSettings
from ..billing.asaas_service import asaas_service
from ..billing.exceptions import PaymentGatewayError
from ..billing.stripe_service import stripe_service
from ..billing.subscription_service import gateway_http_error
from .supabase_auth import SupabaseAuthError, supabase_auth

logger = logging.getLogger(__name__)

# Deleted in this order so foreign keys never point at a removed row
OWNED_TABLES = (
    Payment,
    TherapySession,
    Package,
    RecurringSession,
    RegistrationToken,
    Client,
    Notification,
    TwoFactorEmailCode,
    TwoFactorBackupCode,
    TwoFactorResetRequest,
    TwoFactorSettings,
    UserLoginFingerprint,
)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def record_login(self, user: User, ip_address: Optional[str], user_agent: Optional[str]) -> UserLoginFingerprint:
        """Remember the IP a user signed in from; repeated logins bump the counter"""
        if not ip_address or ip_address == "unknown":
            raise HTTPException(status_code=400, detail="Não foi possível identificar o endereço IP")

        fingerprint = (
            self.db.query(UserLoginFingerprint)
            .filter(UserLoginFingerprint.user_id == user.id, UserLoginFingerprint.ip_address == ip_address)
            .first()
        )
        now = datetime.utcnow()
        if fingerprint:
            fingerprint.login_count = (fingerprint.login_count or 0) + 1
            fingerprint.last_seen_at = now
            fingerprint.user_agent = (user_agent or fingerprint.user_agent or "")[:500] or None
        else:
            fingerprint = UserLoginFingerprint(
                user_id=user.id,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:500] or None,
                login_count=1,
                first_seen_at=now,
                last_seen_at=now,
            )
            self.db.add(fingerprint)
        self.db.commit()
        self.db.refresh(fingerprint)
        return fingerprint

    async def delete_account(self, user: User, password: str) -> dict:
        """
        Permanently delete the account after confirming the password.

        An active subscription is cancelled at the gateway first so the
        professional is not charged again. The local rows are removed in the
        same transaction as the Supabase auth user; if Supabase refuses, the
        local deletion is rolled back.
        """
        try:
            password_ok = await supabase_auth.verify_password(user.email, password)
        except SupabaseAuthError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e

        if not password_ok:
            logger.warning(f"🚫 Account deletion for user {user.id} refused: wrong password")
            try:
                await send_security_notification(
                    user.email,
                    "Tentativa de exclusão de conta",
                    "Alguém tentou excluir sua conta com uma senha incorreta. "
                    "Se não foi você, altere sua senha imediatamente.",
                )
            except Exception as e:
                logger.warning(f"⚠️ Security notification not sent: {e}")
            raise HTTPException(status_code=400, detail="Senha incorreta")

        await self._cancel_subscription(user)

        user_id, supabase_uid = user.id, user.supabase_uid
        self._delete_local_data(user_id)
        try:
            await supabase_auth.delete_user(supabase_uid)
        except SupabaseAuthError as e:
            self.db.rollback()
            raise HTTPException(status_code=503, detail=str(e)) from e

        self.db.commit()
        logger.info(f"🗑️ Account of user {user_id} permanently deleted")
        return {"success": True, "message": "Conta deletada permanentemente com sucesso"}

    async def _cancel_subscription(self, user: User):
        try:
            if user.stripe_subscription_id:
                await stripe_service.cancel_subscription(user.stripe_subscription_id, at_period_end=False)
            if user.asaas_subscription_id:
                await asaas_service.cancel_subscription(user.asaas_subscription_id)
        except PaymentGatewayError as e:
            logger.error(f"❌ Could not cancel subscription before deleting user {user.id}: {e.message}")
            raise gateway_http_error(e) from e

    def _delete_local_data(self, user_id: int):
        for model in OWNED_TABLES:
            self.db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)

        self.db.query(ReferralFraudSignal).filter(
            or_(ReferralFraudSignal.referrer_user_id == user_id, ReferralFraudSignal.referred_user_id == user_id)
        ).delete(synchronize_session=False)

        # Commissions earned by the user go away; commissions they generated for others stay
        self.db.query(ReferralPayout).filter(ReferralPayout.referrer_user_id == user_id).delete(
            synchronize_session=False
        )
        self.db.query(ReferralPayout).filter(ReferralPayout.referred_user_id == user_id).update(
            {ReferralPayout.referred_user_id: None}, synchronize_session=False
        )
        referral_ids = [
            row.id
            for row in self.db.query(Referral.id).filter(
                or_(Referral.referrer_user_id == user_id, Referral.referred_user_id == user_id)
            )
        ]
        if referral_ids:
            self.db.query(ReferralPayout).filter(ReferralPayout.referral_id.in_(referral_ids)).update(
                {ReferralPayout.referral_id: None}, synchronize_session=False
            )
            self.db.query(Referral).filter(Referral.id.in_(referral_ids)).delete(synchronize_session=False)

        self.db.query(ReferralAuditLog).filter(ReferralAuditLog.referrer_user_id == user_id).update(
            {ReferralAuditLog.referrer_user_id: None}, synchronize_session=False
        )
        self.db.query(ReferralAuditLog).filter(ReferralAuditLog.referred_user_id == user_id).update(
            {ReferralAuditLog.referred_user_id: None}, synchronize_session=False
        )
        self.db.query(AuditLog).filter(AuditLog.target_user_id == user_id).update(
            {AuditLog.target_user_id: None}, synchronize_session=False
        )
        self.db.query(User).filter(User.referred_by_user_id == user_id).update(
            {User.referred_by_user_id: None}, synchronize_session=False
        )
        self.db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        self.db.flush()
