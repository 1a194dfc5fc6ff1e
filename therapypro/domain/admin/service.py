"""Admin back-office queries and actions"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models import AdminSession, AuditLog, Client, Payment, User
from ...models import Session as TherapySession
from ...models_referral import ReferralAuditLog, ReferralPayout
from ..notifications.service import create_notification
from ..referrals.payout_service import PayoutService
from ..referrals.schemas import PayoutResponse

logger = logging.getLogger(__name__)

OPEN_PAYOUT_STATUSES = ("pending", "approved", "requested")


def _user_row(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "nome": user.nome,
        "subscription_plan": user.subscription_plan,
        "billing_interval": user.billing_interval,
        "subscription_status": user.subscription_status,
        "subscription_end_date": user.subscription_end_date,
        "is_active": user.is_active,
        "is_referral_partner": user.is_referral_partner,
        "created_at": user.created_at,
    }


class AdminService:
    def __init__(self, db: Session, session: AdminSession):
        self.db = db
        self.session = session

    def _audit(self, action: str, target_user_id: Optional[int] = None, **details):
        self.db.add(
            AuditLog(
                action=action,
                actor=self.session.admin_id,
                target_user_id=target_user_id,
                ip_address=self.session.ip_address,
                details=details or None,
            )
        )

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard_stats(self) -> dict:
        db = self.db
        plan_rows = db.query(User.subscription_plan, func.count(User.id)).group_by(User.subscription_plan).all()
        session_rows = db.query(TherapySession.status, func.count(TherapySession.id)).group_by(TherapySession.status).all()
        payment_rows = (
            db.query(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.valor), 0))
            .group_by(Payment.status)
            .all()
        )
        payout_rows = (
            db.query(ReferralPayout.status, func.count(ReferralPayout.id), func.coalesce(func.sum(ReferralPayout.amount), 0))
            .group_by(ReferralPayout.status)
            .all()
        )

        return {
            "users": {
                "total": db.query(func.count(User.id)).scalar() or 0,
                "active": db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0,
                "partners": db.query(func.count(User.id)).filter(User.is_referral_partner.is_(True)).scalar() or 0,
                "by_plan": {plan: count for plan, count in plan_rows},
            },
            "clients": {
                "total": db.query(func.count(Client.id)).scalar() or 0,
                "active": db.query(func.count(Client.id)).filter(Client.ativo.is_(True)).scalar() or 0,
            },
            "sessions": {
                "total": sum(count for _, count in session_rows),
                "by_status": {status: count for status, count in session_rows},
            },
            "payments": {
                status: {"count": count, "total": int(total)} for status, count, total in payment_rows
            },
            "referral_payouts": {
                status: {"count": count, "total": int(total)} for status, count, total in payout_rows
            },
        }

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self, search: Optional[str], plan: Optional[str], page: int, page_size: int) -> dict:
        query = self.db.query(User)
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(User.email.ilike(term), User.nome.ilike(term)))
        if plan:
            query = query.filter(User.subscription_plan == plan)

        total = query.count()
        users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return {
            "users": [_user_row(u) for u in users],
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": (total + page_size - 1) // page_size,
        }

    def update_user(self, user_id: int, changes: dict) -> dict:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(status_code=404, detail="Usuário não encontrado")
        if not changes:
            raise HTTPException(status_code=400, detail="Nenhuma alteração informada")

        before = {field: getattr(user, field) for field in changes}
        for field, value in changes.items():
            setattr(user, field, value)
        if changes.get("subscription_plan") == "basico":
            user.billing_interval = None

        action = "PLAN_UPDATE" if "subscription_plan" in changes else "USER_UPDATE"
        self._audit(action, target_user_id=user.id, before=before, after=changes)
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"🛠️ Admin {self.session.admin_id} updated user {user.id}: {changes}")
        return _user_row(user)

    # ------------------------------------------------------------------
    # Referral payouts
    # ------------------------------------------------------------------

    def list_payouts(self, status: Optional[str], referrer_id: Optional[int], page: int, page_size: int) -> dict:
        query = self.db.query(ReferralPayout)
        if status:
            query = query.filter(ReferralPayout.status == status)
        if referrer_id:
            query = query.filter(ReferralPayout.referrer_user_id == referrer_id)
        total = query.count()
        payouts = (
            query.order_by(ReferralPayout.created_at.desc(), ReferralPayout.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "payouts": [PayoutResponse.model_validate(p).model_dump() for p in payouts],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    def _open_payout(self, payout_id: int) -> ReferralPayout:
        payout = self.db.query(ReferralPayout).filter(ReferralPayout.id == payout_id).first()
        if not payout:
            raise HTTPException(status_code=404, detail="Payout não encontrado")
        if payout.status not in OPEN_PAYOUT_STATUSES:
            raise HTTPException(status_code=400, detail=f"Payout não está pendente (status: {payout.status})")
        return payout

    def approve_payout(self, payout_id: int) -> dict:
        """Release a payout immediately, ahead of its approval deadline"""
        payout = self._open_payout(payout_id)
        now = datetime.utcnow()
        payout.status = "approved"
        if payout.approval_deadline is None or payout.approval_deadline > now:
            payout.approval_deadline = now
        self.db.add(
            ReferralAuditLog(
                action="payout_approved_manually",
                referrer_user_id=payout.referrer_user_id,
                referred_user_id=payout.referred_user_id,
                payout_id=payout.id,
                gateway=payout.gateway,
                commission_amount=payout.amount,
                status="approved",
                details={"admin_id": self.session.admin_id},
            )
        )
        self._audit("PAYOUT_APPROVE", target_user_id=payout.referrer_user_id, payout_id=payout.id)
        self.db.commit()
        logger.info(f"✅ Payout {payout.id} approved by admin {self.session.admin_id}")
        return {"success": True, "payout_id": payout.id, "status": payout.status}

    def cancel_payout(self, payout_id: int, reason: Optional[str]) -> dict:
        payout = self._open_payout(payout_id)
        payout.status = "cancelled"
        payout.cancel_reason = reason or "Cancelado pelo administrador"
        self.db.add(
            ReferralAuditLog(
                action="payout_cancelled_manually",
                referrer_user_id=payout.referrer_user_id,
                referred_user_id=payout.referred_user_id,
                payout_id=payout.id,
                gateway=payout.gateway,
                commission_amount=payout.amount,
                status="cancelled",
                ineligibility_reason=payout.cancel_reason[:255],
                details={"admin_id": self.session.admin_id},
            )
        )
        create_notification(
            self.db,
            payout.referrer_user_id,
            "Comissão cancelada",
            f"Uma comissão de indicação foi cancelada. Motivo: {payout.cancel_reason}",
            commit=False,
        )
        self._audit("PAYOUT_CANCEL", target_user_id=payout.referrer_user_id, payout_id=payout.id, reason=reason)
        self.db.commit()
        logger.info(f"🚫 Payout {payout.id} cancelled by admin {self.session.admin_id}")
        return {"success": True, "payout_id": payout.id, "status": payout.status}

    async def process_payouts(self) -> dict:
        self._audit("PAYOUT_BATCH_TRIGGER")
        self.db.commit()
        return await PayoutService(self.db).process_due_payouts()

    async def process_stripe_payout(self, payout_id: int) -> dict:
        result = await PayoutService(self.db).process_stripe_payout(payout_id)
        self._audit("PAYOUT_STRIPE_TRANSFER", payout_id=payout_id, transfer_id=result.get("transfer_id"))
        self.db.commit()
        return result

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def referral_audit_logs(self, action: Optional[str], referrer_id: Optional[int], limit: int) -> list[dict]:
        query = self.db.query(ReferralAuditLog)
        if action:
            query = query.filter(ReferralAuditLog.action == action)
        if referrer_id:
            query = query.filter(ReferralAuditLog.referrer_user_id == referrer_id)
        rows = query.order_by(ReferralAuditLog.created_at.desc(), ReferralAuditLog.id.desc()).limit(limit).all()
        return [
            {
                "id": row.id,
                "action": row.action,
                "referrer_user_id": row.referrer_user_id,
                "referred_user_id": row.referred_user_id,
                "payout_id": row.payout_id,
                "gateway": row.gateway,
                "gross_amount": row.gross_amount,
                "net_amount": row.net_amount,
                "commission_amount": row.commission_amount,
                "status": row.status,
                "ineligibility_reason": row.ineligibility_reason,
                "details": row.details,
                "created_at": row.created_at,
            }
            for row in rows
        ]

    def audit_logs(self, action: Optional[str], limit: int) -> list[dict]:
        query = self.db.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
        return [
            {
                "id": row.id,
                "action": row.action,
                "actor": row.actor,
                "target_user_id": row.target_user_id,
                "ip_address": row.ip_address,
                "details": row.details,
                "created_at": row.created_at,
            }
            for row in rows
        ]
