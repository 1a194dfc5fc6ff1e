"""Referral service - commission processing, partner balances and payout requests"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import generate_referral_code
from ...config import FRONTEND_URL
from ...email_service import send_payout_requested_email
from ...models import User
from ...models_referral import ReferralPayout
from ...shared.encryption import decrypt_value, encrypt_value
from ...shared.formatters import format_brl
from ...shared.validators import (
    detect_pix_key_type,
    is_valid_cnpj,
    is_valid_cpf,
    mask_sensitive,
    normalize_pix_key,
    only_digits,
)
from ..notifications.service import create_notification
from .commission import (
    FIRST_PAYMENT,
    MINIMUM_PAYOUT_AMOUNT,
    PRORATION,
    RECURRING,
    YEARLY,
    calculate_commission,
    resolve_payment_type,
)
from .fraud import SAME_IP, detect_fraud_signals, is_blocking, shared_login_ips
from .repository import ReferralRepository
from .schemas import BankDetailsRequest, PayoutResponse

logger = logging.getLogger(__name__)

PLAN_NAMES = {"pro": "Profissional", "premium": "Premium", "basico": "Básico"}

COMMISSION_ACTIONS = {
    FIRST_PAYMENT: "commission_created",
    RECURRING: "recurring_commission",
    PRORATION: "proration_commission",
}

AGENCY_PATTERN = re.compile(r"^\d{1,6}(-?\d)?$")
ACCOUNT_PATTERN = re.compile(r"^\d{3,13}(-?\d)?$")


@dataclass
class PaidInvoice:
    """A confirmed subscription charge, as reported by either gateway"""

    user: User
    gateway: str
    invoice_id: str
    event_id: Optional[str]
    gross_amount: int
    plan: str
    billing_interval: str
    is_proration: bool = False
    period_start: Optional[datetime] = None
    customer_id: Optional[str] = None
    card_match: bool = False


def has_payout_destination(user: User) -> bool:
    return bool(user.pix_key or (user.bank_code and user.bank_agency and user.bank_account))


class ReferralService:
    """Service layer for the referral program"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ReferralRepository()

    # ------------------------------------------------------------------
    # Commission processing (called from billing webhooks)
    # ------------------------------------------------------------------

    def process_paid_invoice(self, paid: PaidInvoice) -> dict:
        """
        Create the commission payout(s) owed for a paid invoice.

        Returns a dict whose ``status`` is one of not_referred, blocked,
        ineligible, duplicate or created.
        """
        user = paid.user
        audit_base = {
            "referred_user_id": user.id,
            "gateway": paid.gateway,
            "gross_amount": paid.gross_amount,
        }
        details = {
            "invoice_id": paid.invoice_id,
            "event_id": paid.event_id,
            "plan": paid.plan,
            "billing_interval": paid.billing_interval,
        }

        referral = self.repo.get_referral_for_referred(self.db, user.id)
        if not referral:
            logger.info(f"ℹ️ User {user.id} is not referred, no commission to process")
            self.repo.add_audit(
                self.db, "payment", status="success", ineligibility_reason="User is not referred",
                details=details, **audit_base,
            )
            self.db.commit()
            return {"status": "not_referred"}

        referrer = self.repo.get_user(self.db, referral.referrer_user_id)
        audit_base["referrer_user_id"] = referral.referrer_user_id

        shared_ips = shared_login_ips(self.db, referral.referrer_user_id, user.id) if referrer else []
        signals = (
            detect_fraud_signals(referrer, user, card_match=paid.card_match, shared_ips=shared_ips)
            if referrer
            else []
        )
        blocked = is_blocking(signals)
        for signal in signals:
            signal_details = {"invoice_id": paid.invoice_id, "action_taken": "blocked" if blocked else "logged"}
            if signal == SAME_IP:
                signal_details["shared_ips"] = len(shared_ips)
            self.repo.add_fraud_signal(self.db, referral.referrer_user_id, user.id, signal, signal_details)
        if blocked:
            logger.warning(f"🚫 Commission blocked for referral {referral.id}: {signals}")
            self.repo.add_audit(
                self.db, "commission_blocked_fraud", status="blocked",
                ineligibility_reason=f"Fraud signals: {', '.join(signals)}", details=details, **audit_base,
            )
            self.db.commit()
            return {"status": "blocked", "signals": signals}

        if not referrer or not referrer.is_referral_partner:
            logger.info(f"⚠️ Referrer of user {user.id} is no longer a partner, no commission")
            self.repo.add_audit(
                self.db, "payment", status="ineligible",
                ineligibility_reason="Referrer is no longer a partner", details=details, **audit_base,
            )
            self.db.commit()
            return {"status": "ineligible"}

        is_first_payment = referral.status != "converted"
        payment_type = resolve_payment_type(is_first_payment, paid.billing_interval, paid.is_proration)

        if self.repo.payout_exists(self.db, paid.invoice_id, paid.event_id, payment_type):
            logger.info(f"⚠️ Commission already processed for invoice {paid.invoice_id} ({payment_type})")
            return {"status": "duplicate"}
        if self.repo.payout_exists(self.db, paid.invoice_id, paid.event_id, None):
            # the referral converted on an earlier delivery of this same charge
            logger.info(f"⚠️ Invoice {paid.invoice_id} already produced a commission, skipping")
            return {"status": "duplicate"}

        period_start = paid.period_start or datetime.utcnow()
        breakdown = calculate_commission(paid.gross_amount, paid.gateway, payment_type, period_start)

        payouts = []
        for installment in breakdown.installments:
            payout = ReferralPayout(
                referrer_user_id=referral.referrer_user_id,
                referred_user_id=user.id,
                referral_id=referral.id,
                amount=installment.amount,
                status="pending",
                gateway=paid.gateway,
                gateway_invoice_id=paid.invoice_id,
                gateway_event_id=paid.event_id,
                payment_type=payment_type,
                installment_number=installment.number,
                total_installments=breakdown.total_installments,
                commission_rate=breakdown.commission_rate,
                gross_amount=breakdown.gross_amount,
                gateway_fee=breakdown.gateway_fee,
                net_amount=breakdown.net_amount,
                billing_interval=paid.billing_interval,
                period_start=installment.period_start,
                approval_deadline=installment.approval_deadline,
            )
            self.db.add(payout)
            payouts.append(payout)

        if is_first_payment and not paid.is_proration:
            referral.status = "converted"
            referral.converted_at = datetime.utcnow()

        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"⚠️ Concurrent commission insert for invoice {paid.invoice_id}, skipping")
            return {"status": "duplicate"}

        if payment_type == YEARLY:
            action = "annual_commission_created" if is_first_payment else "annual_recurring_commission"
        else:
            action = COMMISSION_ACTIONS[payment_type]

        self.repo.add_audit(
            self.db,
            action,
            payout_id=payouts[0].id,
            net_amount=breakdown.net_amount,
            commission_amount=breakdown.commission_amount,
            status="pending",
            details={
                **details,
                "payment_type": payment_type,
                "commission_rate": breakdown.commission_rate,
                "gateway_fee": breakdown.gateway_fee,
                "installments": breakdown.total_installments,
                "fraud_signals": signals,
            },
            **audit_base,
        )

        create_notification(
            self.db,
            referral.referrer_user_id,
            *self._commission_message(user, paid, payment_type, is_first_payment, breakdown),
            commit=False,
        )
        self.db.commit()

        logger.info(
            f"✅ Commission {format_brl(breakdown.commission_amount)} ({payment_type}) created "
            f"for referrer {referral.referrer_user_id}"
        )
        return {
            "status": "created",
            "payment_type": payment_type,
            "commission_amount": breakdown.commission_amount,
            "payout_ids": [p.id for p in payouts],
        }

    @staticmethod
    def _commission_message(user: User, paid: PaidInvoice, payment_type: str, is_first: bool, breakdown) -> tuple:
        who = user.nome or "Seu indicado"
        plan = PLAN_NAMES.get(paid.plan, paid.plan)
        if payment_type == YEARLY:
            monthly = breakdown.installments[0].amount
            return (
                "Nova Indicação Anual! 💰" if is_first else "Renovação Anual! 💰",
                f"{who} {'assinou' if is_first else 'renovou'} o plano {plan} Anual. Você receberá "
                f"{format_brl(breakdown.commission_amount)} ({breakdown.commission_rate}%) de comissão, "
                f"distribuídos em 12 parcelas mensais de {format_brl(monthly)}.",
            )
        verb = {PRORATION: "fez upgrade para", FIRST_PAYMENT: "assinou", RECURRING: "renovou"}[payment_type]
        return (
            "Indicação convertida em assinatura! 💰" if payment_type == FIRST_PAYMENT else "Nova comissão! 💰",
            f"{who} {verb} o plano {plan}. Você ganhou {format_brl(breakdown.commission_amount)} "
            f"({breakdown.commission_rate}%) de comissão.",
        )

    def cancel_payouts_for_invoice(self, invoice_id: str, reason: str) -> int:
        """Cancel open payouts of a refunded or charged-back invoice"""
        payouts = self.repo.list_open_payouts_for_invoice(self.db, invoice_id)
        for payout in payouts:
            payout.status = "cancelled"
            payout.cancel_reason = reason
            self.repo.add_audit(
                self.db, "commission_cancelled", referrer_user_id=payout.referrer_user_id,
                referred_user_id=payout.referred_user_id, payout_id=payout.id, gateway=payout.gateway,
                commission_amount=payout.amount, status="cancelled", details={"reason": reason, "invoice_id": invoice_id},
            )
        self.db.commit()
        if payouts:
            logger.info(f"🛑 Cancelled {len(payouts)} payout(s) for invoice {invoice_id}: {reason}")
        return len(payouts)

    # ------------------------------------------------------------------
    # Partner-facing operations
    # ------------------------------------------------------------------

    def join_program(self, user: User) -> dict:
        if not user.referral_code:
            user.referral_code = generate_referral_code()
        user.is_referral_partner = True
        self.repo.add_audit(self.db, "partner_joined", referrer_user_id=user.id, status="active")
        self.db.commit()
        return {"success": True, "referral_code": user.referral_code, "share_link": self.share_link(user)}

    def leave_program(self, user: User) -> dict:
        user.is_referral_partner = False
        self.repo.add_audit(self.db, "partner_left", referrer_user_id=user.id, status="inactive")
        self.db.commit()
        return {"success": True}

    @staticmethod
    def share_link(user: User) -> Optional[str]:
        return f"{FRONTEND_URL}/cadastro?ref={user.referral_code}" if user.referral_code else None

    def get_stats(self, user: User, now: Optional[datetime] = None) -> dict:
        """Referral counts and balances by payout state; pending payouts past their deadline count as available"""
        now = now or datetime.utcnow()
        referrals = self.repo.list_referrals(self.db, user.id)
        payouts = self.repo.list_payouts_for_referrer(self.db, user.id)

        buckets = {key: [] for key in ("pending", "available", "requested", "paid", "failed")}
        for payout in payouts:
            if payout.status in ("pending", "approved"):
                available = payout.approval_deadline is None or payout.approval_deadline <= now
                buckets["available" if available else "pending"].append(payout)
            elif payout.status in ("requested", "processing"):
                buckets["requested"].append(payout)
            elif payout.status == "paid":
                buckets["paid"].append(payout)
            else:
                buckets["failed"].append(payout)

        balances = {}
        for key, items in buckets.items():
            balances[key] = sum(p.amount for p in items)
            balances[f"{key}_count"] = len(items)

        monthly_history: dict[str, dict] = {}
        for payout in buckets["paid"]:
            if payout.paid_at:
                month = payout.paid_at.strftime("%Y-%m")
                entry = monthly_history.setdefault(month, {"month": month, "amount": 0, "count": 0})
                entry["amount"] += payout.amount
                entry["count"] += 1

        converted = [r for r in referrals if r.status == "converted"]
        return {
            "success": True,
            "referral_code": user.referral_code,
            "share_link": self.share_link(user),
            "is_partner": user.is_referral_partner,
            "stats": {
                "total_referrals": len(referrals),
                "pending_referrals": sum(1 for r in referrals if r.status == "pending"),
                "converted_referrals": len(converted),
                "premium_referrals": sum(1 for r in converted if r.referred and r.referred.subscription_plan == "premium"),
                "pro_referrals": sum(1 for r in converted if r.referred and r.referred.subscription_plan == "pro"),
                "total_earned": balances["paid"],
            },
            "balances": balances,
            "minimum_payout": MINIMUM_PAYOUT_AMOUNT,
            "monthly_history": sorted(monthly_history.values(), key=lambda m: m["month"], reverse=True)[:12],
            "recent_payouts": [PayoutResponse.model_validate(p).model_dump() for p in payouts[:20]],
        }

    async def request_payout(self, user: User, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()

        if not user.is_referral_partner:
            raise HTTPException(status_code=400, detail="Você não está no programa de indicação")
        if not has_payout_destination(user):
            raise HTTPException(status_code=400, detail="Complete seus dados bancários antes de solicitar saque")
        if not user.bank_details_validated:
            raise HTTPException(
                status_code=400, detail="Seus dados bancários precisam ser validados antes de solicitar saque"
            )

        available = self.repo.list_available_payouts(self.db, user.id, now)
        if not available:
            raise HTTPException(status_code=400, detail="Nenhuma comissão disponível para saque")

        total = sum(p.amount for p in available)
        if total < MINIMUM_PAYOUT_AMOUNT:
            raise HTTPException(
                status_code=400,
                detail=f"Valor mínimo para saque: {format_brl(MINIMUM_PAYOUT_AMOUNT)}. "
                f"Seu saldo disponível: {format_brl(total)}",
            )

        method = "PIX" if user.pix_key else "TED"
        for payout in available:
            payout.status = "requested"
            payout.requested_at = now

        create_notification(
            self.db,
            user.id,
            "Saque Solicitado! 💸",
            f"Sua solicitação de saque de {format_brl(total)} foi recebida. "
            f"O pagamento será processado em até 1 dia útil via {method}.",
            commit=False,
        )
        self.repo.add_audit(
            self.db,
            "payout_requested",
            referrer_user_id=user.id,
            commission_amount=total,
            status="requested",
            details={"payout_ids": [p.id for p in available], "payment_method": method},
        )
        self.db.commit()
        logger.info(f"💸 User {user.id} requested payout of {format_brl(total)} ({len(available)} payouts)")

        try:
            await send_payout_requested_email(user.email, user.nome or user.email, format_brl(total))
        except Exception as e:
            logger.error(f"❌ Failed to send payout request email to user {user.id}: {e}")

        return {
            "success": True,
            "message": "Saque solicitado com sucesso",
            "amount": total,
            "payout_count": len(available),
        }

    def save_bank_details(self, user: User, data: BankDetailsRequest) -> dict:
        """Validate payout bank details and store the sensitive fields encrypted"""
        errors = []

        tipo_pessoa = {"fisica": "PF", "juridica": "PJ"}.get(data.tipo_pessoa, data.tipo_pessoa)
        if tipo_pessoa not in ("PF", "PJ"):
            errors.append("Tipo de pessoa inválido")

        document = only_digits(data.cpf_cnpj)
        if not document:
            errors.append("CPF/CNPJ é obrigatório")
        elif tipo_pessoa == "PF" and not is_valid_cpf(document):
            errors.append("CPF inválido")
        elif tipo_pessoa == "PJ" and not is_valid_cnpj(document):
            errors.append("CNPJ inválido")

        if not data.nome_titular or len(data.nome_titular.strip()) < 3:
            errors.append("Nome do titular inválido")

        pix_key = (data.chave_pix or "").strip()
        pix_type = None
        if pix_key:
            pix_type = detect_pix_key_type(pix_key)
            if not pix_type:
                errors.append("Formato de chave PIX inválido")

        has_bank_fields = any([data.banco, data.agencia, data.conta])
        if has_bank_fields or not pix_key:
            agency = re.sub(r"\s", "", data.agencia or "")
            account = re.sub(r"\s", "", data.conta or "")
            if not data.banco or len(data.banco.strip()) < 2:
                errors.append("Banco é obrigatório")
            if not AGENCY_PATTERN.match(agency):
                errors.append("Agência inválida")
            if not ACCOUNT_PATTERN.match(account):
                errors.append("Conta inválida")
            if data.tipo_conta not in ("corrente", "poupanca"):
                errors.append("Tipo de conta inválido")

        if errors:
            raise HTTPException(status_code=400, detail={"valid": False, "errors": errors})

        if pix_key:
            user.pix_key = encrypt_value(normalize_pix_key(pix_key, pix_type))
            user.pix_key_type = pix_type
        else:
            user.pix_key = None
            user.pix_key_type = None

        if has_bank_fields:
            account_digits = only_digits(data.conta)
            user.bank_code = only_digits(data.banco) or data.banco.strip()
            user.bank_agency = only_digits(data.agencia)
            user.bank_account = encrypt_value(account_digits[:-1] or account_digits)
            user.bank_account_digit = account_digits[-1:] if len(account_digits) > 1 else "0"
            user.bank_account_type = data.tipo_conta

        user.bank_holder_name = data.nome_titular.strip()
        user.bank_holder_document = encrypt_value(document)
        user.bank_details_validated = True

        self.repo.add_audit(
            self.db,
            "bank_details_updated",
            referrer_user_id=user.id,
            status="validated",
            details={"pix_key_type": pix_type, "has_bank_account": has_bank_fields},
        )
        self.db.commit()
        logger.info(f"🏦 Bank details validated for user {user.id}")
        return {"success": True, "valid": True, "message": "Dados bancários validados e salvos com sucesso"}

    def get_bank_details(self, user: User) -> dict:
        """Masked view of the stored payout destination"""
        return {
            "bank_details_validated": user.bank_details_validated,
            "pix_key": mask_sensitive(decrypt_value(user.pix_key)),
            "pix_key_type": user.pix_key_type,
            "bank_code": user.bank_code,
            "bank_agency": user.bank_agency,
            "bank_account": mask_sensitive(decrypt_value(user.bank_account)),
            "bank_account_type": user.bank_account_type,
            "bank_holder_name": user.bank_holder_name,
            "bank_holder_document": mask_sensitive(decrypt_value(user.bank_holder_document)),
        }
