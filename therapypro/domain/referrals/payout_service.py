"""
Referral payout processing.

Batch payouts group every due commission of a referrer into a single Asaas
transfer (PIX when a key is on file, TED otherwise). Partners onboarded to
Stripe Connect can instead be paid one payout at a time.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...email_service import send_payout_sent_email
from ...models import User
from ...models_referral import ReferralPayout
from ...shared.encryption import decrypt_value
from ...shared.formatters import format_brl
from ...shared.validators import mask_sensitive, only_digits
from ..billing.asaas_service import asaas_service, cents_to_value
from ..billing.exceptions import PaymentGatewayError
from ..billing.stripe_service import stripe_service
from ..notifications.service import create_notification
from .commission import MINIMUM_PAYOUT_AMOUNT
from .repository import ReferralRepository

logger = logging.getLogger(__name__)

PIX_KEY_TYPES = {"cpf": "CPF", "cnpj": "CNPJ", "email": "EMAIL", "phone": "PHONE", "random": "EVP"}


def build_transfer_payload(referrer: User, amount: int, payout_count: int) -> tuple[Optional[dict], Optional[str]]:
    """Asaas /transfers payload for a referrer, or (None, None) when no destination is on file"""
    description = f"Comissão TherapyPro - {payout_count} indicação(ões)"

    pix_key = decrypt_value(referrer.pix_key)
    if pix_key:
        payload = {
            "value": cents_to_value(amount),
            "operationType": "PIX",
            "pixAddressKey": pix_key,
            "description": description,
        }
        if referrer.pix_key_type in PIX_KEY_TYPES:
            payload["pixAddressKeyType"] = PIX_KEY_TYPES[referrer.pix_key_type]
        return payload, "pix"

    account = decrypt_value(referrer.bank_account)
    if referrer.bank_code and referrer.bank_agency and account:
        return (
            {
                "value": cents_to_value(amount),
                "operationType": "TED",
                "bankAccount": {
                    "bank": {"code": referrer.bank_code},
                    "accountName": referrer.bank_holder_name or referrer.nome,
                    "cpfCnpj": only_digits(decrypt_value(referrer.bank_holder_document)),
                    "agency": only_digits(referrer.bank_agency),
                    "account": only_digits(account),
                    "accountDigit": referrer.bank_account_digit or "0",
                    "bankAccountType": "SAVINGS" if referrer.bank_account_type == "poupanca" else "CHECKING",
                },
                "description": description,
            },
            "ted",
        )

    return None, None


def mask_transfer_payload(payload: dict) -> dict:
    """Copy of a transfer payload safe for audit rows"""
    masked = dict(payload)
    if masked.get("pixAddressKey"):
        masked["pixAddressKey"] = mask_sensitive(masked["pixAddressKey"])
    if masked.get("bankAccount"):
        account = dict(masked["bankAccount"])
        account["cpfCnpj"] = mask_sensitive(account.get("cpfCnpj"))
        account["account"] = mask_sensitive(account.get("account"))
        masked["bankAccount"] = account
    return masked


class PayoutService:
    """Pays out referral commissions through the payment gateways"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ReferralRepository()

    def _cancel(self, payouts: list[ReferralPayout], reason: str):
        for payout in payouts:
            payout.status = "cancelled"
            payout.cancel_reason = reason

    async def process_due_payouts(self, now: Optional[datetime] = None) -> dict:
        """Run one batch over every payout past its approval deadline"""
        now = now or datetime.utcnow()
        logger.info("🚀 Starting referral payout processing")

        due = self.repo.list_due_payouts(self.db, now)
        if not due:
            logger.info("ℹ️ No pending payouts found")
            return {"success": True, "message": "Nenhum payout pendente", "processed": 0, "results": []}

        by_referrer: "OrderedDict[int, list[ReferralPayout]]" = OrderedDict()
        for payout in due:
            by_referrer.setdefault(payout.referrer_user_id, []).append(payout)

        results = []
        for referrer_id, payouts in by_referrer.items():
            result = await self._process_referrer(referrer_id, payouts, now)
            results.append(result)
            self.db.commit()

        summary = {
            "success": True,
            "processed": len(results),
            "paid": sum(1 for r in results if r["status"] == "paid"),
            "failed": sum(1 for r in results if r["status"] == "failed"),
            "skipped": sum(1 for r in results if r["status"] == "skipped"),
            "cancelled": sum(1 for r in results if r["status"] == "cancelled"),
            "results": results,
        }
        logger.info(
            f"📊 Payout processing complete: paid={summary['paid']} failed={summary['failed']} "
            f"skipped={summary['skipped']} cancelled={summary['cancelled']}"
        )
        return summary

    async def _process_referrer(self, referrer_id: int, payouts: list[ReferralPayout], now: datetime) -> dict:
        referrer = self.repo.get_user(self.db, referrer_id)
        result = {"referrer_user_id": referrer_id}

        if not referrer or not referrer.is_referral_partner:
            logger.info(f"⚠️ Referrer {referrer_id} is no longer a partner")
            self._cancel(payouts, "Afiliado não está mais no programa")
            return {**result, "status": "cancelled", "reason": "not_partner"}

        if not referrer.bank_details_validated:
            logger.info(f"⚠️ Referrer {referrer_id} has invalid bank details")
            return {**result, "status": "skipped", "reason": "invalid_bank_details"}

        total = sum(p.amount for p in payouts)
        if total < MINIMUM_PAYOUT_AMOUNT:
            return {**result, "status": "skipped", "reason": "below_minimum", "amount": total}

        valid = []
        for payout in payouts:
            referred = self.repo.get_user(self.db, payout.referred_user_id)
            if referred is None or (referred.subscription_plan and referred.subscription_plan != "basico"):
                valid.append(payout)
            else:
                self._cancel([payout], "Assinatura do indicado cancelada")

        if not valid:
            return {**result, "status": "skipped", "reason": "no_valid_payouts"}

        amount = sum(p.amount for p in valid)
        if amount < MINIMUM_PAYOUT_AMOUNT:
            return {**result, "status": "skipped", "reason": "below_minimum_after_validation", "amount": amount}

        payload, method = build_transfer_payload(referrer, amount, len(valid))
        if not payload:
            logger.info(f"⚠️ No payment method for referrer {referrer_id}")
            return {**result, "status": "skipped", "reason": "no_payment_method"}

        audit_details = {"request": {"timestamp": now.isoformat(), "payload": mask_transfer_payload(payload)}}
        try:
            transfer = await asaas_service.create_transfer(payload)
        except PaymentGatewayError as e:
            logger.error(f"❌ Transfer for referrer {referrer_id} failed: {e.message}")
            for payout in valid:
                payout.status = "failed"
                payout.failure_reason = e.message
            self.repo.add_audit(
                self.db, "asaas_transfer_request", referrer_user_id=referrer_id, gateway="asaas",
                commission_amount=amount, status="failed", ineligibility_reason=e.message[:255],
                details={**audit_details, "response": {"status": e.status_code, "body": e.payload}},
            )
            return {**result, "status": "failed", "reason": e.message, "amount": amount}

        for payout in valid:
            payout.status = "paid"
            payout.paid_at = now
            payout.transfer_id = transfer.get("id")
            payout.payout_method = method

        self.repo.add_audit(
            self.db, "asaas_transfer_request", referrer_user_id=referrer_id, gateway="asaas",
            commission_amount=amount, status="success",
            details={**audit_details, "response": {"id": transfer.get("id"), "status": transfer.get("status")}},
        )
        create_notification(
            self.db,
            referrer_id,
            "Pagamento de Comissão Enviado! 💰",
            f"Seu pagamento de {format_brl(amount)} referente a {len(valid)} indicação(ões) foi enviado via "
            f"{method.upper()}. O valor deve cair em sua conta em até 1 dia útil.",
            commit=False,
        )

        try:
            await send_payout_sent_email(referrer.email, referrer.nome or referrer.email, format_brl(amount), method.upper())
        except Exception as e:
            logger.error(f"❌ Failed to send payout email to referrer {referrer_id}: {e}")

        logger.info(f"✅ Transfer {transfer.get('id')} sent to referrer {referrer_id}: {format_brl(amount)}")
        return {
            **result,
            "status": "paid",
            "amount": amount,
            "transfer_id": transfer.get("id"),
            "payouts_count": len(valid),
        }

    async def process_stripe_payout(self, payout_id: int) -> dict:
        """Pay one pending payout to the referrer's Stripe Connect account"""
        payout = self.repo.get_payout(self.db, payout_id)
        if not payout:
            raise HTTPException(status_code=404, detail="Payout não encontrado")
        if payout.status not in ("pending", "approved", "requested"):
            raise HTTPException(status_code=400, detail=f"Payout não está pendente (status: {payout.status})")

        referrer = self.repo.get_user(self.db, payout.referrer_user_id)
        if not referrer or not referrer.stripe_connect_account_id:
            raise HTTPException(status_code=400, detail="Afiliado não possui conta Stripe Connect configurada")

        payout.status = "processing"
        self.db.commit()

        try:
            transfer_id = await stripe_service.create_connect_transfer(
                amount=payout.amount,
                destination=referrer.stripe_connect_account_id,
                description=f"Comissão TherapyPro - payout {payout.id}",
                metadata={"payout_id": str(payout.id), "referrer_user_id": str(referrer.id)},
            )
        except PaymentGatewayError as e:
            payout.status = "failed"
            payout.failure_reason = e.message
            self.repo.add_audit(
                self.db, "stripe_transfer_failed", referrer_user_id=referrer.id, payout_id=payout.id,
                gateway="stripe", commission_amount=payout.amount, status="failed",
                ineligibility_reason=e.message[:255],
            )
            self.db.commit()
            logger.error(f"❌ Stripe payout {payout.id} failed: {e.message}")
            raise HTTPException(status_code=502, detail=f"Falha na transferência: {e.message}") from e

        payout.status = "paid"
        payout.paid_at = datetime.utcnow()
        payout.transfer_id = transfer_id
        payout.payout_method = "stripe"
        self.repo.add_audit(
            self.db, "stripe_transfer_paid", referrer_user_id=referrer.id, payout_id=payout.id,
            gateway="stripe", commission_amount=payout.amount, status="success",
            details={"transfer_id": transfer_id, "destination": mask_sensitive(referrer.stripe_connect_account_id)},
        )
        create_notification(
            self.db,
            referrer.id,
            "Pagamento de Comissão Enviado! 💰",
            f"Sua comissão de {format_brl(payout.amount)} foi transferida para sua conta Stripe.",
            commit=False,
        )
        self.db.commit()
        logger.info(f"✅ Stripe payout {payout.id} paid via transfer {transfer_id}")
        return {"success": True, "payout_id": payout.id, "transfer_id": transfer_id, "amount": payout.amount}
