"""Subscription service - checkout, cancellation and plan changes across Stripe and Asaas"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import FRONTEND_URL, PAYMENT_GATEWAY, STRIPE_REFERRAL_COUPON_ID
from ...models import User
from ...models_referral import Referral, ReferralAuditLog
from ...plan_limits import get_usage_stats
from ...shared.formatters import format_brl
from ..notifications.service import create_notification
from .asaas_service import asaas_service, build_external_reference
from .exceptions import GatewayNotConfiguredError, PaymentGatewayError
from .pricing import get_price, list_plans
from .proration import ProrationError, preview_asaas_proration, preview_stripe_proration
from .stripe_service import stripe_service

logger = logging.getLogger(__name__)

REFERRAL_DISCOUNT_PERCENT = 20
INVOICE_STATUSES = {"paid", "open"}
PLAN_LABELS = {"pro": "Profissional", "premium": "Premium"}


def resolve_gateway(user: User) -> str:
    """The gateway holding the user's subscription, else the configured default"""
    if user.asaas_subscription_id:
        return "asaas"
    if user.stripe_subscription_id:
        return "stripe"
    return "asaas" if PAYMENT_GATEWAY == "asaas" else "stripe"


def gateway_http_error(e: PaymentGatewayError) -> HTTPException:
    if isinstance(e, GatewayNotConfiguredError):
        return HTTPException(status_code=503, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


class SubscriptionService:
    """Service layer for subscription billing"""

    def __init__(self, db: Session):
        self.db = db

    def get_status(self, user: User) -> dict:
        return {
            "plan": user.subscription_plan or "basico",
            "billing_interval": user.billing_interval,
            "subscription_status": user.subscription_status,
            "subscription_start_date": user.subscription_start_date,
            "subscription_end_date": user.subscription_end_date,
            "cancel_at_period_end": bool(user.cancel_at_period_end),
            "gateway": resolve_gateway(user) if (user.subscription_plan or "basico") != "basico" else None,
            "usage": get_usage_stats(user, self.db),
        }

    def get_plans(self, user: User) -> dict:
        gateway = resolve_gateway(user)
        return {"gateway": gateway, "plans": list_plans(gateway)}

    def _pending_referral(self, user: User) -> Optional[Referral]:
        """Referral still waiting for its first payment (eligible for the welcome discount)"""
        return (
            self.db.query(Referral)
            .filter(Referral.referred_user_id == user.id, Referral.status != "converted")
            .first()
        )

    async def create_checkout(self, user: User, price_id: str, return_path: Optional[str], apply_discount: bool) -> dict:
        gateway = resolve_gateway(user)
        price = get_price(price_id, gateway)
        if not price:
            raise HTTPException(status_code=400, detail=f"Price ID inválido: {price_id}")

        referral = self._pending_referral(user) if apply_discount else None
        success_url = f"{FRONTEND_URL}{return_path or '/configuracoes?checkout=success'}"
        cancel_url = f"{FRONTEND_URL}/upgrade?checkout=cancel"

        try:
            if gateway == "stripe":
                coupon = STRIPE_REFERRAL_COUPON_ID if referral else None
                session = await stripe_service.create_checkout_session(
                    price_id=price.price_id,
                    customer_email=user.email,
                    customer_id=user.stripe_customer_id,
                    success_url=success_url,
                    cancel_url=cancel_url,
                    coupon_id=coupon,
                    metadata={"user_id": str(user.id), "plan": price.plan, "interval": price.interval},
                )
                logger.info(f"✅ Created Stripe checkout for user {user.id}: {session['id']}")
                return {
                    "gateway": "stripe",
                    "url": session["url"],
                    "session_id": session["id"],
                    "discount_applied": bool(coupon),
                }

            discount = 0
            if referral and price.plan == "pro":
                discount = round(price.amount * REFERRAL_DISCOUNT_PERCENT / 100)

            customer_id = user.asaas_customer_id or await asaas_service.find_or_create_customer(
                email=user.email, name=user.nome, cpf_cnpj=user.cpf_cnpj, external_reference=str(user.id)
            )
            subscription = await asaas_service.create_subscription(
                customer_id=customer_id,
                amount=price.amount,
                interval=price.interval,
                description=price.display_name + (" (20% desconto indicação)" if discount else ""),
                external_reference=build_external_reference(
                    user_id=user.id,
                    plan=price.plan,
                    interval=price.interval,
                    referral_id=referral.id if referral else None,
                    discount_applied=bool(discount),
                    original_price=price.amount,
                ),
                discount=discount,
            )
            payment_url = await asaas_service.get_subscription_payment_url(subscription["id"])
            if not payment_url:
                raise HTTPException(status_code=502, detail="Falha ao gerar URL de pagamento.")

            user.asaas_customer_id = customer_id
            user.asaas_subscription_id = subscription["id"]
            self.db.commit()

            logger.info(f"✅ Created Asaas subscription {subscription['id']} for user {user.id}")
            return {
                "gateway": "asaas",
                "url": payment_url,
                "subscription_id": subscription["id"],
                "discount_applied": bool(discount),
                "original_price": price.amount,
                "final_price": price.amount - discount,
                "discount_amount": discount,
            }
        except HTTPException:
            raise
        except PaymentGatewayError as e:
            logger.error(f"❌ Checkout failed for user {user.id} on {gateway}: {e.message}")
            raise gateway_http_error(e) from e

    async def cancel_subscription(self, user: User, cancel_at_period_end: bool = True) -> dict:
        gateway = resolve_gateway(user)
        try:
            if gateway == "stripe":
                if not user.stripe_subscription_id:
                    raise HTTPException(status_code=400, detail="Nenhuma assinatura ativa encontrada")
                summary = await stripe_service.cancel_subscription(user.stripe_subscription_id, cancel_at_period_end)
                if cancel_at_period_end:
                    user.cancel_at_period_end = True
                    user.subscription_end_date = summary["current_period_end"] or user.subscription_end_date
                else:
                    self._downgrade(user)
            else:
                if not user.asaas_subscription_id:
                    raise HTTPException(status_code=400, detail="Nenhuma assinatura ativa encontrada")
                await asaas_service.cancel_subscription(user.asaas_subscription_id)
                # Asaas has no scheduled cancellation; access lasts until the paid period ends
                user.cancel_at_period_end = True
                user.subscription_status = "cancelled"
        except HTTPException:
            raise
        except PaymentGatewayError as e:
            logger.error(f"❌ Failed to cancel subscription for user {user.id}: {e.message}")
            raise gateway_http_error(e) from e

        self.db.commit()
        logger.info(f"🛑 Subscription cancelled for user {user.id} ({gateway}, at_period_end={cancel_at_period_end})")
        return {
            "success": True,
            "cancel_at_period_end": user.cancel_at_period_end,
            "subscription_end_date": user.subscription_end_date,
            "plan": user.subscription_plan,
        }

    async def reactivate_subscription(self, user: User) -> dict:
        """Undo a cancellation scheduled for the end of the period"""
        if resolve_gateway(user) != "stripe" or not user.stripe_subscription_id:
            raise HTTPException(status_code=400, detail="Reativação disponível apenas para assinaturas Stripe")
        if not user.cancel_at_period_end:
            raise HTTPException(status_code=400, detail="A assinatura não está agendada para cancelamento")
        try:
            summary = await stripe_service.reactivate_subscription(user.stripe_subscription_id)
        except PaymentGatewayError as e:
            raise gateway_http_error(e) from e
        user.cancel_at_period_end = False
        user.subscription_status = "active"
        user.subscription_end_date = summary.get("current_period_end") or user.subscription_end_date
        create_notification(
            self.db,
            user.id,
            "Assinatura Reativada",
            f"Sua assinatura do plano {PLAN_LABELS.get(user.subscription_plan, user.subscription_plan)} "
            "foi reativada com sucesso! A cobrança continuará normalmente.",
            commit=False,
        )
        self.db.commit()
        logger.info(f"♻️ Subscription reactivated for user {user.id}")
        return {
            "success": True,
            "message": "Assinatura reativada com sucesso",
            "next_billing_date": user.subscription_end_date,
        }

    async def list_invoices(self, user: User) -> dict:
        """Paid and open charges of the user's subscription, newest first"""
        gateway = resolve_gateway(user)
        try:
            if gateway == "stripe" and user.stripe_customer_id:
                invoices = await stripe_service.list_invoices(user.stripe_customer_id)
            elif gateway == "asaas" and user.asaas_subscription_id:
                invoices = await asaas_service.list_subscription_payments(user.asaas_subscription_id)
            else:
                invoices = []
        except PaymentGatewayError as e:
            logger.error(f"❌ Failed to list invoices for user {user.id}: {e.message}")
            raise gateway_http_error(e) from e

        visible = [
            invoice
            for invoice in invoices
            if invoice["status"] in INVOICE_STATUSES
            and (invoice["amount_paid"] or invoice["amount_due"] or invoice["total"])
        ]
        visible.sort(key=lambda invoice: invoice["created"] or datetime.min, reverse=True)
        return {
            "gateway": gateway,
            "current_plan": user.subscription_plan or "basico",
            "invoices": visible,
        }

    async def preview_proration(self, user: User, new_price_id: str) -> dict:
        gateway = resolve_gateway(user)
        try:
            if gateway == "stripe":
                if not user.stripe_subscription_id:
                    raise HTTPException(status_code=400, detail="Nenhuma assinatura ativa encontrada")
                summary = await stripe_service.get_subscription(user.stripe_subscription_id)
                preview = preview_stripe_proration(
                    summary["price_id"], new_price_id, summary["current_period_start"], summary["current_period_end"]
                )
            else:
                preview = preview_asaas_proration(
                    user.subscription_plan, user.billing_interval, user.subscription_end_date, new_price_id
                )
        except ProrationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except PaymentGatewayError as e:
            raise gateway_http_error(e) from e
        return preview.to_response()

    async def change_plan(self, user: User, new_price_id: str) -> dict:
        """Move an active subscription to another price, charging the prorated difference"""
        gateway = resolve_gateway(user)
        try:
            if gateway == "stripe":
                return await self._change_stripe_plan(user, new_price_id)
            return await self._change_asaas_plan(user, new_price_id)
        except ProrationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except PaymentGatewayError as e:
            logger.error(f"❌ Plan change failed for user {user.id}: {e.message}")
            raise gateway_http_error(e) from e

    async def _change_stripe_plan(self, user: User, new_price_id: str) -> dict:
        if not user.stripe_subscription_id:
            raise HTTPException(status_code=400, detail="Nenhuma assinatura ativa encontrada")

        summary = await stripe_service.get_subscription(user.stripe_subscription_id)
        preview = preview_stripe_proration(
            summary["price_id"], new_price_id, summary["current_period_start"], summary["current_period_end"]
        )
        await stripe_service.change_subscription_price(user.stripe_subscription_id, summary["item_id"], new_price_id)

        new_price = get_price(new_price_id, "stripe")
        user.subscription_plan = new_price.plan
        user.billing_interval = new_price.interval
        user.cancel_at_period_end = False
        self.db.commit()

        logger.info(f"🔄 User {user.id} moved to {new_price.display_name} on Stripe")
        return {
            "success": True,
            "gateway": "stripe",
            "newPlan": new_price.plan,
            "newInterval": new_price.interval,
            "proration": preview.to_response(),
        }

    async def _change_asaas_plan(self, user: User, new_price_id: str) -> dict:
        preview = preview_asaas_proration(
            user.subscription_plan, user.billing_interval, user.subscription_end_date, new_price_id
        )
        new_price = get_price(new_price_id, "asaas")
        requires_payment = preview.amount_due > 0
        payment_url = None

        if requires_payment:
            if not user.asaas_customer_id:
                raise HTTPException(
                    status_code=400, detail="Cliente não encontrado no Asaas. Entre em contato com o suporte."
                )
            charge = await asaas_service.create_charge(
                customer_id=user.asaas_customer_id,
                amount=preview.amount_due,
                description=f"Upgrade para {new_price.display_name} (valor proporcional)",
                external_reference=build_external_reference(
                    user_id=user.id,
                    type="upgrade_proration",
                    previous_plan=user.subscription_plan,
                    plan=new_price.plan,
                    interval=new_price.interval,
                    proration_credit=preview.credit_amount,
                    proration_charge=preview.amount_due,
                    days_remaining=preview.days_remaining,
                ),
            )
            payment_url = charge.get("invoiceUrl") or charge.get("bankSlipUrl")
        else:
            user.subscription_plan = new_price.plan
            user.billing_interval = new_price.interval
            user.cancel_at_period_end = False

        self.db.add(
            ReferralAuditLog(
                action="upgrade",
                referred_user_id=user.id,
                gateway="asaas",
                gross_amount=preview.amount_due,
                status="pending" if requires_payment else "success",
                details={
                    "previous_plan": preview.current_plan_tier,
                    "new_plan": new_price.plan,
                    "billing_interval": new_price.interval,
                    "proration_credit": preview.credit_amount,
                    "days_remaining": preview.days_remaining,
                },
            )
        )
        self.db.commit()

        amount_label = format_brl(preview.amount_due)
        return {
            "success": True,
            "gateway": "asaas",
            "proratedAmount": preview.amount_due,
            "proratedAmountFormatted": amount_label,
            "creditAmount": preview.credit_amount,
            "newPlan": new_price.plan,
            "newInterval": new_price.interval,
            "requiresPayment": requires_payment,
            "paymentUrl": payment_url,
            "message": (
                f"Upgrade iniciado! Você será redirecionado para pagar o valor proporcional de {amount_label}."
                if requires_payment
                else f"Upgrade realizado com sucesso para o plano {new_price.display_name}!"
            ),
        }

    @staticmethod
    def _downgrade(user: User):
        user.subscription_plan = "basico"
        user.billing_interval = None
        user.subscription_status = "cancelled"
        user.cancel_at_period_end = False
        user.subscription_end_date = datetime.utcnow()
