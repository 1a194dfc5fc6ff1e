"""
Payment gateway webhook handling.

Stripe and Asaas events update the user's subscription fields, notify the
user and hand confirmed charges to the referral program for commission
processing. Signature/token checks happen in the router before these
handlers run.
"""

import logging
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...models import User
from ..notifications.service import create_notification
from ..referrals.service import PaidInvoice, ReferralService
from .asaas_service import asaas_service, parse_external_reference
from .stripe_service import stripe_service
from .exceptions import PaymentGatewayError
from .pricing import find_price, find_price_by_amount, get_price, round_cents

logger = logging.getLogger(__name__)

PLAN_LABELS = {"pro": "Profissional", "premium": "Premium"}

ASAAS_CONFIRMED_EVENTS = {"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"}
ASAAS_REVERSED_EVENTS = {
    "PAYMENT_REFUNDED",
    "PAYMENT_REFUND_IN_PROGRESS",
    "PAYMENT_CHARGEBACK_REQUESTED",
    "PAYMENT_DELETED",
}
ASAAS_SUBSCRIPTION_ENDED_EVENTS = {"SUBSCRIPTION_DELETED", "SUBSCRIPTION_INACTIVATED"}


def _timestamp(value) -> Optional[datetime]:
    return datetime.utcfromtimestamp(int(value)) if value else None


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    # Newer Stripe API versions nest the subscription under parent.subscription_details
    subscription = invoice.get("subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else subscription.get("id")
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _line_price_id(line: dict) -> Optional[str]:
    price = line.get("price")
    if isinstance(price, dict) and price.get("id"):
        return price["id"]
    pricing = (line.get("pricing") or {}).get("price_details") or {}
    return pricing.get("price")


def _line_is_proration(line: dict) -> bool:
    if line.get("proration"):
        return True
    parent = line.get("parent") or {}
    details = parent.get("subscription_item_details") or parent.get("invoice_item_details") or {}
    return bool(details.get("proration"))


class WebhookService:
    """Applies gateway events to local subscription state"""

    def __init__(self, db: Session):
        self.db = db
        self.referrals = ReferralService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _user_by_id(self, user_id) -> Optional[User]:
        try:
            return self.db.query(User).filter(User.id == int(user_id)).first()
        except (TypeError, ValueError):
            return None

    def _stripe_user(self, customer_id: Optional[str], metadata: dict, email: Optional[str]) -> Optional[User]:
        user = None
        if customer_id:
            user = self.db.query(User).filter(User.stripe_customer_id == customer_id).first()
        if not user and metadata.get("user_id"):
            user = self._user_by_id(metadata["user_id"])
        if not user and email:
            user = self.db.query(User).filter(User.email == email.lower()).first()
        return user

    async def _stripe_card_match(self, user: User) -> bool:
        """True when the referred user and their referrer saved the same card"""
        if not user.referred_by_user_id or not user.stripe_customer_id:
            return False
        referrer = self._user_by_id(user.referred_by_user_id)
        if not referrer or not referrer.stripe_customer_id or referrer.stripe_customer_id == user.stripe_customer_id:
            return False
        try:
            referred_cards = await stripe_service.list_card_fingerprints(user.stripe_customer_id)
            referrer_cards = await stripe_service.list_card_fingerprints(referrer.stripe_customer_id)
        except PaymentGatewayError as e:
            logger.warning(f"⚠️ Could not compare card fingerprints for user {user.id}: {e}")
            return False
        return bool(referred_cards & referrer_cards)

    def _asaas_user(self, reference: dict, customer_id: Optional[str], subscription_id: Optional[str] = None):
        user = self._user_by_id(reference["user_id"]) if reference.get("user_id") else None
        if not user and subscription_id:
            user = self.db.query(User).filter(User.asaas_subscription_id == subscription_id).first()
        if not user and customer_id:
            user = self.db.query(User).filter(User.asaas_customer_id == customer_id).first()
        return user

    def _downgrade(self, user: User, gateway: str):
        user.subscription_plan = "basico"
        user.billing_interval = None
        user.subscription_status = "cancelled"
        user.cancel_at_period_end = False
        if gateway == "stripe":
            user.stripe_subscription_id = None
        else:
            user.asaas_subscription_id = None
        create_notification(
            self.db,
            user.id,
            "Assinatura encerrada",
            "Sua assinatura foi encerrada e sua conta voltou para o plano Básico.",
            commit=False,
        )
        self.db.commit()
        logger.info(f"⬇️ User {user.id} downgraded to basico ({gateway})")

    # ------------------------------------------------------------------
    # Stripe
    # ------------------------------------------------------------------

    async def handle_stripe_event(self, event: dict) -> dict:
        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}
        logger.info(f"📨 Processing Stripe event: {event_type} ({event.get('id')})")

        if event_type == "checkout.session.completed":
            return self._stripe_checkout_completed(data)
        if event_type == "invoice.payment_succeeded":
            return await self._stripe_invoice_paid(event, data)
        if event_type == "invoice.payment_failed":
            return self._stripe_invoice_failed(data)
        if event_type == "customer.subscription.updated":
            return self._stripe_subscription_updated(data)
        if event_type == "customer.subscription.deleted":
            return self._stripe_subscription_deleted(data)

        logger.info(f"ℹ️ Unhandled Stripe event: {event_type}")
        return {"handled": False}

    def _stripe_checkout_completed(self, session: dict) -> dict:
        metadata = session.get("metadata") or {}
        user = self._stripe_user(session.get("customer"), metadata, session.get("customer_email"))
        if not user:
            logger.warning(f"⚠️ No user for Stripe checkout {session.get('id')}")
            return {"handled": False}
        user.stripe_customer_id = session.get("customer") or user.stripe_customer_id
        user.stripe_subscription_id = session.get("subscription") or user.stripe_subscription_id
        self.db.commit()
        return {"handled": True, "user_id": user.id}

    async def _stripe_invoice_paid(self, event: dict, invoice: dict) -> dict:
        lines = ((invoice.get("lines") or {}).get("data")) or []
        is_proration = any(_line_is_proration(line) for line in lines)
        plan_line = next((line for line in lines if not _line_is_proration(line)), lines[-1] if lines else {})

        subscription_details = (invoice.get("parent") or {}).get("subscription_details") or {}
        metadata = subscription_details.get("metadata") or invoice.get("metadata") or {}
        user = self._stripe_user(invoice.get("customer"), metadata, invoice.get("customer_email"))
        if not user:
            logger.warning(f"⚠️ No user for Stripe invoice {invoice.get('id')}")
            return {"handled": False}

        amount_paid = int(invoice.get("amount_paid") or 0)
        price = get_price(_line_price_id(plan_line), "stripe")
        if not price and not is_proration:
            price = find_price_by_amount(amount_paid, "stripe")
        plan = price.plan if price else (metadata.get("plan") or user.subscription_plan)
        interval = price.interval if price else (metadata.get("interval") or user.billing_interval or "monthly")

        period = plan_line.get("period") or {}
        period_start = _timestamp(period.get("start")) or datetime.utcnow()
        period_end = _timestamp(period.get("end"))

        user.subscription_plan = plan
        user.billing_interval = interval
        user.subscription_status = "active"
        user.cancel_at_period_end = False
        user.stripe_customer_id = invoice.get("customer") or user.stripe_customer_id
        user.stripe_subscription_id = _invoice_subscription_id(invoice) or user.stripe_subscription_id
        if not user.subscription_start_date:
            user.subscription_start_date = period_start
        if not is_proration and period_end:
            user.subscription_end_date = period_end

        if is_proration:
            title, content = "Upgrade Confirmado", (
                f"Seu pagamento de upgrade (prorrata) de R$ {amount_paid / 100:.2f} foi processado com sucesso!"
            )
        else:
            title, content = "Pagamento Confirmado", f"Seu pagamento de R$ {amount_paid / 100:.2f} foi processado com sucesso."
        create_notification(self.db, user.id, title, content, commit=False)
        self.db.commit()
        logger.info(f"✅ User {user.id} on plan {plan}/{interval} after invoice {invoice.get('id')}")

        if amount_paid <= 0:
            return {"handled": True, "commission": {"status": "no_charge"}}

        commission = self.referrals.process_paid_invoice(
            PaidInvoice(
                user=user,
                gateway="stripe",
                invoice_id=invoice.get("id"),
                event_id=event.get("id"),
                gross_amount=amount_paid,
                plan=plan,
                billing_interval=interval,
                is_proration=is_proration,
                period_start=period_start,
                customer_id=invoice.get("customer"),
                card_match=await self._stripe_card_match(user),
            )
        )
        return {"handled": True, "commission": commission}

    def _stripe_invoice_failed(self, invoice: dict) -> dict:
        user = self._stripe_user(invoice.get("customer"), {}, invoice.get("customer_email"))
        if not user:
            return {"handled": False}
        user.subscription_status = "past_due"
        create_notification(
            self.db,
            user.id,
            "Falha no pagamento",
            "Não conseguimos processar o pagamento da sua assinatura. Atualize sua forma de pagamento.",
            commit=False,
        )
        self.db.commit()
        return {"handled": True}

    def _stripe_subscription_updated(self, subscription: dict) -> dict:
        user = self.db.query(User).filter(User.stripe_subscription_id == subscription.get("id")).first()
        if not user:
            return {"handled": False}
        user.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        if subscription.get("status") in ("active", "past_due", "trialing"):
            user.subscription_status = "past_due" if subscription["status"] == "past_due" else "active"
        self.db.commit()
        return {"handled": True}

    def _stripe_subscription_deleted(self, subscription: dict) -> dict:
        user = self.db.query(User).filter(User.stripe_subscription_id == subscription.get("id")).first()
        if not user and subscription.get("customer"):
            user = self.db.query(User).filter(User.stripe_customer_id == subscription["customer"]).first()
        if not user:
            logger.warning(f"⚠️ No user for deleted Stripe subscription {subscription.get('id')}")
            return {"handled": False}
        self._downgrade(user, "stripe")
        return {"handled": True}

    # ------------------------------------------------------------------
    # Asaas
    # ------------------------------------------------------------------

    async def handle_asaas_event(self, body: dict) -> dict:
        event_type = body.get("event")
        payment = body.get("payment") or {}
        logger.info(f"📨 Processing Asaas event: {event_type}")

        if event_type in ASAAS_CONFIRMED_EVENTS:
            return await self._asaas_payment_confirmed(payment)
        if event_type == "PAYMENT_OVERDUE":
            return self._asaas_payment_overdue(payment)
        if event_type in ASAAS_REVERSED_EVENTS:
            cancelled = self.referrals.cancel_payouts_for_invoice(payment.get("id"), f"Pagamento estornado ({event_type})")
            return {"handled": True, "cancelled_payouts": cancelled}
        if event_type in ASAAS_SUBSCRIPTION_ENDED_EVENTS:
            subscription = body.get("subscription") or {}
            reference = parse_external_reference(subscription.get("externalReference"))
            user = self._asaas_user(
                reference,
                subscription.get("customer") or payment.get("customer"),
                subscription.get("id") or payment.get("subscription"),
            )
            if not user:
                return {"handled": False}
            self._downgrade(user, "asaas")
            return {"handled": True}

        logger.info(f"ℹ️ Unhandled Asaas event: {event_type}")
        return {"handled": False}

    async def _asaas_payment_confirmed(self, payment: dict) -> dict:
        reference = parse_external_reference(payment.get("externalReference"))
        user = self._asaas_user(reference, payment.get("customer"), payment.get("subscription"))
        if not user:
            logger.warning(f"⚠️ No user for Asaas payment {payment.get('id')}")
            return {"handled": False}

        gross = round_cents((payment.get("value") or 0) * 100)
        is_upgrade = reference.get("type") == "upgrade_proration"

        price = find_price(reference.get("plan"), reference.get("interval"), "asaas")
        if not price and not is_upgrade:
            price = find_price_by_amount(gross, "asaas")
        plan = price.plan if price else (reference.get("plan") or "pro")
        interval = price.interval if price else ("yearly" if reference.get("interval") == "yearly" else "monthly")
        label = PLAN_LABELS.get(plan, plan)

        user.subscription_plan = plan
        user.billing_interval = interval
        user.subscription_status = "active"
        user.cancel_at_period_end = False
        user.asaas_customer_id = payment.get("customer") or user.asaas_customer_id

        if is_upgrade:
            create_notification(
                self.db,
                user.id,
                "Upgrade Confirmado! 🎉",
                f"Seu upgrade para o plano {label} foi confirmado. Aproveite os novos recursos!",
                commit=False,
            )
        else:
            now = datetime.utcnow()
            user.asaas_subscription_id = payment.get("subscription") or user.asaas_subscription_id
            user.subscription_start_date = user.subscription_start_date or now
            user.subscription_end_date = now + (relativedelta(years=1) if interval == "yearly" else relativedelta(months=1))
            create_notification(
                self.db,
                user.id,
                "Bem-vindo ao TherapyPro!",
                f"Sua assinatura {label} foi ativada com sucesso via Asaas. Aproveite todos os recursos!",
                commit=False,
            )
        self.db.commit()
        logger.info(f"✅ User {user.id} on plan {plan}/{interval} after Asaas payment {payment.get('id')}")

        if is_upgrade and user.asaas_subscription_id and price:
            try:
                await asaas_service.update_subscription(
                    user.asaas_subscription_id, price.amount, price.interval, price.display_name
                )
            except PaymentGatewayError as e:
                logger.error(f"❌ Failed to move Asaas subscription {user.asaas_subscription_id} to new plan: {e.message}")

        if gross <= 0:
            return {"handled": True, "commission": {"status": "no_charge"}}

        # PAYMENT_CONFIRMED and PAYMENT_RECEIVED share a payment id; keying on it alone dedupes them
        commission = self.referrals.process_paid_invoice(
            PaidInvoice(
                user=user,
                gateway="asaas",
                invoice_id=payment.get("id"),
                event_id=None,
                gross_amount=gross,
                plan=plan,
                billing_interval=interval,
                is_proration=is_upgrade,
                customer_id=payment.get("customer"),
            )
        )
        return {"handled": True, "commission": commission}

    def _asaas_payment_overdue(self, payment: dict) -> dict:
        reference = parse_external_reference(payment.get("externalReference"))
        user = self._asaas_user(reference, payment.get("customer"), payment.get("subscription"))
        if not user:
            return {"handled": False}
        user.subscription_status = "past_due"
        create_notification(
            self.db,
            user.id,
            "Pagamento em atraso",
            "O pagamento da sua assinatura está em atraso. Regularize para manter o acesso ao seu plano.",
            commit=False,
        )
        self.db.commit()
        return {"handled": True}
