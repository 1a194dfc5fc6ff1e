"""Stripe service - subscriptions, checkout and Connect transfers"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import stripe

from ...config import STRIPE_SECRET_KEY
from .exceptions import GatewayNotConfiguredError, PaymentGatewayError

logger = logging.getLogger(__name__)


def _value(obj, key: str, default=None):
    """Read a field from a Stripe object or a plain dict"""
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _timestamp(value) -> Optional[datetime]:
    return datetime.utcfromtimestamp(int(value)) if value else None


def summarize_subscription(subscription) -> dict:
    """Flatten the fields billing needs from a Stripe subscription"""
    items = _value(_value(subscription, "items", {}), "data", []) or []
    first_item = items[0] if items else {}
    price = _value(first_item, "price", {})

    # Newer API versions moved the billing period onto the subscription item
    period_start = _value(subscription, "current_period_start") or _value(first_item, "current_period_start")
    period_end = _value(subscription, "current_period_end") or _value(first_item, "current_period_end")

    return {
        "id": _value(subscription, "id"),
        "status": _value(subscription, "status"),
        "customer": _value(subscription, "customer"),
        "item_id": _value(first_item, "id"),
        "price_id": _value(price, "id"),
        "current_period_start": _timestamp(period_start),
        "current_period_end": _timestamp(period_end),
        "cancel_at_period_end": bool(_value(subscription, "cancel_at_period_end", False)),
    }


def summarize_invoice(invoice) -> dict:
    lines = _value(_value(invoice, "lines", {}), "data", []) or []
    description = _value(invoice, "description") or (_value(lines[0], "description") if lines else None)
    return {
        "id": _value(invoice, "id"),
        "number": _value(invoice, "number"),
        "status": _value(invoice, "status"),
        "amount_paid": int(_value(invoice, "amount_paid", 0)),
        "amount_due": int(_value(invoice, "amount_due", 0)),
        "total": int(_value(invoice, "total", 0)),
        "created": _timestamp(_value(invoice, "created")),
        "due_date": _timestamp(_value(invoice, "due_date")),
        "period_start": _timestamp(_value(invoice, "period_start")),
        "period_end": _timestamp(_value(invoice, "period_end")),
        "invoice_url": _value(invoice, "hosted_invoice_url"),
        "invoice_pdf": _value(invoice, "invoice_pdf"),
        "billing_reason": _value(invoice, "billing_reason"),
        "description": description,
    }


class StripeService:
    """Service for Stripe API operations"""

    def __init__(self):
        self.api_key = STRIPE_SECRET_KEY
        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY not set; Stripe billing endpoints will fail until configured")
        else:
            stripe.api_key = self.api_key
            logger.info("Stripe client configured")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _require_client(self):
        if not self.api_key:
            raise GatewayNotConfiguredError("Stripe não configurado", gateway="stripe")

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            raise PaymentGatewayError(
                getattr(e, "user_message", None) or str(e),
                gateway="stripe",
                status_code=getattr(e, "http_status", None),
            ) from e

    async def create_checkout_session(
        self,
        price_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        coupon_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        """Create a subscription-mode Checkout session"""
        self._require_client()

        params = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
            "subscription_data": {"metadata": metadata or {}},
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = customer_email
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        else:
            params["allow_promotion_codes"] = True

        try:
            session = await self._call(stripe.checkout.Session.create, **params)
            logger.info(f"✅ Stripe checkout session created: {_value(session, 'id')}")
            return {"id": _value(session, "id"), "url": _value(session, "url")}
        except Exception as e:
            logger.error(f"Failed to create Stripe checkout session: {e}")
            raise

    async def get_subscription(self, subscription_id: str) -> dict:
        self._require_client()
        try:
            subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
            return summarize_subscription(subscription)
        except Exception as e:
            logger.error(f"Failed to get subscription {subscription_id}: {e}")
            raise

    async def cancel_subscription(self, subscription_id: str, at_period_end: bool = True) -> dict:
        """Cancel at the end of the period, or immediately"""
        self._require_client()
        try:
            if at_period_end:
                subscription = await self._call(
                    stripe.Subscription.modify, subscription_id, cancel_at_period_end=True
                )
            else:
                subscription = await self._call(stripe.Subscription.cancel, subscription_id)
            logger.info(f"🛑 Stripe subscription {subscription_id} cancelled (at_period_end={at_period_end})")
            return summarize_subscription(subscription)
        except Exception as e:
            logger.error(f"Failed to cancel subscription {subscription_id}: {e}")
            raise

    async def reactivate_subscription(self, subscription_id: str) -> dict:
        self._require_client()
        try:
            subscription = await self._call(stripe.Subscription.modify, subscription_id, cancel_at_period_end=False)
            return summarize_subscription(subscription)
        except Exception as e:
            logger.error(f"Failed to reactivate subscription {subscription_id}: {e}")
            raise

    async def list_invoices(self, customer_id: str, limit: int = 100) -> list:
        """Invoice history of a customer, newest first"""
        self._require_client()
        invoices = await self._call(stripe.Invoice.list, customer=customer_id, limit=limit)
        return [summarize_invoice(invoice) for invoice in (_value(invoices, "data", []) or [])]

    async def list_card_fingerprints(self, customer_id: str) -> set:
        """Fingerprints of the cards saved on a customer"""
        self._require_client()
        methods = await self._call(stripe.PaymentMethod.list, customer=customer_id, type="card")
        return {
            _value(_value(method, "card", {}), "fingerprint")
            for method in (_value(methods, "data", []) or [])
            if _value(_value(method, "card", {}), "fingerprint")
        }

    async def change_subscription_price(self, subscription_id: str, item_id: str, new_price_id: str) -> dict:
        """Swap the subscription price and invoice the proration immediately"""
        self._require_client()
        try:
            subscription = await self._call(
                stripe.Subscription.modify,
                subscription_id,
                items=[{"id": item_id, "price": new_price_id}],
                proration_behavior="always_invoice",
                cancel_at_period_end=False,
            )
            logger.info(f"🔄 Stripe subscription {subscription_id} moved to {new_price_id}")
            return summarize_subscription(subscription)
        except Exception as e:
            logger.error(f"Failed to change subscription {subscription_id}: {e}")
            raise

    async def create_connect_transfer(
        self, amount: int, destination: str, description: str, metadata: Optional[dict] = None
    ) -> str:
        """Transfer cents to a connected account; returns the transfer id"""
        self._require_client()
        try:
            transfer = await self._call(
                stripe.Transfer.create,
                amount=amount,
                currency="brl",
                destination=destination,
                description=description,
                metadata=metadata or {},
            )
            logger.info(f"💸 Stripe transfer {_value(transfer, 'id')} created for {destination}")
            return _value(transfer, "id")
        except Exception as e:
            logger.error(f"Failed to create Stripe transfer to {destination}: {e}")
            raise


stripe_service = StripeService()
