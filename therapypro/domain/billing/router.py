"""Billing router - FastAPI endpoints for subscriptions and gateway webhooks"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ... import config
from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter
from ...webhook_security import verify_asaas_webhook, verify_stripe_webhook
from .schemas import CancelRequest, CheckoutRequest, PriceChangeRequest, SubscriptionStatusResponse
from .subscription_service import SubscriptionService
from .webhooks import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

rate_limit_checkout = create_rate_limiter(limit=10, window_seconds=60, key_prefix="billing_checkout")
rate_limit_billing_webhook = create_rate_limiter(
    limit=100, window_seconds=60, key_prefix="billing_webhook", use_ip=True
)


def get_subscription_service(db: Session = Depends(get_db)) -> SubscriptionService:
    """Dependency injection for SubscriptionService"""
    return SubscriptionService(db)


# ============================================================================
# SUBSCRIPTION MANAGEMENT
# ============================================================================


@router.get("/plans")
async def get_plans(
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Price catalog for the gateway serving this user"""
    return service.get_plans(user)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.get_status(user)


@router.post("/checkout")
async def create_checkout(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
    _: None = Depends(rate_limit_checkout),
):
    """Create a hosted checkout (Stripe) or subscription payment link (Asaas)"""
    return await service.create_checkout(user, body.price_id, body.return_path, body.apply_discount)


@router.post("/cancel")
async def cancel_subscription(
    body: CancelRequest,
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.cancel_subscription(user, body.cancel_at_period_end)


@router.post("/reactivate")
async def reactivate_subscription(
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.reactivate_subscription(user)


@router.get("/invoices")
async def list_invoices(
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Billing history of the current subscription"""
    return await service.list_invoices(user)


@router.post("/preview-proration")
async def preview_proration(
    body: PriceChangeRequest,
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Amount due now if the user moves to another price"""
    return await service.preview_proration(user, body.price_id)


@router.post("/change-plan")
async def change_plan(
    body: PriceChangeRequest,
    user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.change_plan(user, body.price_id)


# ============================================================================
# WEBHOOKS
# ============================================================================


def _parse_json(raw_body: bytes) -> dict:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to parse webhook JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_billing_webhook),
):
    """
    Stripe subscription lifecycle events.

    The Stripe-Signature header is verified (HMAC-SHA256 over
    ``timestamp.payload`` with a 5 minute tolerance) before anything is read.
    """
    _, raw_body = await verify_stripe_webhook(request, config.STRIPE_WEBHOOK_SECRET, raise_on_failure=True)
    event = _parse_json(raw_body)

    try:
        result = await WebhookService(db).handle_stripe_event(event)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error processing Stripe event {event.get('id')}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Erro ao processar webhook") from e

    return {"received": True, **result}


@router.post("/webhooks/asaas")
async def asaas_webhook(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_billing_webhook),
):
    """Asaas payment and subscription events, authenticated by the asaas-access-token header"""
    _, raw_body = await verify_asaas_webhook(request, config.ASAAS_WEBHOOK_TOKEN, raise_on_failure=True)
    body = _parse_json(raw_body)

    try:
        result = await WebhookService(db).handle_asaas_event(body)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Error processing Asaas event {body.get('event')}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Erro ao processar webhook") from e

    return {"received": True, **result}
