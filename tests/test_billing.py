import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest

from therapypro.domain.billing import asaas_service as asaas_module
from therapypro.domain.billing import subscription_service as subscription_module
from therapypro.domain.billing.asaas_service import AsaasService, summarize_payment
from therapypro.domain.billing.exceptions import GatewayNotConfiguredError, PaymentGatewayError
from therapypro.domain.billing.pricing import PRICE_PREMIUM_MONTHLY, PRICE_PRO_MONTHLY
from therapypro.models import Notification
from therapypro.models_referral import Referral, ReferralAuditLog


@pytest.fixture()
def stripe_calls(monkeypatch):
    calls = {}

    async def create_checkout_session(**kwargs):
        calls["checkout"] = kwargs
        return {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}

    async def get_subscription(subscription_id):
        now = datetime.utcnow()
        return {
            "price_id": PRICE_PRO_MONTHLY,
            "item_id": "si_1",
            "current_period_start": now - timedelta(days=15),
            "current_period_end": now + timedelta(days=15),
        }

    async def change_subscription_price(subscription_id, item_id, new_price_id):
        calls["change"] = (subscription_id, item_id, new_price_id)
        return {}

    async def cancel_subscription(subscription_id, at_period_end=True):
        calls["cancel"] = (subscription_id, at_period_end)
        return {"current_period_end": datetime(2025, 7, 1)}

    service = subscription_module.stripe_service
    monkeypatch.setattr(service, "create_checkout_session", create_checkout_session)
    monkeypatch.setattr(service, "get_subscription", get_subscription)
    monkeypatch.setattr(service, "change_subscription_price", change_subscription_price)
    monkeypatch.setattr(service, "cancel_subscription", cancel_subscription)
    return calls


@pytest.fixture()
def asaas_calls(monkeypatch):
    calls = {}

    async def find_or_create_customer(**kwargs):
        return "cus_new"

    async def create_subscription(**kwargs):
        calls["subscription"] = kwargs
        return {"id": "sub_new"}

    async def get_subscription_payment_url(subscription_id):
        return f"https://sandbox.asaas.com/i/{subscription_id}"

    async def create_charge(**kwargs):
        calls["charge"] = kwargs
        return {"id": "pay_up", "invoiceUrl": "https://sandbox.asaas.com/i/pay_up"}

    async def cancel_subscription(subscription_id):
        calls["cancel"] = subscription_id
        return {"deleted": True}

    service = subscription_module.asaas_service
    monkeypatch.setattr(service, "find_or_create_customer", find_or_create_customer)
    monkeypatch.setattr(service, "create_subscription", create_subscription)
    monkeypatch.setattr(service, "get_subscription_payment_url", get_subscription_payment_url)
    monkeypatch.setattr(service, "create_charge", create_charge)
    monkeypatch.setattr(service, "cancel_subscription", cancel_subscription)
    return calls


def test_plans_and_status(client, user, auth_headers):
    headers = auth_headers(user)
    plans = client.get("/billing/plans", headers=headers).json()
    assert plans["gateway"] == "stripe"
    assert {p["plan"] for p in plans["plans"]} == {"pro", "premium"}

    status = client.get("/billing/subscription", headers=headers).json()
    assert status["plan"] == "basico"
    assert status["gateway"] is None
    assert status["usage"]["limit"] == 3


def test_stripe_checkout(client, user, auth_headers, stripe_calls):
    response = client.post("/billing/checkout", headers=auth_headers(user), json={"price_id": PRICE_PRO_MONTHLY})
    assert response.json() == {
        "gateway": "stripe",
        "url": "https://checkout.stripe.com/cs_1",
        "session_id": "cs_1",
        "discount_applied": False,
    }
    assert stripe_calls["checkout"]["metadata"] == {"user_id": str(user.id), "plan": "pro", "interval": "monthly"}


def test_checkout_unknown_price(client, user, auth_headers):
    response = client.post("/billing/checkout", headers=auth_headers(user), json={"price_id": "price_nope"})
    assert response.status_code == 400


def test_checkout_without_gateway_credentials_is_503(client, user, auth_headers, monkeypatch):
    async def not_configured(**kwargs):
        raise GatewayNotConfiguredError("Stripe não configurado", "stripe")

    monkeypatch.setattr(subscription_module.stripe_service, "create_checkout_session", not_configured)
    response = client.post("/billing/checkout", headers=auth_headers(user), json={"price_id": PRICE_PRO_MONTHLY})
    assert response.status_code == 503


def test_asaas_checkout_applies_referral_discount(client, db, make_user, auth_headers, asaas_calls, monkeypatch):
    monkeypatch.setattr(subscription_module, "PAYMENT_GATEWAY", "asaas")
    referrer = make_user(is_referral_partner=True)
    referred = make_user(referred_by_user_id=referrer.id)
    db.add(Referral(referrer_user_id=referrer.id, referred_user_id=referred.id, status="pending"))
    db.commit()

    body = client.post(
        "/billing/checkout", headers=auth_headers(referred), json={"price_id": PRICE_PRO_MONTHLY}
    ).json()
    assert body["gateway"] == "asaas"
    assert body["discount_amount"] == 598
    assert body["final_price"] == 2392
    assert body["url"] == "https://sandbox.asaas.com/i/sub_new"

    reference = json.loads(asaas_calls["subscription"]["external_reference"])
    assert reference["plan"] == "pro"
    assert reference["discount_applied"] is True
    db.refresh(referred)
    assert referred.asaas_subscription_id == "sub_new"


def test_asaas_premium_checkout_has_no_discount(client, db, make_user, auth_headers, asaas_calls, monkeypatch):
    monkeypatch.setattr(subscription_module, "PAYMENT_GATEWAY", "asaas")
    referrer = make_user(is_referral_partner=True)
    referred = make_user(referred_by_user_id=referrer.id)
    db.add(Referral(referrer_user_id=referrer.id, referred_user_id=referred.id, status="pending"))
    db.commit()

    body = client.post(
        "/billing/checkout", headers=auth_headers(referred), json={"price_id": PRICE_PREMIUM_MONTHLY}
    ).json()
    assert body["discount_applied"] is False
    assert body["final_price"] == 4990


def test_stripe_plan_change(client, db, make_user, auth_headers, stripe_calls):
    user = make_user(plan="pro", billing_interval="monthly", stripe_subscription_id="sub_s")
    body = client.post(
        "/billing/change-plan", headers=auth_headers(user), json={"price_id": PRICE_PREMIUM_MONTHLY}
    ).json()
    assert body["newPlan"] == "premium"
    assert body["proration"]["amount_due"] > 0
    assert stripe_calls["change"] == ("sub_s", "si_1", PRICE_PREMIUM_MONTHLY)
    db.refresh(user)
    assert user.subscription_plan == "premium"


def test_stripe_preview_same_plan_rejected(client, make_user, auth_headers, stripe_calls):
    user = make_user(plan="pro", billing_interval="monthly", stripe_subscription_id="sub_s")
    response = client.post(
        "/billing/preview-proration", headers=auth_headers(user), json={"price_id": PRICE_PRO_MONTHLY}
    )
    assert response.status_code == 400


def test_asaas_upgrade_creates_prorated_charge(client, db, make_user, auth_headers, asaas_calls):
    user = make_user(
        plan="pro",
        billing_interval="monthly",
        asaas_subscription_id="sub_a",
        asaas_customer_id="cus_a",
        subscription_end_date=datetime.utcnow() + timedelta(days=15),
    )
    body = client.post(
        "/billing/change-plan", headers=auth_headers(user), json={"price_id": PRICE_PREMIUM_MONTHLY}
    ).json()
    assert body["requiresPayment"] is True
    assert body["paymentUrl"] == "https://sandbox.asaas.com/i/pay_up"
    assert body["proratedAmount"] == asaas_calls["charge"]["amount"]

    reference = json.loads(asaas_calls["charge"]["external_reference"])
    assert reference["type"] == "upgrade_proration"
    db.refresh(user)
    assert user.subscription_plan == "pro"
    assert db.query(ReferralAuditLog).filter_by(action="upgrade", status="pending").count() == 1


def test_stripe_cancel_at_period_end(client, db, make_user, auth_headers, stripe_calls):
    user = make_user(plan="pro", stripe_subscription_id="sub_c")
    body = client.post("/billing/cancel", headers=auth_headers(user), json={}).json()
    assert body["cancel_at_period_end"] is True
    assert body["plan"] == "pro"
    assert stripe_calls["cancel"] == ("sub_c", True)


def test_stripe_immediate_cancel_downgrades(client, db, make_user, auth_headers, stripe_calls):
    user = make_user(plan="premium", stripe_subscription_id="sub_c")
    body = client.post("/billing/cancel", headers=auth_headers(user), json={"cancel_at_period_end": False}).json()
    assert body["plan"] == "basico"


def test_asaas_cancel_keeps_access(client, db, make_user, auth_headers, asaas_calls):
    user = make_user(plan="pro", asaas_subscription_id="sub_a")
    body = client.post("/billing/cancel", headers=auth_headers(user), json={}).json()
    assert asaas_calls["cancel"] == "sub_a"
    assert body["plan"] == "pro"
    db.refresh(user)
    assert user.subscription_status == "cancelled"


def test_cancel_without_subscription(client, user, auth_headers):
    assert client.post("/billing/cancel", headers=auth_headers(user), json={}).status_code == 400


def test_reactivate_scheduled_cancellation(client, db, make_user, auth_headers, monkeypatch):
    user = make_user(plan="pro", stripe_subscription_id="sub_r", cancel_at_period_end=True)

    async def reactivate(subscription_id):
        assert subscription_id == "sub_r"
        return {"current_period_end": datetime(2025, 8, 1), "cancel_at_period_end": False}

    monkeypatch.setattr(subscription_module.stripe_service, "reactivate_subscription", reactivate)

    response = client.post("/billing/reactivate", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Assinatura reativada com sucesso",
        "next_billing_date": "2025-08-01T00:00:00",
    }
    db.refresh(user)
    assert user.cancel_at_period_end is False
    assert user.subscription_status == "active"
    notification = db.query(Notification).filter_by(user_id=user.id).one()
    assert notification.titulo == "Assinatura Reativada"

    again = client.post("/billing/reactivate", headers=auth_headers(user))
    assert again.status_code == 400


def test_reactivate_is_stripe_only(client, make_user, auth_headers):
    user = make_user(plan="pro", asaas_subscription_id="sub_a", cancel_at_period_end=True)
    assert client.post("/billing/reactivate", headers=auth_headers(user)).status_code == 400


def stripe_invoice(invoice_id, status, created, amount=4990):
    return {
        "id": invoice_id,
        "number": invoice_id.upper(),
        "status": status,
        "amount_paid": amount if status == "paid" else 0,
        "amount_due": amount if status == "open" else 0,
        "total": amount,
        "created": created,
        "due_date": None,
        "period_start": None,
        "period_end": None,
        "invoice_url": f"https://invoice.stripe.com/{invoice_id}",
        "invoice_pdf": None,
        "billing_reason": "subscription_cycle",
        "description": None,
    }


def test_stripe_invoice_history(client, make_user, auth_headers, monkeypatch):
    user = make_user(plan="pro", stripe_customer_id="cus_h", stripe_subscription_id="sub_h")

    async def list_invoices(customer_id, limit=100):
        assert customer_id == "cus_h"
        return [
            stripe_invoice("in_old", "paid", datetime(2025, 1, 1)),
            stripe_invoice("in_void", "void", datetime(2025, 2, 1)),
            stripe_invoice("in_zero", "paid", datetime(2025, 3, 1), amount=0),
            stripe_invoice("in_new", "open", datetime(2025, 4, 1)),
        ]

    monkeypatch.setattr(subscription_module.stripe_service, "list_invoices", list_invoices)

    body = client.get("/billing/invoices", headers=auth_headers(user)).json()
    assert body["gateway"] == "stripe"
    assert body["current_plan"] == "pro"
    assert [invoice["id"] for invoice in body["invoices"]] == ["in_new", "in_old"]


def test_asaas_invoice_history(client, make_user, auth_headers, monkeypatch):
    user = make_user(plan="premium", asaas_subscription_id="sub_a")

    async def list_subscription_payments(subscription_id):
        payments = [
            {"id": "pay_1", "status": "RECEIVED", "value": 49.9, "dateCreated": "2025-01-05"},
            {"id": "pay_2", "status": "REFUNDED", "value": 49.9, "dateCreated": "2025-02-05"},
            {"id": "pay_3", "status": "PENDING", "value": 49.9, "dateCreated": "2025-03-05"},
        ]
        return [summarize_payment(payment) for payment in payments]

    monkeypatch.setattr(subscription_module.asaas_service, "list_subscription_payments", list_subscription_payments)

    body = client.get("/billing/invoices", headers=auth_headers(user)).json()
    assert body["gateway"] == "asaas"
    assert [(i["id"], i["status"], i["total"]) for i in body["invoices"]] == [
        ("pay_3", "open", 4990),
        ("pay_1", "paid", 4990),
    ]


def test_invoice_history_without_subscription_is_empty(client, user, auth_headers):
    body = client.get("/billing/invoices", headers=auth_headers(user)).json()
    assert body["invoices"] == []


@pytest.fixture()
def asaas_transport(monkeypatch):
    """Route the Asaas client through an in-process transport answering with ``responses[path]``"""
    responses = {}
    real_client = httpx.AsyncClient

    def handler(request):
        status_code, body = responses[request.url.path]
        return httpx.Response(status_code, json=body)

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(asaas_module.httpx, "AsyncClient", client_factory)
    return responses


def test_asaas_error_with_list_body(asaas_transport):
    asaas_transport["/api/v3/subscriptions/sub_x"] = (400, [{"code": "invalid_action"}])
    service = AsaasService(api_key="key", environment="sandbox")

    with pytest.raises(PaymentGatewayError) as exc:
        asyncio.run(service.cancel_subscription("sub_x"))
    assert exc.value.message == "Erro no gateway (400)"
    assert exc.value.status_code == 400
    assert exc.value.payload == [{"code": "invalid_action"}]


def test_asaas_error_description_is_surfaced(asaas_transport):
    asaas_transport["/api/v3/subscriptions/sub_x"] = (
        400,
        {"errors": [{"code": "invalid_action", "description": "Assinatura já removida."}]},
    )
    service = AsaasService(api_key="key", environment="sandbox")

    with pytest.raises(PaymentGatewayError) as exc:
        asyncio.run(service.cancel_subscription("sub_x"))
    assert exc.value.message == "Assinatura já removida."
