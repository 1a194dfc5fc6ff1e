import json
import time

import pytest

from therapypro.domain.billing import webhooks as webhooks_module
from therapypro.domain.billing.exceptions import PaymentGatewayError
from therapypro.domain.billing.pricing import PRICE_PREMIUM_MONTHLY, PRICE_PRO_MONTHLY
from therapypro.models import Notification, User
from therapypro.models_referral import Referral, ReferralPayout
from therapypro.webhook_security import create_stripe_signature, parse_stripe_signature_header, verify_timestamp

STRIPE_SECRET = "whsec_test"
ASAAS_HEADERS = {"asaas-access-token": "asaas-webhook-token", "Content-Type": "application/json"}


def post_stripe(client, event, secret=STRIPE_SECRET, timestamp=None):
    payload = json.dumps(event).encode("utf-8")
    return client.post(
        "/billing/webhooks/stripe",
        content=payload,
        headers={
            "Stripe-Signature": create_stripe_signature(secret, payload, timestamp),
            "Content-Type": "application/json",
        },
    )


def invoice_event(customer, price_id=PRICE_PREMIUM_MONTHLY, amount=4990, proration=False, invoice_id="in_100"):
    start = int(time.time())
    return {
        "id": f"evt_{invoice_id}",
        "type": "invoice.payment_succeeded",
        "data": {
            "object": {
                "id": invoice_id,
                "customer": customer,
                "subscription": "sub_1",
                "amount_paid": amount,
                "lines": {
                    "data": [
                        {
                            "price": {"id": price_id},
                            "proration": proration,
                            "period": {"start": start, "end": start + 30 * 86400},
                        }
                    ]
                },
            }
        },
    }


@pytest.fixture()
def referred_customer(db, make_user):
    referrer = make_user(plan="pro", is_referral_partner=True)
    referred = make_user(stripe_customer_id="cus_123", referred_by_user_id=referrer.id)
    db.add(Referral(referrer_user_id=referrer.id, referred_user_id=referred.id, status="pending"))
    db.commit()
    return referrer, referred


def test_signature_header_parsing():
    timestamp, signatures = parse_stripe_signature_header("t=123, v1=abc,v0=old,v1=def")
    assert timestamp == "123"
    assert signatures == ["abc", "def"]
    assert not verify_timestamp(str(int(time.time()) - 301))
    assert not verify_timestamp("soon")


def test_stripe_rejects_bad_signature(client):
    assert post_stripe(client, {"type": "ping"}, secret="whsec_wrong").status_code == 401


def test_stripe_rejects_stale_timestamp(client):
    assert post_stripe(client, {"type": "ping"}, timestamp=int(time.time()) - 600).status_code == 401


def test_stripe_missing_signature(client):
    assert client.post("/billing/webhooks/stripe", json={"type": "ping"}).status_code == 401


def test_stripe_unhandled_event_is_acknowledged(client):
    response = post_stripe(client, {"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
    assert response.json() == {"received": True, "handled": False}


def test_invoice_paid_upgrades_plan_and_creates_commission(client, db, referred_customer):
    referrer, referred = referred_customer
    response = post_stripe(client, invoice_event("cus_123"))
    assert response.status_code == 200
    body = response.json()
    assert body["commission"]["status"] == "created"
    assert body["commission"]["commission_amount"] == 1426

    db.refresh(referred)
    assert referred.subscription_plan == "premium"
    assert referred.billing_interval == "monthly"
    assert referred.subscription_status == "active"
    assert referred.stripe_subscription_id == "sub_1"
    assert referred.subscription_end_date is not None

    payout = db.query(ReferralPayout).one()
    assert payout.referrer_user_id == referrer.id
    assert payout.payment_type == "first_payment"

    # Redelivery of the same event is a no-op for commissions
    again = post_stripe(client, invoice_event("cus_123")).json()
    assert again["commission"]["status"] == "duplicate"
    assert db.query(ReferralPayout).count() == 1


def test_proration_invoice_does_not_move_period_end(client, db, make_user):
    user = make_user(plan="pro", stripe_customer_id="cus_pr", billing_interval="monthly")
    post_stripe(client, invoice_event("cus_pr", price_id=PRICE_PRO_MONTHLY, amount=1495, proration=True))
    db.refresh(user)
    assert user.subscription_end_date is None
    titles = [n.titulo for n in db.query(Notification).filter_by(user_id=user.id)]
    assert titles == ["Upgrade Confirmado"]


def test_subscription_deleted_downgrades(client, db, make_user):
    user = make_user(plan="premium", stripe_subscription_id="sub_gone", billing_interval="monthly")
    event = {"id": "evt_del", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_gone"}}}
    assert post_stripe(client, event).json()["handled"] is True
    db.refresh(user)
    assert user.subscription_plan == "basico"
    assert user.stripe_subscription_id is None
    assert user.subscription_status == "cancelled"


def test_invoice_failed_marks_past_due(client, db, make_user):
    user = make_user(plan="pro", stripe_customer_id="cus_fail")
    event = {"id": "evt_f", "type": "invoice.payment_failed", "data": {"object": {"customer": "cus_fail"}}}
    post_stripe(client, event)
    db.refresh(user)
    assert user.subscription_status == "past_due"


# ------------------------------------------------------------------- asaas


def asaas_event(event, user, value=49.90, payment_id="pay_1", **reference):
    return {
        "event": event,
        "payment": {
            "id": payment_id,
            "customer": "cus_asaas",
            "subscription": "sub_asaas",
            "value": value,
            "externalReference": json.dumps({"user_id": user.id, **reference}),
        },
    }


def test_asaas_requires_token(client, user):
    response = client.post("/billing/webhooks/asaas", json=asaas_event("PAYMENT_CONFIRMED", user))
    assert response.status_code == 401


def test_asaas_payment_confirmed_activates_plan(client, db, user):
    body = asaas_event("PAYMENT_CONFIRMED", user, plan="premium", interval="monthly")
    response = client.post("/billing/webhooks/asaas", content=json.dumps(body), headers=ASAAS_HEADERS)
    assert response.status_code == 200
    assert response.json()["commission"] == {"status": "not_referred"}

    db.refresh(user)
    assert user.subscription_plan == "premium"
    assert user.asaas_subscription_id == "sub_asaas"
    assert user.asaas_customer_id == "cus_asaas"
    assert user.subscription_end_date is not None


def test_asaas_plan_is_matched_by_amount(client, db, user):
    body = asaas_event("PAYMENT_RECEIVED", user, value=298.80)
    client.post("/billing/webhooks/asaas", content=json.dumps(body), headers=ASAAS_HEADERS)
    db.refresh(user)
    assert user.subscription_plan == "pro"
    assert user.billing_interval == "yearly"


def test_asaas_upgrade_moves_subscription(client, db, make_user, monkeypatch):
    user = make_user(plan="pro", asaas_subscription_id="sub_asaas", billing_interval="monthly")
    calls = []

    async def fake_update(subscription_id, amount, interval, description):
        calls.append((subscription_id, amount, interval))
        return {"id": subscription_id}

    monkeypatch.setattr(webhooks_module.asaas_service, "update_subscription", fake_update)
    body = asaas_event(
        "PAYMENT_CONFIRMED", user, value=10.00, type="upgrade_proration", plan="premium", interval="monthly"
    )
    client.post("/billing/webhooks/asaas", content=json.dumps(body), headers=ASAAS_HEADERS)

    db.refresh(user)
    assert user.subscription_plan == "premium"
    assert calls == [("sub_asaas", 4990, "monthly")]


def test_asaas_subscription_deleted_downgrades(client, db, make_user):
    user = make_user(plan="pro", asaas_subscription_id="sub_end")
    body = {"event": "SUBSCRIPTION_DELETED", "subscription": {"id": "sub_end", "customer": "cus_x"}}
    client.post("/billing/webhooks/asaas", content=json.dumps(body), headers=ASAAS_HEADERS)
    db.refresh(user)
    assert user.subscription_plan == "basico"
    assert db.query(User).filter(User.asaas_subscription_id == "sub_end").count() == 0


def test_asaas_invalid_json(client):
    response = client.post("/billing/webhooks/asaas", content=b"{not json", headers=ASAAS_HEADERS)
    assert response.status_code == 400


def test_invoice_paid_with_referrer_card_blocks_commission(client, db, referred_customer, monkeypatch):
    referrer, referred = referred_customer
    referrer.stripe_customer_id = "cus_referrer"
    db.commit()
    looked_up = []

    async def fake_fingerprints(customer_id):
        looked_up.append(customer_id)
        return {"fp_shared", f"fp_{customer_id}"}

    monkeypatch.setattr(webhooks_module.stripe_service, "list_card_fingerprints", fake_fingerprints)

    body = post_stripe(client, invoice_event("cus_123")).json()
    assert body["commission"] == {"status": "blocked", "signals": ["same_card"]}
    assert sorted(looked_up) == ["cus_123", "cus_referrer"]
    assert db.query(ReferralPayout).count() == 0

    db.refresh(referred)
    assert referred.subscription_plan == "premium"


def test_card_lookup_failure_does_not_block_commission(client, db, referred_customer, monkeypatch):
    referrer, _ = referred_customer
    referrer.stripe_customer_id = "cus_referrer"
    db.commit()

    async def failing_fingerprints(customer_id):
        raise PaymentGatewayError("Stripe indisponível", gateway="stripe", status_code=500)

    monkeypatch.setattr(webhooks_module.stripe_service, "list_card_fingerprints", failing_fingerprints)

    body = post_stripe(client, invoice_event("cus_123")).json()
    assert body["commission"]["status"] == "created"
