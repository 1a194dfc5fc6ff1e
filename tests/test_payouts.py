import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from therapypro.domain.billing.exceptions import PaymentGatewayError
from therapypro.domain.referrals import payout_service as payout_module
from therapypro.domain.referrals.payout_service import PayoutService, build_transfer_payload, mask_transfer_payload
from therapypro.models_referral import ReferralAuditLog, ReferralPayout
from therapypro.shared.encryption import encrypt_value

NOW = datetime(2025, 5, 1, 9, 0)


@pytest.fixture()
def partner(make_user, db):
    user = make_user(
        plan="pro",
        is_referral_partner=True,
        bank_details_validated=True,
        pix_key=encrypt_value("carla@example.com"),
        pix_key_type="email",
    )
    return user


@pytest.fixture()
def transfers(monkeypatch):
    calls = []

    async def fake_transfer(payload):
        calls.append(payload)
        return {"id": "tra_001", "status": "PENDING"}

    monkeypatch.setattr(payout_module.asaas_service, "create_transfer", fake_transfer)
    return calls


def add_payout(db, referrer, referred, amount, deadline=NOW - timedelta(days=1), status="pending"):
    payout = ReferralPayout(
        referrer_user_id=referrer.id,
        referred_user_id=referred.id,
        amount=amount,
        status=status,
        gateway="stripe",
        gateway_invoice_id=f"in_{amount}_{status}",
        payment_type="recurring",
        commission_rate=15,
        approval_deadline=deadline,
    )
    db.add(payout)
    db.commit()
    return payout


def test_due_payouts_grouped_into_one_pix_transfer(db, partner, make_user, transfers, sent_emails):
    referred = make_user(plan="premium")
    first = add_payout(db, partner, referred, 3000)
    second = add_payout(db, partner, referred, 2500)
    add_payout(db, partner, referred, 9999, deadline=NOW + timedelta(days=3))

    summary = asyncio.run(PayoutService(db).process_due_payouts(now=NOW))

    assert summary["paid"] == 1
    assert len(transfers) == 1
    assert transfers[0]["operationType"] == "PIX"
    assert transfers[0]["value"] == 55.0
    assert transfers[0]["pixAddressKeyType"] == "EMAIL"
    for payout in (first, second):
        db.refresh(payout)
        assert payout.status == "paid"
        assert payout.transfer_id == "tra_001"
        assert payout.payout_method == "pix"
    assert len(sent_emails) == 1


def test_below_minimum_is_skipped(db, partner, make_user, transfers):
    referred = make_user(plan="pro")
    add_payout(db, partner, referred, 4000)
    summary = asyncio.run(PayoutService(db).process_due_payouts(now=NOW))
    assert summary["skipped"] == 1
    assert summary["results"][0]["reason"] == "below_minimum"
    assert transfers == []


def test_downgraded_referred_payout_is_cancelled(db, partner, make_user, transfers):
    active = make_user(plan="pro")
    downgraded = make_user(plan="basico")
    add_payout(db, partner, active, 6000)
    cancelled = add_payout(db, partner, downgraded, 1000)

    summary = asyncio.run(PayoutService(db).process_due_payouts(now=NOW))
    assert summary["paid"] == 1
    assert transfers[0]["value"] == 60.0
    db.refresh(cancelled)
    assert cancelled.status == "cancelled"


def test_not_partner_cancels_payouts(db, partner, make_user, transfers):
    partner.is_referral_partner = False
    db.commit()
    payout = add_payout(db, partner, make_user(plan="pro"), 6000)

    summary = asyncio.run(PayoutService(db).process_due_payouts(now=NOW))
    assert summary["cancelled"] == 1
    db.refresh(payout)
    assert payout.status == "cancelled"


def test_failed_transfer_marks_payouts_failed(db, partner, make_user, monkeypatch):
    async def failing_transfer(payload):
        raise PaymentGatewayError("Saldo insuficiente", "asaas", status_code=400, payload={"errors": []})

    monkeypatch.setattr(payout_module.asaas_service, "create_transfer", failing_transfer)
    payout = add_payout(db, partner, make_user(plan="premium"), 7000)

    summary = asyncio.run(PayoutService(db).process_due_payouts(now=NOW))
    assert summary["failed"] == 1
    db.refresh(payout)
    assert payout.status == "failed"
    assert payout.failure_reason == "Saldo insuficiente"
    audit = db.query(ReferralAuditLog).filter(ReferralAuditLog.action == "asaas_transfer_request").one()
    assert audit.status == "failed"
    assert audit.details["request"]["payload"]["pixAddressKey"].endswith(".com")
    assert "carla" not in audit.details["request"]["payload"]["pixAddressKey"]


def test_ted_payload_when_no_pix_key(make_user):
    user = make_user(
        bank_code="260",
        bank_agency="0001",
        bank_account=encrypt_value("1234567"),
        bank_account_digit="8",
        bank_account_type="poupanca",
        bank_holder_name="Carla Indicadora",
        bank_holder_document=encrypt_value("52998224725"),
    )
    payload, method = build_transfer_payload(user, 12345, 3)
    assert method == "ted"
    assert payload["value"] == 123.45
    assert payload["bankAccount"]["bankAccountType"] == "SAVINGS"
    masked = mask_transfer_payload(payload)
    assert masked["bankAccount"]["cpfCnpj"] == "*******4725"
    assert payload["bankAccount"]["cpfCnpj"] == "52998224725"


def test_no_destination_returns_none(make_user):
    assert build_transfer_payload(make_user(), 5000, 1) == (None, None)


def test_stripe_payout_requires_connect_account(db, partner, make_user):
    payout = add_payout(db, partner, make_user(plan="pro"), 5000)
    with pytest.raises(HTTPException) as exc:
        asyncio.run(PayoutService(db).process_stripe_payout(payout.id))
    assert exc.value.status_code == 400


def test_stripe_payout_paid(db, partner, make_user, monkeypatch):
    partner.stripe_connect_account_id = "acct_123"
    db.commit()
    payout = add_payout(db, partner, make_user(plan="pro"), 5000)

    async def fake_connect_transfer(**kwargs):
        assert kwargs["amount"] == 5000
        assert kwargs["destination"] == "acct_123"
        return "tr_999"

    monkeypatch.setattr(payout_module.stripe_service, "create_connect_transfer", fake_connect_transfer)
    result = asyncio.run(PayoutService(db).process_stripe_payout(payout.id))
    assert result["transfer_id"] == "tr_999"
    db.refresh(payout)
    assert payout.status == "paid"
    assert payout.payout_method == "stripe"
