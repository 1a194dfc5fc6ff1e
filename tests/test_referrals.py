import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from therapypro.domain.referrals.schemas import BankDetailsRequest
from therapypro.domain.referrals.service import PaidInvoice, ReferralService
from therapypro.models import Notification, UserLoginFingerprint
from therapypro.models_referral import Referral, ReferralAuditLog, ReferralFraudSignal, ReferralPayout


@pytest.fixture()
def referral_pair(db, make_user):
    referrer = make_user(plan="pro", nome="Carla Indicadora", is_referral_partner=True)
    referred = make_user(plan="premium", nome="Bruno Indicado", billing_interval="monthly")
    referral = Referral(referrer_user_id=referrer.id, referred_user_id=referred.id, status="pending")
    db.add(referral)
    db.commit()
    return referrer, referred, referral


def paid(referred, invoice_id="in_1", event_id="evt_1", gateway="stripe", amount=4990, **kwargs):
    return PaidInvoice(
        user=referred,
        gateway=gateway,
        invoice_id=invoice_id,
        event_id=event_id,
        gross_amount=amount,
        plan="premium",
        billing_interval=kwargs.pop("billing_interval", "monthly"),
        period_start=datetime(2025, 2, 1),
        **kwargs,
    )


def test_not_referred_user_gets_no_commission(db, make_user):
    user = make_user(plan="pro")
    result = ReferralService(db).process_paid_invoice(paid(user))
    assert result == {"status": "not_referred"}
    assert db.query(ReferralPayout).count() == 0


def test_first_payment_converts_referral(db, referral_pair):
    referrer, referred, referral = referral_pair
    result = ReferralService(db).process_paid_invoice(paid(referred))

    assert result["status"] == "created"
    assert result["payment_type"] == "first_payment"
    assert result["commission_amount"] == 1426
    db.refresh(referral)
    assert referral.status == "converted"
    payout = db.query(ReferralPayout).one()
    assert payout.status == "pending"
    assert payout.approval_deadline == datetime(2025, 2, 16)
    assert db.query(Notification).filter(Notification.user_id == referrer.id).count() == 1


def test_second_invoice_is_recurring(db, referral_pair):
    _, referred, _ = referral_pair
    service = ReferralService(db)
    service.process_paid_invoice(paid(referred))
    result = service.process_paid_invoice(paid(referred, invoice_id="in_2", event_id="evt_2"))
    assert result["payment_type"] == "recurring"
    assert result["commission_amount"] == 713


def test_redelivered_event_is_duplicate(db, referral_pair):
    _, referred, _ = referral_pair
    service = ReferralService(db)
    service.process_paid_invoice(paid(referred))
    assert service.process_paid_invoice(paid(referred))["status"] == "duplicate"
    assert db.query(ReferralPayout).count() == 1


def test_asaas_confirmed_then_received_pays_once(db, referral_pair):
    _, referred, _ = referral_pair
    service = ReferralService(db)
    first = service.process_paid_invoice(paid(referred, invoice_id="pay_123", event_id=None, gateway="asaas"))
    second = service.process_paid_invoice(paid(referred, invoice_id="pay_123", event_id=None, gateway="asaas"))
    assert first["status"] == "created"
    assert second["status"] == "duplicate"
    assert db.query(ReferralPayout).count() == 1


def test_yearly_payment_creates_installments(db, referral_pair):
    _, referred, _ = referral_pair
    result = ReferralService(db).process_paid_invoice(
        paid(referred, amount=49900, billing_interval="yearly")
    )
    assert result["payment_type"] == "yearly"
    assert len(result["payout_ids"]) == 12
    assert db.query(ReferralAuditLog).filter(ReferralAuditLog.action == "annual_commission_created").count() == 1


def test_proration_does_not_convert_referral(db, referral_pair):
    _, referred, referral = referral_pair
    result = ReferralService(db).process_paid_invoice(paid(referred, is_proration=True))
    assert result["payment_type"] == "proration"
    db.refresh(referral)
    assert referral.status == "pending"


def test_same_document_blocks_commission(db, referral_pair):
    referrer, referred, _ = referral_pair
    referrer.cpf_cnpj = "52998224725"
    referred.cpf_cnpj = "52998224725"
    db.commit()

    result = ReferralService(db).process_paid_invoice(paid(referred))
    assert result["status"] == "blocked"
    assert db.query(ReferralPayout).count() == 0
    signal = db.query(ReferralFraudSignal).one()
    assert signal.details["action_taken"] == "blocked"


def test_single_warning_only_logged(db, referral_pair):
    referrer, referred, _ = referral_pair
    referrer.telefone = "5511987654321"
    referred.telefone = "5511987654321"
    db.commit()

    result = ReferralService(db).process_paid_invoice(paid(referred))
    assert result["status"] == "created"
    assert db.query(ReferralFraudSignal).one().details["action_taken"] == "logged"


def test_shared_phone_and_login_ip_block_commission(db, referral_pair):
    referrer, referred, referral = referral_pair
    referrer.telefone = "5511987654321"
    referred.telefone = "(55) 11 98765-4321"
    db.add_all(
        [
            UserLoginFingerprint(user_id=referrer.id, ip_address="177.10.20.30"),
            UserLoginFingerprint(user_id=referred.id, ip_address="177.10.20.30"),
            UserLoginFingerprint(user_id=referred.id, ip_address="189.4.5.6"),
        ]
    )
    db.commit()

    result = ReferralService(db).process_paid_invoice(paid(referred))
    assert result == {"status": "blocked", "signals": ["same_phone", "same_ip"]}
    assert db.query(ReferralPayout).count() == 0
    signals = {s.signal_type: s.details for s in db.query(ReferralFraudSignal)}
    assert signals["same_ip"] == {"invoice_id": "in_1", "action_taken": "blocked", "shared_ips": 1}
    assert signals["same_phone"]["action_taken"] == "blocked"
    db.refresh(referral)
    assert referral.status == "pending"


def test_login_ip_alone_is_only_logged(db, referral_pair):
    referrer, referred, _ = referral_pair
    db.add_all(
        [
            UserLoginFingerprint(user_id=referrer.id, ip_address="177.10.20.30"),
            UserLoginFingerprint(user_id=referred.id, ip_address="177.10.20.30"),
        ]
    )
    db.commit()

    assert ReferralService(db).process_paid_invoice(paid(referred))["status"] == "created"
    assert db.query(ReferralFraudSignal).one().signal_type == "same_ip"


def test_same_card_blocks_commission(db, referral_pair):
    _, referred, _ = referral_pair
    result = ReferralService(db).process_paid_invoice(paid(referred, card_match=True))
    assert result == {"status": "blocked", "signals": ["same_card"]}


def test_former_partner_is_ineligible(db, referral_pair):
    referrer, referred, _ = referral_pair
    referrer.is_referral_partner = False
    db.commit()
    assert ReferralService(db).process_paid_invoice(paid(referred))["status"] == "ineligible"


def test_refund_cancels_open_payouts(db, referral_pair):
    _, referred, _ = referral_pair
    service = ReferralService(db)
    service.process_paid_invoice(paid(referred))
    assert service.cancel_payouts_for_invoice("in_1", "refund") == 1
    assert db.query(ReferralPayout).one().status == "cancelled"


def test_stats_split_pending_and_available(db, referral_pair):
    referrer, referred, _ = referral_pair
    service = ReferralService(db)
    service.process_paid_invoice(paid(referred))

    before = service.get_stats(referrer, now=datetime(2025, 2, 10))
    after = service.get_stats(referrer, now=datetime(2025, 2, 20))
    assert before["balances"]["pending"] == 1426
    assert before["balances"]["available"] == 0
    assert after["balances"]["available"] == 1426
    assert after["stats"]["converted_referrals"] == 1


def _add_available_payout(db, referrer, referred, amount):
    payout = ReferralPayout(
        referrer_user_id=referrer.id,
        referred_user_id=referred.id,
        amount=amount,
        status="pending",
        gateway="stripe",
        gateway_invoice_id=f"in_{amount}",
        payment_type="recurring",
        commission_rate=15,
        approval_deadline=datetime.utcnow() - timedelta(days=1),
    )
    db.add(payout)
    db.commit()
    return payout


def test_request_payout_below_minimum(db, referral_pair):
    referrer, referred, _ = referral_pair
    referrer.pix_key = "x"
    referrer.bank_details_validated = True
    db.commit()
    _add_available_payout(db, referrer, referred, 1000)

    with pytest.raises(HTTPException) as exc:
        asyncio.run(ReferralService(db).request_payout(referrer))
    assert exc.value.status_code == 400
    assert "mínimo" in exc.value.detail


def test_request_payout_marks_requested(db, referral_pair, sent_emails):
    referrer, referred, _ = referral_pair
    referrer.pix_key = "x"
    referrer.bank_details_validated = True
    db.commit()
    payout = _add_available_payout(db, referrer, referred, 6000)

    result = asyncio.run(ReferralService(db).request_payout(referrer))
    assert result["amount"] == 6000
    db.refresh(payout)
    assert payout.status == "requested"
    assert sent_emails[0]["to"] == referrer.email


def test_bank_details_validation_and_masking(db, referral_pair):
    referrer, _, _ = referral_pair
    service = ReferralService(db)

    with pytest.raises(HTTPException) as exc:
        service.save_bank_details(
            referrer, BankDetailsRequest(tipo_pessoa="fisica", cpf_cnpj="12345678900", nome_titular="Carla")
        )
    assert "CPF inválido" in exc.value.detail["errors"]

    service.save_bank_details(
        referrer,
        BankDetailsRequest(
            tipo_pessoa="fisica", cpf_cnpj="529.982.247-25", nome_titular="Carla Indicadora", chave_pix="carla@example.com"
        ),
    )
    db.refresh(referrer)
    assert referrer.bank_details_validated
    assert referrer.pix_key_type == "email"
    assert referrer.pix_key != "carla@example.com"
    masked = service.get_bank_details(referrer)
    assert masked["pix_key"] != "carla@example.com"
