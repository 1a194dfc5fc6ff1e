from datetime import datetime, timedelta

import pytest

from therapypro.domain.admin.sessions import credentials_match
from therapypro.models import AdminSession, AuditLog, Notification
from therapypro.models_referral import ReferralAuditLog, ReferralPayout


@pytest.fixture()
def admin_headers(client):
    response = client.post(
        "/admin/login", json={"email": "admin@therapypro.app.br", "password": "admin-password", "captchaToken": None}
    )
    assert response.status_code == 200
    return {"X-Admin-Session": response.json()["sessionToken"]}


@pytest.fixture()
def open_payout(db, make_user):
    referrer = make_user(plan="pro", is_referral_partner=True)
    referred = make_user(plan="premium")
    payout = ReferralPayout(
        referrer_user_id=referrer.id,
        referred_user_id=referred.id,
        amount=1426,
        status="pending",
        gateway="stripe",
        gateway_invoice_id="in_admin",
        payment_type="first_payment",
        commission_rate=30,
        approval_deadline=datetime.utcnow() + timedelta(days=10),
    )
    db.add(payout)
    db.commit()
    return payout


def test_credentials_must_both_match():
    assert credentials_match("admin@therapypro.app.br", "admin-password")
    assert not credentials_match("admin@therapypro.app.br", "wrong")
    assert not credentials_match("", "")


def test_login_sets_cookie_and_audits(client, db):
    response = client.post(
        "/admin/login",
        json={"email": "admin@therapypro.app.br", "password": "admin-password"},
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
    )
    assert response.status_code == 200
    assert "admin_session=" in response.headers["set-cookie"]
    assert "HttpOnly" in response.headers["set-cookie"]

    audit = db.query(AuditLog).filter_by(action="ADMIN_LOGIN").one()
    assert audit.ip_address == "203.0.113.9"


def test_wrong_password_is_401(client):
    response = client.post("/admin/login", json={"email": "admin@therapypro.app.br", "password": "nope"})
    assert response.status_code == 401


def test_endpoints_require_session(client):
    assert client.get("/admin/dashboard").status_code == 401
    assert client.get("/admin/dashboard", headers={"X-Admin-Session": "bogus"}).status_code == 401


def test_verify_and_logout(client, admin_headers):
    assert client.post("/admin/verify", headers=admin_headers).json()["valid"] is True
    assert client.post("/admin/logout", headers=admin_headers).json() == {"success": True}
    assert client.post("/admin/verify", headers=admin_headers).status_code == 401


def test_expired_session_is_revoked(client, db, admin_headers):
    session = db.query(AdminSession).one()
    session.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    response = client.get("/admin/dashboard", headers=admin_headers)
    assert response.status_code == 401
    assert response.json()["detail"] == "Sessão expirada"
    db.refresh(session)
    assert session.revoked is True


def test_dashboard_counts(client, admin_headers, make_user, make_client):
    owner = make_user(plan="pro")
    make_client(owner)
    make_client(owner, ativo=False)
    stats = client.get("/admin/dashboard", headers=admin_headers).json()
    assert stats["users"]["total"] == 1
    assert stats["users"]["by_plan"] == {"pro": 1}
    assert stats["clients"] == {"total": 2, "active": 1}


def test_list_users_search(client, admin_headers, make_user):
    make_user(email="terapeuta@example.com")
    make_user(email="outra@example.com")
    body = client.get("/admin/users", headers=admin_headers, params={"search": "terapeuta"}).json()
    assert body["total"] == 1
    assert body["users"][0]["email"] == "terapeuta@example.com"


def test_update_user_plan_is_audited(client, db, admin_headers, make_user):
    target = make_user(plan="premium", billing_interval="yearly")
    response = client.patch(f"/admin/users/{target.id}", headers=admin_headers, json={"subscription_plan": "basico"})
    assert response.status_code == 200
    assert response.json()["subscription_plan"] == "basico"
    assert response.json()["billing_interval"] is None

    audit = db.query(AuditLog).filter_by(action="PLAN_UPDATE").one()
    assert audit.target_user_id == target.id
    assert audit.details["before"] == {"subscription_plan": "premium"}


def test_update_user_rejects_unknown_plan(client, admin_headers, make_user):
    target = make_user()
    response = client.patch(f"/admin/users/{target.id}", headers=admin_headers, json={"subscription_plan": "gold"})
    assert response.status_code == 422


def test_approve_payout_moves_deadline(client, db, admin_headers, open_payout):
    response = client.post(f"/admin/referrals/payouts/{open_payout.id}/approve", headers=admin_headers)
    assert response.json()["status"] == "approved"
    db.refresh(open_payout)
    assert open_payout.approval_deadline <= datetime.utcnow()
    assert db.query(ReferralAuditLog).filter_by(action="payout_approved_manually").count() == 1

    again = client.post(f"/admin/referrals/payouts/{open_payout.id}/cancel", headers=admin_headers)
    assert again.json()["status"] == "cancelled"


def test_cancel_payout_notifies_referrer(client, db, admin_headers, open_payout):
    response = client.post(
        f"/admin/referrals/payouts/{open_payout.id}/cancel", headers=admin_headers, json={"reason": "Fraude"}
    )
    assert response.json()["status"] == "cancelled"
    db.refresh(open_payout)
    assert open_payout.cancel_reason == "Fraude"
    notification = db.query(Notification).filter_by(user_id=open_payout.referrer_user_id).one()
    assert "Fraude" in notification.conteudo

    closed = client.post(f"/admin/referrals/payouts/{open_payout.id}/approve", headers=admin_headers)
    assert closed.status_code == 400


def test_list_payouts_filters(client, admin_headers, open_payout):
    body = client.get("/admin/referrals/payouts", headers=admin_headers, params={"status": "pending"}).json()
    assert body["total"] == 1
    assert body["payouts"][0]["amount"] == 1426
    assert client.get("/admin/referrals/payouts", headers=admin_headers, params={"status": "paid"}).json()["total"] == 0
