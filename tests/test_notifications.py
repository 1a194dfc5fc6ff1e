from therapypro.domain.notifications.service import create_notification
from therapypro.models_referral import ReferralAuditLog


def test_unread_flow(client, db, user, make_user, auth_headers):
    headers = auth_headers(user)
    first = create_notification(db, user.id, "Pagamento Confirmado", "Seu pagamento foi processado.")
    create_notification(db, user.id, "Sessões de amanhã", "Você tem 2 sessões.")
    create_notification(db, make_user().id, "Outra conta", "Não deve aparecer.")

    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread": 2}
    listed = client.get("/notifications", headers=headers).json()
    assert {n["titulo"] for n in listed} == {"Pagamento Confirmado", "Sessões de amanhã"}

    read = client.post(f"/notifications/{first.id}/read", headers=headers).json()
    assert read["lida"] is True
    unread = client.get("/notifications", headers=headers, params={"unread_only": True}).json()
    assert [n["titulo"] for n in unread] == ["Sessões de amanhã"]

    assert client.post("/notifications/read-all", headers=headers).json() == {"success": True, "updated": 1}
    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread": 0}


def test_cannot_read_someone_elses_notification(client, db, user, make_user, auth_headers):
    foreign = create_notification(db, make_user().id, "Privado", "Privado")
    assert client.post(f"/notifications/{foreign.id}/read", headers=auth_headers(user)).status_code == 404


def test_join_and_leave_partner_program(client, db, user, auth_headers):
    headers = auth_headers(user)
    joined = client.post("/referrals/join", headers=headers).json()
    assert joined["referral_code"] == user.referral_code
    assert joined["share_link"].endswith(f"/cadastro?ref={user.referral_code}")

    stats = client.get("/referrals/stats", headers=headers).json()
    assert stats["is_partner"] is True
    assert stats["stats"]["total_referrals"] == 0
    assert stats["minimum_payout"] == 5000

    client.post("/referrals/leave", headers=headers)
    db.refresh(user)
    assert user.is_referral_partner is False
    actions = [row.action for row in db.query(ReferralAuditLog).order_by(ReferralAuditLog.id)]
    assert actions == ["partner_joined", "partner_left"]


def test_bank_details_start_unvalidated(client, user, auth_headers):
    body = client.get("/referrals/bank-details", headers=auth_headers(user)).json()
    assert body["bank_details_validated"] is False
    assert body["pix_key"] is None
