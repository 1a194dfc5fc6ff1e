import pytest

from therapypro.models import User
from therapypro.models_referral import Referral
from therapypro.shared.validators import (
    detect_pix_key_type,
    is_valid_cnpj,
    is_valid_cpf,
    normalize_pix_key,
    validate_br_phone,
)

from .conftest import make_token


def test_missing_token_is_401(client):
    response = client.get("/users/me")
    assert response.status_code in (401, 403)


def test_expired_token(client):
    token = make_token("uid-expired", "late@example.com", expires_in=-60)
    response = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.headers.get("X-Token-Expired") == "true"


def test_malformed_token(client):
    response = client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_first_login_creates_free_user(client, db):
    token = make_token("uid-new", "Nova@Example.com", {"name": "Nova Terapeuta", "profissao": "Psicóloga"})
    response = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "nova@example.com"
    assert body["subscription_plan"] == "basico"
    assert body["profissao"] == "Psicóloga"
    assert len(body["referral_code"]) == 8


def test_signup_with_referral_code_links_referrer(client, db, make_user):
    referrer = make_user(referral_code="ANA12345", is_referral_partner=True)
    token = make_token("uid-referred", "ref@example.com", {"referral_code": "ana12345"})
    client.get("/users/me", headers={"Authorization": f"Bearer {token}"})

    referred = db.query(User).filter_by(supabase_uid="uid-referred").one()
    assert referred.referred_by_user_id == referrer.id
    referral = db.query(Referral).filter_by(referred_user_id=referred.id).one()
    assert referral.status == "pending"


def test_existing_email_migrates_to_new_uid(client, db, make_user):
    existing = make_user(email="antiga@example.com")
    token = make_token("uid-migrated", "antiga@example.com")
    response = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.json()["id"] == existing.id
    db.refresh(existing)
    assert existing.supabase_uid == "uid-migrated"


def test_inactive_account_is_forbidden(client, make_user, auth_headers):
    user = make_user(is_active=False)
    assert client.get("/users/me", headers=auth_headers(user)).status_code == 403


def test_update_profile_validates_documents(client, user, auth_headers):
    headers = auth_headers(user)
    bad = client.patch("/users/me", headers=headers, json={"cpf_cnpj": "111.111.111-11"})
    assert bad.status_code == 422

    ok = client.patch(
        "/users/me", headers=headers, json={"telefone": "(11) 98765-4321", "cpf_cnpj": "529.982.247-25"}
    )
    assert ok.status_code == 200
    assert ok.json()["telefone"] == "5511987654321"
    assert ok.json()["cpf_cnpj"] == "52998224725"


def test_plan_usage(client, user, auth_headers, make_client):
    make_client(user)
    usage = client.get("/users/me/plan-usage", headers=auth_headers(user)).json()
    assert usage == {
        "plan": "basico",
        "limit": 3,
        "current": 1,
        "remaining": 2,
        "max_sessions_per_client": 4,
        "hasPDFReports": False,
    }


def test_security_headers_present(client):
    response = client.get("/")
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'none'" in response.headers["Content-Security-Policy"]


def test_redis_health_reports_memory_fallback(client):
    assert client.get("/health/redis").json()["status"] == "degraded"


@pytest.mark.parametrize(
    "raw,expected",
    [("11987654321", "5511987654321"), ("+55 (21) 3456-7890", "552134567890"), ("55 11 98765 4321", "5511987654321")],
)
def test_phone_normalization(raw, expected):
    assert validate_br_phone(raw) == expected


def test_phone_without_area_code_rejected():
    with pytest.raises(ValueError):
        validate_br_phone("98765-4321")


def test_documents_and_pix_keys():
    assert is_valid_cpf("529.982.247-25")
    assert not is_valid_cpf("111.111.111-11")
    assert is_valid_cnpj("11.222.333/0001-81")
    assert not is_valid_cnpj("11.222.333/0001-80")
    assert detect_pix_key_type("52998224725") == "cpf"
    assert detect_pix_key_type("+5511987654321") == "phone"
    assert detect_pix_key_type("123e4567-e89b-12d3-a456-426614174000") == "random"
    assert detect_pix_key_type("???") is None
    assert normalize_pix_key("11987654321", "phone") == "+5511987654321"
