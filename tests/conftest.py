import os
import time
import uuid

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["ASAAS_API_KEY"] = "asaas_test_key"
os.environ["ASAAS_WEBHOOK_TOKEN"] = "asaas-webhook-token"
os.environ["ADMIN_EMAIL"] = "admin@therapypro.app.br"
os.environ["ADMIN_PASSWORD"] = "admin-password"
os.environ["SECURITY_HEADERS_ENABLED"] = "true"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from therapypro import email_service, rate_limiter
from therapypro.database import Base, get_db
from therapypro.main import app
from therapypro.models import Client, User

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    monkeypatch.setattr(rate_limiter, "get_redis_client", lambda: None)
    rate_limiter.memory_cache.clear()
    yield
    rate_limiter.memory_cache.clear()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Capture outgoing email instead of calling Resend"""
    outbox = []

    async def fake_send(to, subject, mjml_content, **kwargs):
        outbox.append({"to": to, "subject": subject})
        return {"id": f"email_{len(outbox)}"}

    monkeypatch.setattr(email_service, "send_email", fake_send)
    return outbox


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(sub: str, email: str, metadata: dict = None, expires_in: int = 3600) -> str:
    now = int(time.time())
    claims = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
        "user_metadata": metadata or {},
    }
    return jwt.encode(claims, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


@pytest.fixture()
def make_user(db):
    def _make_user(plan: str = "basico", email: str = None, **fields) -> User:
        uid = str(uuid.uuid4())
        user = User(
            supabase_uid=uid,
            email=email or f"{uid[:8]}@example.com",
            nome=fields.pop("nome", "Dra. Ana Souza"),
            subscription_plan=plan,
            referral_code=fields.pop("referral_code", uid[:8].upper()),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def user(make_user):
    return make_user()


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {make_token(user.supabase_uid, user.email)}"}

    return _headers


@pytest.fixture()
def make_client(db):
    def _make_client(user: User, nome: str = "Maria Lima", valor_sessao: int = 15000, **fields) -> Client:
        record = Client(user_id=user.id, nome=nome, valor_sessao=valor_sessao, **fields)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make_client
