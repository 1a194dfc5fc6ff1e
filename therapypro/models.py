import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    supabase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    nome = Column(String(255), nullable=True)
    profissao = Column(String(100), nullable=True)
    telefone = Column(String(20), nullable=True)  # digits only, with country code 55
    cpf_cnpj = Column(String(14), nullable=True)  # digits only
    is_active = Column(Boolean, default=True, nullable=False)

    # Subscription
    subscription_plan = Column(String(20), default="basico", nullable=False)  # basico, pro, premium
    billing_interval = Column(String(10), nullable=True)  # monthly, yearly
    subscription_status = Column(String(20), default="active", nullable=True)  # active, past_due, cancelled
    subscription_start_date = Column(DateTime, nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    asaas_customer_id = Column(String(255), nullable=True, index=True)
    asaas_subscription_id = Column(String(255), nullable=True)

    # Referral program
    referral_code = Column(String(20), unique=True, nullable=True, index=True)
    is_referral_partner = Column(Boolean, default=False, nullable=False)
    referred_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Payout bank details (referral partners)
    pix_key = Column(String(500), nullable=True)  # encrypted
    pix_key_type = Column(String(20), nullable=True)  # cpf, cnpj, email, phone, random
    bank_code = Column(String(10), nullable=True)
    bank_agency = Column(String(10), nullable=True)
    bank_account = Column(String(255), nullable=True)  # encrypted
    bank_account_digit = Column(String(2), nullable=True)
    bank_account_type = Column(String(20), nullable=True)  # corrente, poupanca
    bank_holder_name = Column(String(255), nullable=True)
    bank_holder_document = Column(String(255), nullable=True)  # encrypted
    bank_details_validated = Column(Boolean, default=False, nullable=False)
    stripe_connect_account_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    clients = relationship("Client", back_populates="user", cascade="all, delete-orphan")
    referred_by = relationship("User", remote_side=[id])


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    nome = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    telefone = Column(String(20), nullable=True)
    dados_clinicos = Column(Text, nullable=True)
    historico = Column(Text, nullable=True)
    valor_sessao = Column(Integer, nullable=True)  # cents
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="clients")
    sessions = relationship("Session", back_populates="client", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="client", cascade="all, delete-orphan")
    packages = relationship("Package", back_populates="client", cascade="all, delete-orphan")
    recurring_sessions = relationship("RecurringSession", back_populates="client", cascade="all, delete-orphan")


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    nome = Column(String(255), nullable=False)
    total_sessoes = Column(Integer, nullable=False)
    sessoes_consumidas = Column(Integer, default=0, nullable=False)
    valor_total = Column(Integer, nullable=False)  # cents
    status = Column(String(20), default="ativo", nullable=False)  # ativo, concluido, cancelado
    data_inicio = Column(Date, nullable=True)
    data_fim = Column(Date, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="packages")
    sessions = relationship("Session", back_populates="package")


class RecurringSession(Base):
    __tablename__ = "recurring_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    horario = Column(Time, nullable=False)
    recurrence_type = Column(String(20), nullable=False)  # diaria, semanal, quinzenal, mensal
    recurrence_interval = Column(Integer, default=1, nullable=False)
    start_date = Column(Date, nullable=False)
    recurrence_end_date = Column(Date, nullable=True)
    recurrence_count = Column(Integer, nullable=True)
    valor = Column(Integer, nullable=True)  # cents
    status = Column(String(20), default="ativa", nullable=False)  # ativa, pausada, cancelada
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="recurring_sessions")
    sessions = relationship("Session", back_populates="recurring_session")


class Session(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    data = Column(Date, nullable=False, index=True)
    horario = Column(Time, nullable=False)
    status = Column(String(20), default="agendada", nullable=False)  # agendada, realizada, cancelada, falta
    valor = Column(Integer, nullable=True)  # cents
    anotacoes = Column(Text, nullable=True)
    recurring_session_id = Column(Integer, ForeignKey("recurring_sessions.id"), nullable=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=True, index=True)
    reminder_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="sessions")
    package = relationship("Package", back_populates="sessions")
    recurring_session = relationship("RecurringSession", back_populates="sessions")
    payments = relationship("Payment", back_populates="session")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="SET NULL"), nullable=True, index=True)
    valor = Column(Integer, nullable=False)  # cents
    status = Column(String(20), default="pendente", nullable=False)  # pendente, pago, cancelado
    metodo_pagamento = Column(String(50), default="A definir", nullable=False)
    data_pagamento = Column(Date, nullable=True)
    data_vencimento = Column(Date, nullable=True)
    observacoes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="payments")
    session = relationship("Session", back_populates="payments")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    titulo = Column(String(255), nullable=False)
    conteudo = Column(Text, nullable=False)
    lida = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class AdminSession(Base):
    __tablename__ = "admin_sessions"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(String(36), nullable=False)
    session_token = Column(String(36), unique=True, index=True, nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False, index=True)  # ADMIN_LOGIN, PLAN_UPDATE, ...
    actor = Column(String(255), nullable=True)
    target_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    ip_address = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class UserLoginFingerprint(Base):
    """One row per user and IP address the user has signed in from"""

    __tablename__ = "user_login_fingerprints"
    __table_args__ = (UniqueConstraint("user_id", "ip_address", name="uq_login_fingerprint_user_ip"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False, index=True)
    user_agent = Column(String(500), nullable=True)
    login_count = Column(Integer, default=1, nullable=False)
    first_seen_at = Column(DateTime, server_default=func.now())
    last_seen_at = Column(DateTime, server_default=func.now())


class RegistrationToken(Base):
    """Single-use link a professional shares so a client can register themselves"""

    __tablename__ = "registration_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(64), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
