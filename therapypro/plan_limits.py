"""
Plan limits and feature gates for the basico, pro and premium subscriptions.
"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Client, User
from .models import Session as SessionModel

# None means unlimited
PLAN_LIMITS = {
    "basico": {"max_clients": 3, "max_sessions_per_client": 4, "hasPDFReports": False},
    "pro": {"max_clients": 20, "max_sessions_per_client": None, "hasPDFReports": False},
    "premium": {"max_clients": None, "max_sessions_per_client": None, "hasPDFReports": True},
}

PLAN_LEVELS = {"basico": 0, "pro": 1, "premium": 2}


def get_plan(user: User) -> str:
    plan = (user.subscription_plan or "basico").lower()
    return plan if plan in PLAN_LIMITS else "basico"


def get_plan_limits(plan: Optional[str]) -> dict:
    """Limits for a plan name; unknown plans get the free tier"""
    return PLAN_LIMITS.get((plan or "basico").lower(), PLAN_LIMITS["basico"])


def has_feature(user: User, feature: str) -> bool:
    return bool(get_plan_limits(get_plan(user)).get(feature))


def count_clients(user: User, db: Session) -> int:
    return db.query(func.count(Client.id)).filter(Client.user_id == user.id).scalar() or 0


def can_add_client(user: User, db: Session) -> tuple:
    """
    Check if user can add another client.
    Returns (can_add, error_message).
    """
    plan = get_plan(user)
    limit = get_plan_limits(plan)["max_clients"]
    if limit is None:
        return (True, None)

    if count_clients(user, db) < limit:
        return (True, None)

    return (
        False,
        f"Você atingiu o limite de {limit} clientes do plano {plan}. Faça upgrade para adicionar mais clientes.",
    )


def can_add_session(user: User, client: Client, db: Session) -> tuple:
    """
    Check if another session can be scheduled for this client.
    Returns (can_add, error_message).
    """
    plan = get_plan(user)
    limit = get_plan_limits(plan)["max_sessions_per_client"]
    if limit is None:
        return (True, None)

    current = (
        db.query(func.count(SessionModel.id))
        .filter(SessionModel.user_id == user.id, SessionModel.client_id == client.id)
        .scalar()
        or 0
    )
    if current < limit:
        return (True, None)

    return (
        False,
        f"Você atingiu o limite de {limit} sessões por cliente do plano {plan}. Faça upgrade para agendar mais sessões.",
    )


def get_usage_stats(user: User, db: Session) -> dict:
    """Current usage against the plan's client limit"""
    plan = get_plan(user)
    limits = get_plan_limits(plan)
    current = count_clients(user, db)
    limit = limits["max_clients"]

    return {
        "plan": plan,
        "limit": limit,
        "current": current,
        "remaining": None if limit is None else max(0, limit - current),
        "max_sessions_per_client": limits["max_sessions_per_client"],
        "hasPDFReports": limits["hasPDFReports"],
    }
