"""
Plan change proration.

Credit for the current plan = (current price / total cycle days) x days remaining.
Amount due = new price - credit, never below zero. All values are cents.
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from ...shared.formatters import format_brl, format_date_br
from .pricing import CYCLE_DAYS, PriceInfo, find_price, get_price, round_cents

SECONDS_PER_DAY = 86400


class ProrationError(ValueError):
    """Raised when a plan change cannot be priced"""


@dataclass
class ProrationPreview:
    gateway: str
    current_plan: str
    current_plan_tier: str
    current_plan_interval: str
    new_plan: str
    new_plan_tier: str
    new_plan_interval: str
    is_tier_change: bool
    is_upgrade: bool
    is_downgrade: bool
    current_plan_price: int
    new_plan_price: int
    total_cycle_days: int
    days_remaining: int
    credit_amount: int
    amount_due: int
    new_plan_proportional: Optional[int] = None
    period_end: Optional[datetime] = None

    def to_response(self) -> dict:
        data = asdict(self)
        data["period_end"] = self.period_end.isoformat() if self.period_end else None
        data.update(
            {
                "current_plan_price_formatted": format_brl(self.current_plan_price),
                "new_plan_price_formatted": format_brl(self.new_plan_price),
                "credit_formatted": format_brl(self.credit_amount),
                "amount_due_formatted": format_brl(self.amount_due),
                "period_end_formatted": format_date_br(self.period_end) if self.period_end else "N/A",
                "explanation": self.explanation(),
            }
        )
        return data

    def explanation(self) -> str:
        return (
            f"Você tem {self.days_remaining} dia(s) restantes no plano {self.current_plan}. "
            f"O crédito proporcional de {format_brl(self.credit_amount)} foi descontado e o valor a pagar "
            f"pelo plano {self.new_plan} é {format_brl(self.amount_due)}."
        )


def days_between_ceil(start: datetime, end: datetime) -> int:
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def calculate_credit(current_price: int, total_cycle_days: int, days_remaining: int) -> int:
    if total_cycle_days <= 0:
        return 0
    return round_cents(current_price / total_cycle_days * days_remaining)


def _change_flags(current: PriceInfo, new: PriceInfo) -> dict:
    return {
        "is_tier_change": current.plan != new.plan,
        "is_upgrade": new.level > current.level,
        "is_downgrade": new.level < current.level,
    }


def preview_stripe_proration(
    current_price_id: str,
    new_price_id: str,
    period_start: datetime,
    period_end: datetime,
    now: Optional[datetime] = None,
) -> ProrationPreview:
    """Proration against the live Stripe billing period"""
    now = now or datetime.utcnow()

    new_info = get_price(new_price_id, "stripe")
    if not new_info:
        raise ProrationError(f"Price ID inválido: {new_price_id}")
    if current_price_id == new_price_id:
        raise ProrationError("Você já está neste plano.")
    current_info = get_price(current_price_id, "stripe")
    if not current_info:
        raise ProrationError("Plano atual não reconhecido no sistema.")

    days_remaining = max(0, days_between_ceil(now, period_end))
    total_cycle_days = days_between_ceil(period_start, period_end)
    credit = calculate_credit(current_info.amount, total_cycle_days, days_remaining)

    return ProrationPreview(
        gateway="stripe",
        current_plan=current_info.display_name,
        current_plan_tier=current_info.plan,
        current_plan_interval=current_info.interval,
        new_plan=new_info.display_name,
        new_plan_tier=new_info.plan,
        new_plan_interval=new_info.interval,
        current_plan_price=current_info.amount,
        new_plan_price=new_info.amount,
        total_cycle_days=total_cycle_days,
        days_remaining=days_remaining,
        credit_amount=credit,
        amount_due=max(0, new_info.amount - credit),
        period_end=period_end,
        **_change_flags(current_info, new_info),
    )


def preview_asaas_proration(
    current_plan: Optional[str],
    current_interval: Optional[str],
    subscription_end_date: Optional[datetime],
    new_price_id: str,
    now: Optional[datetime] = None,
) -> ProrationPreview:
    """Proration from the profile's plan, charging the new plan only until the current period ends"""
    now = now or datetime.utcnow()

    new_info = get_price(new_price_id, "asaas")
    if not new_info:
        raise ProrationError(f"Price ID inválido: {new_price_id}")

    current_info = find_price(current_plan or "basico", current_interval or "monthly", "asaas")
    if not current_info:
        raise ProrationError("Você precisa ter uma assinatura paga ativa para fazer upgrade.")
    if current_info.price_id == new_info.price_id:
        raise ProrationError("Você já está neste plano.")

    days_remaining = 0
    if subscription_end_date and subscription_end_date > now:
        days_remaining = days_between_ceil(now, subscription_end_date)

    total_days = CYCLE_DAYS[current_info.interval]
    credit = calculate_credit(current_info.amount, total_days, days_remaining)
    new_proportional = calculate_credit(new_info.amount, CYCLE_DAYS[new_info.interval], days_remaining)

    return ProrationPreview(
        gateway="asaas",
        current_plan=current_info.display_name,
        current_plan_tier=current_info.plan,
        current_plan_interval=current_info.interval,
        new_plan=new_info.display_name,
        new_plan_tier=new_info.plan,
        new_plan_interval=new_info.interval,
        current_plan_price=current_info.amount,
        new_plan_price=new_info.amount,
        total_cycle_days=total_days,
        days_remaining=days_remaining,
        credit_amount=credit,
        new_plan_proportional=new_proportional,
        amount_due=max(0, new_proportional - credit),
        period_end=subscription_end_date,
        **_change_flags(current_info, new_info),
    )
