"""
Referral commission rules.

Commissions are a percentage of the net amount (gross minus the gateway fee):
30% on the first monthly payment, 15% on recurring monthly payments and on
upgrade proration charges, and 20% on yearly payments paid out in 12 monthly
installments. All values are integer cents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..billing.pricing import round_cents

FIRST_PAYMENT = "first_payment"
RECURRING = "recurring"
YEARLY = "yearly"
PRORATION = "proration"

COMMISSION_RATES = {
    FIRST_PAYMENT: 30,
    RECURRING: 15,
    PRORATION: 15,
    YEARLY: 20,
}

# (percentage, fixed cents)
GATEWAY_FEES = {
    "stripe": (0.0399, 39),
    "asaas": (0.0299, 49),
}

YEARLY_INSTALLMENTS = 12
APPROVAL_DAYS = 15
MINIMUM_PAYOUT_AMOUNT = 5000


@dataclass
class Installment:
    number: int
    amount: int
    period_start: datetime
    approval_deadline: datetime


@dataclass
class CommissionBreakdown:
    payment_type: str
    gross_amount: int
    gateway_fee: int
    net_amount: int
    commission_rate: int
    commission_amount: int
    installments: list = field(default_factory=list)

    @property
    def total_installments(self) -> int:
        return len(self.installments)


def gateway_fee(gross_amount: int, gateway: str) -> int:
    percentage, fixed = GATEWAY_FEES[gateway]
    return round_cents(gross_amount * percentage) + fixed


def net_amount(gross_amount: int, gateway: str) -> int:
    return max(0, gross_amount - gateway_fee(gross_amount, gateway))


def resolve_payment_type(is_first_payment: bool, billing_interval: str, is_proration: bool) -> str:
    """Proration charges win over the yearly rule; a yearly payment is never treated as first/recurring"""
    if is_proration:
        return PRORATION
    if billing_interval == "yearly":
        return YEARLY
    return FIRST_PAYMENT if is_first_payment else RECURRING


def approval_deadline(period_start: datetime) -> datetime:
    return period_start + timedelta(days=APPROVAL_DAYS)


def calculate_commission(
    gross_amount: int, gateway: str, payment_type: str, period_start: datetime
) -> CommissionBreakdown:
    fee = gateway_fee(gross_amount, gateway)
    net = max(0, gross_amount - fee)
    rate = COMMISSION_RATES[payment_type]
    total = round_cents(net * rate / 100)

    if payment_type == YEARLY:
        monthly_portion = round_cents(total / YEARLY_INSTALLMENTS)
        installments = []
        for index in range(YEARLY_INSTALLMENTS):
            start = period_start + relativedelta(months=index)
            installments.append(Installment(index + 1, monthly_portion, start, approval_deadline(start)))
    else:
        installments = [Installment(1, total, period_start, approval_deadline(period_start))]

    return CommissionBreakdown(
        payment_type=payment_type,
        gross_amount=gross_amount,
        gateway_fee=fee,
        net_amount=net,
        commission_rate=rate,
        commission_amount=total,
        installments=installments,
    )
