"""Subscription price catalog for both payment gateways"""

import os
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

PLAN_LEVELS = {"basico": 0, "pro": 1, "premium": 2}
CYCLE_DAYS = {"monthly": 30, "yearly": 365}


@dataclass(frozen=True)
class PriceInfo:
    price_id: str
    plan: str
    interval: str
    amount: int  # cents
    display_name: str

    @property
    def level(self) -> int:
        return PLAN_LEVELS.get(self.plan, 0)


PRICE_PRO_MONTHLY = os.getenv("STRIPE_PRICE_PRO_MONTHLY", "price_1SSMNgCP57sNVd3laEmlQOcb")
PRICE_PRO_YEARLY = os.getenv("STRIPE_PRICE_PRO_YEARLY", "price_1SSMOdCP57sNVd3la4kMOinN")
PRICE_PREMIUM_MONTHLY = os.getenv("STRIPE_PRICE_PREMIUM_MONTHLY", "price_1SSMOBCP57sNVd3lqjfLY6Du")
PRICE_PREMIUM_YEARLY = os.getenv("STRIPE_PRICE_PREMIUM_YEARLY", "price_1SSMP7CP57sNVd3lSf4oYINX")

STRIPE_PRICES = {
    PRICE_PRO_MONTHLY: PriceInfo(PRICE_PRO_MONTHLY, "pro", "monthly", 2990, "Profissional Mensal"),
    PRICE_PRO_YEARLY: PriceInfo(PRICE_PRO_YEARLY, "pro", "yearly", 29900, "Profissional Anual"),
    PRICE_PREMIUM_MONTHLY: PriceInfo(PRICE_PREMIUM_MONTHLY, "premium", "monthly", 4990, "Premium Mensal"),
    PRICE_PREMIUM_YEARLY: PriceInfo(PRICE_PREMIUM_YEARLY, "premium", "yearly", 49900, "Premium Anual"),
}

# Asaas bills yearly plans as 12 x the discounted monthly value
ASAAS_PRICES = {
    PRICE_PRO_MONTHLY: PriceInfo(PRICE_PRO_MONTHLY, "pro", "monthly", 2990, "Profissional Mensal"),
    PRICE_PRO_YEARLY: PriceInfo(PRICE_PRO_YEARLY, "pro", "yearly", 29880, "Profissional Anual"),
    PRICE_PREMIUM_MONTHLY: PriceInfo(PRICE_PREMIUM_MONTHLY, "premium", "monthly", 4990, "Premium Mensal"),
    PRICE_PREMIUM_YEARLY: PriceInfo(PRICE_PREMIUM_YEARLY, "premium", "yearly", 49896, "Premium Anual"),
}

CATALOGS = {"stripe": STRIPE_PRICES, "asaas": ASAAS_PRICES}


def get_catalog(gateway: str) -> dict[str, PriceInfo]:
    return CATALOGS.get(gateway, STRIPE_PRICES)


def get_price(price_id: Optional[str], gateway: str = "stripe") -> Optional[PriceInfo]:
    if not price_id:
        return None
    return get_catalog(gateway).get(price_id)


def find_price(plan: Optional[str], interval: Optional[str], gateway: str = "stripe") -> Optional[PriceInfo]:
    """Look a price up by plan and billing interval"""
    for info in get_catalog(gateway).values():
        if info.plan == plan and info.interval == interval:
            return info
    return None


def find_price_by_amount(amount: int, gateway: str = "asaas") -> Optional[PriceInfo]:
    """Match a charged value back to a catalog entry (Asaas payments carry no price id)"""
    for info in get_catalog(gateway).values():
        if info.amount == amount:
            return info
    return None


def round_cents(value) -> int:
    """Round half up to whole cents"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def list_plans(gateway: str = "stripe") -> list[dict]:
    return [
        {
            "price_id": info.price_id,
            "plan": info.plan,
            "interval": info.interval,
            "amount": info.amount,
            "display_name": info.display_name,
        }
        for info in get_catalog(gateway).values()
    ]
