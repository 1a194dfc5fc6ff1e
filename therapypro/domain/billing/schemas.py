"""Billing domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class CheckoutRequest(BaseModel):
    """Schema for creating a checkout session"""

    price_id: str
    return_path: Optional[str] = None  # e.g. "/configuracoes?checkout=success"
    apply_discount: bool = True

    @field_validator("price_id")
    @classmethod
    def validate_price_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("priceId é obrigatório.")
        return v.strip()


class PriceChangeRequest(BaseModel):
    """Schema for plan change and proration preview"""

    price_id: str


class CancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class SubscriptionStatusResponse(BaseModel):
    plan: str
    billing_interval: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    cancel_at_period_end: bool = False
    gateway: Optional[str] = None
    usage: dict
