"""Admin back-office schemas"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AdminLoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    captcha_token: Optional[str] = Field(default=None, alias="captchaToken")


class AdminVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_token: Optional[str] = Field(default=None, alias="sessionToken")


class UserUpdateRequest(BaseModel):
    subscription_plan: Optional[str] = None
    billing_interval: Optional[str] = None
    subscription_status: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("subscription_plan")
    @classmethod
    def validate_plan(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("basico", "pro", "premium"):
            raise ValueError("Plano inválido")
        return v

    @field_validator("billing_interval")
    @classmethod
    def validate_interval(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("monthly", "yearly"):
            raise ValueError("Intervalo inválido")
        return v

    @field_validator("subscription_status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("active", "past_due", "cancelled"):
            raise ValueError("Status inválido")
        return v


class PayoutActionRequest(BaseModel):
    reason: Optional[str] = None
