"""User profile and account endpoints"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...plan_limits import get_usage_stats
from ...rate_limiter import create_rate_limiter, get_client_ip
from ...shared.validators import validate_br_phone, validate_cpf_cnpj
from .service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

rate_limit_account_deletion = create_rate_limiter(limit=5, window_seconds=3600, key_prefix="account_delete")


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: Optional[str] = None
    email: str
    nome: Optional[str] = None
    profissao: Optional[str] = None
    telefone: Optional[str] = None
    cpf_cnpj: Optional[str] = None
    subscription_plan: str
    billing_interval: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    referral_code: Optional[str] = None
    is_referral_partner: bool
    created_at: Optional[datetime] = None


class ProfileUpdate(BaseModel):
    nome: Optional[str] = None
    profissao: Optional[str] = None
    telefone: Optional[str] = None
    cpf_cnpj: Optional[str] = None

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_br_phone(v)
        return v or None

    @field_validator("cpf_cnpj")
    @classmethod
    def validate_document(cls, v):
        return validate_cpf_cnpj(v) or None


class DeleteAccountRequest(BaseModel):
    password: str = Field(min_length=1)


@router.get("/me", response_model=ProfileResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=ProfileResponse)
async def update_profile(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(current_user, key, value)
    db.commit()
    db.refresh(current_user)
    logger.info(f"✅ Profile updated for user {current_user.id}")
    return current_user


@router.get("/me/plan-usage")
async def get_plan_usage(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current usage against the plan's limits"""
    return get_usage_stats(current_user, db)


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(db)


@router.post("/me/login")
async def record_login(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """Called by the frontend after sign-in; feeds the referral fraud checks"""
    fingerprint = service.record_login(current_user, get_client_ip(request), request.headers.get("User-Agent"))
    return {"success": True, "login_count": fingerprint.login_count}


@router.post("/me/delete-account")
async def delete_account(
    data: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
    _: None = Depends(rate_limit_account_deletion),
):
    return await service.delete_account(current_user, data.password)
