"""2FA router - FastAPI endpoints for two-factor authentication"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter, get_client_ip
from .schemas import (
    AuthenticatorSetupResponse,
    AuthenticatorVerifyRequest,
    BackupCodesResponse,
    PublicEmailRequest,
    ResetCompleteRequest,
    TwoFactorStatusResponse,
    VerifyCodesRequest,
    VerifyCodesResponse,
)
from .service import TwoFactorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/2fa", tags=["Two-Factor Authentication"])

rate_limit_reset = create_rate_limiter(limit=3, window_seconds=300, key_prefix="2fa_reset")
rate_limit_verify = create_rate_limiter(limit=10, window_seconds=300, key_prefix="2fa_verify")
rate_limit_public_code = create_rate_limiter(limit=5, window_seconds=300, key_prefix="2fa_public_code")


def get_twofa_service(db: Session = Depends(get_db)) -> TwoFactorService:
    """Dependency injection for TwoFactorService"""
    return TwoFactorService(db)


@router.get("/status", response_model=TwoFactorStatusResponse)
async def get_status(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return service.get_status(current_user)


@router.post("/authenticator/generate", response_model=AuthenticatorSetupResponse)
async def generate_authenticator(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    """Start authenticator setup: new secret, otpauth URL and QR code"""
    return service.generate_authenticator(current_user)


@router.post("/authenticator/verify")
async def verify_authenticator(
    data: AuthenticatorVerifyRequest,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return service.verify_authenticator(current_user, data.code, data.enable)


@router.post("/authenticator/disable")
async def disable_authenticator(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return service.disable_authenticator(current_user)


@router.post("/email/enable")
async def enable_email_2fa(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return service.set_email_2fa(current_user, True)


@router.post("/email/disable")
async def disable_email_2fa(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return service.set_email_2fa(current_user, False)


@router.post("/email/send-code")
async def send_email_code(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return await service.send_email_code(current_user)


@router.post("/email/send-code/public")
async def send_email_code_public(
    data: PublicEmailRequest,
    service: TwoFactorService = Depends(get_twofa_service),
    _: None = Depends(rate_limit_public_code),
):
    return await service.send_email_code_public(data.email)


@router.post("/backup-codes/generate", response_model=BackupCodesResponse)
async def generate_backup_codes(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_twofa_service),
):
    return {"codes": service.generate_backup_codes(current_user)}


@router.post("/verify", response_model=VerifyCodesResponse)
async def verify_codes(
    data: VerifyCodesRequest,
    service: TwoFactorService = Depends(get_twofa_service),
    _: None = Depends(rate_limit_verify),
):
    """Check the codes submitted at login against the user's enabled factors"""
    return service.verify_codes(data)


@router.post("/reset/request")
async def request_reset(
    data: PublicEmailRequest,
    request: Request,
    service: TwoFactorService = Depends(get_twofa_service),
    _: None = Depends(rate_limit_reset),
):
    return await service.request_reset(data.email, get_client_ip(request))


@router.post("/reset/complete")
async def complete_reset(
    data: ResetCompleteRequest,
    service: TwoFactorService = Depends(get_twofa_service),
):
    return await service.complete_reset(data.token.strip())
