"""Referral router - partner program endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter
from .schemas import BankDetailsRequest, BankDetailsResponse
from .service import ReferralService

router = APIRouter(prefix="/referrals", tags=["Referrals"])

rate_limit_payout_request = create_rate_limiter(limit=5, window_seconds=3600, key_prefix="referral_payout")


def get_referral_service(db: Session = Depends(get_db)) -> ReferralService:
    """Dependency injection for ReferralService"""
    return ReferralService(db)


@router.get("/stats")
async def get_stats(
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
):
    return service.get_stats(current_user)


@router.post("/join")
async def join_program(
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
):
    return service.join_program(current_user)


@router.post("/leave")
async def leave_program(
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
):
    return service.leave_program(current_user)


@router.get("/bank-details", response_model=BankDetailsResponse)
async def get_bank_details(
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
):
    return service.get_bank_details(current_user)


@router.post("/bank-details")
async def save_bank_details(
    data: BankDetailsRequest,
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
):
    """Validate and store the partner's payout destination"""
    return service.save_bank_details(current_user, data)


@router.post("/payouts/request")
async def request_payout(
    current_user: User = Depends(get_current_user),
    service: ReferralService = Depends(get_referral_service),
    _: None = Depends(rate_limit_payout_request),
):
    return await service.request_payout(current_user)
