"""Admin router - back-office authentication and management endpoints"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...models import AdminSession
from ...rate_limiter import create_rate_limiter
from .schemas import AdminLoginRequest, AdminVerifyRequest, PayoutActionRequest, UserUpdateRequest
from .service import AdminService
from .sessions import (
    AdminSessionService,
    clear_admin_cookie,
    get_admin_token,
    require_admin_session,
    set_admin_cookie,
)

router = APIRouter(prefix="/admin", tags=["Admin"])

rate_limit_admin_login = create_rate_limiter(limit=5, window_seconds=900, key_prefix="admin_login", use_ip=True)


def get_admin_service(
    db: Session = Depends(get_db),
    session: AdminSession = Depends(require_admin_session),
) -> AdminService:
    return AdminService(db, session)


# ============================================================================
# AUTHENTICATION
# ============================================================================


@router.post("/login")
async def admin_login(
    body: AdminLoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_admin_login),
):
    """Rate limited to 5 attempts per 15 minutes per IP"""
    result = await AdminSessionService(db).login(body.email, body.password, body.captcha_token, request)
    set_admin_cookie(response, result["sessionToken"], config.ADMIN_SESSION_HOURS * 3600)
    return result


@router.post("/verify")
async def verify_session(
    request: Request,
    body: Optional[AdminVerifyRequest] = None,
    db: Session = Depends(get_db),
):
    token = get_admin_token(request) or (body.session_token if body else None)
    session = AdminSessionService(db).validate(token)
    return {"valid": True, "userId": session.admin_id, "expiresAt": session.expires_at.isoformat()}


@router.post("/logout")
async def admin_logout(
    request: Request,
    response: Response,
    body: Optional[AdminVerifyRequest] = None,
    db: Session = Depends(get_db),
):
    token = get_admin_token(request) or (body.session_token if body else None)
    AdminSessionService(db).revoke(token)
    clear_admin_cookie(response)
    return {"success": True}


# ============================================================================
# DASHBOARD & USERS
# ============================================================================


@router.get("/dashboard")
async def dashboard(service: AdminService = Depends(get_admin_service)):
    return service.dashboard_stats()


@router.get("/users")
async def list_users(
    search: Optional[str] = None,
    plan: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: AdminService = Depends(get_admin_service),
):
    return service.list_users(search, plan, page, page_size)


@router.patch("/users/{user_id}")
async def update_user(
    user_id: int,
    body: UserUpdateRequest,
    service: AdminService = Depends(get_admin_service),
):
    """Change a user's plan, billing interval, subscription status or active flag"""
    return service.update_user(user_id, body.model_dump(exclude_unset=True))


# ============================================================================
# REFERRAL PAYOUTS
# ============================================================================


@router.get("/referrals/payouts")
async def list_payouts(
    status: Optional[str] = None,
    referrer_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    service: AdminService = Depends(get_admin_service),
):
    return service.list_payouts(status, referrer_id, page, page_size)


@router.post("/referrals/payouts/process")
async def process_payouts(service: AdminService = Depends(get_admin_service)):
    """Run the batch payout job now"""
    return await service.process_payouts()


@router.post("/referrals/payouts/{payout_id}/approve")
async def approve_payout(payout_id: int, service: AdminService = Depends(get_admin_service)):
    return service.approve_payout(payout_id)


@router.post("/referrals/payouts/{payout_id}/cancel")
async def cancel_payout(
    payout_id: int,
    body: Optional[PayoutActionRequest] = None,
    service: AdminService = Depends(get_admin_service),
):
    return service.cancel_payout(payout_id, body.reason if body else None)


@router.post("/referrals/payouts/{payout_id}/stripe-transfer")
async def stripe_payout(payout_id: int, service: AdminService = Depends(get_admin_service)):
    return await service.process_stripe_payout(payout_id)


@router.get("/referrals/audit-logs")
async def referral_audit_logs(
    action: Optional[str] = None,
    referrer_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    service: AdminService = Depends(get_admin_service),
):
    return service.referral_audit_logs(action, referrer_id, limit)


@router.get("/audit-logs")
async def audit_logs(
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    service: AdminService = Depends(get_admin_service),
):
    return service.audit_logs(action, limit)
