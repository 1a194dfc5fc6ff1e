"""Session routers - sessions, packages and recurring sessions"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session as DBSession

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import (
    PackageCreate,
    PackageResponse,
    PackageUpdate,
    RecurringSessionCreate,
    RecurringSessionResponse,
    RecurringSessionUpdate,
    SessionCreate,
    SessionResponse,
    SessionUpdate,
)
from .service import PackageService, RecurringSessionService, SessionService

router = APIRouter(prefix="/sessions", tags=["Sessions"])
packages_router = APIRouter(prefix="/packages", tags=["Packages"])
recurring_router = APIRouter(prefix="/recurring-sessions", tags=["Recurring Sessions"])


def get_session_service(db: DBSession = Depends(get_db)) -> SessionService:
    """Dependency injection for SessionService"""
    return SessionService(db)


def get_package_service(db: DBSession = Depends(get_db)) -> PackageService:
    return PackageService(db)


def get_recurring_service(db: DBSession = Depends(get_db)) -> RecurringSessionService:
    return RecurringSessionService(db)


# ============================================================================
# SESSIONS
# ============================================================================


@router.get("", response_model=list[SessionResponse])
async def list_sessions(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    client_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return service.list_sessions(current_user, start_date, end_date, client_id, status)


@router.get("/attention", response_model=list[SessionResponse])
async def sessions_needing_attention(
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """Past sessions that are still marked as scheduled"""
    return service.needing_attention(current_user)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return service.get_session(session_id, current_user)


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    data: SessionCreate,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return service.create_session(data, current_user)


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: int,
    data: SessionUpdate,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """Partial update; a status change is mirrored on the linked payment"""
    return service.update_session(session_id, data, current_user)


@router.delete("/{session_id}")
async def delete_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return service.delete_session(session_id, current_user)


# ============================================================================
# PACKAGES
# ============================================================================


@packages_router.get("", response_model=list[PackageResponse])
async def list_packages(
    client_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.list_packages(current_user, client_id, status)


@packages_router.get("/{package_id}", response_model=PackageResponse)
async def get_package(
    package_id: int,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.get_package(package_id, current_user)


@packages_router.post("", response_model=PackageResponse, status_code=201)
async def create_package(
    data: PackageCreate,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.create_package(data, current_user)


@packages_router.patch("/{package_id}", response_model=PackageResponse)
async def update_package(
    package_id: int,
    data: PackageUpdate,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.update_package(package_id, data, current_user)


@packages_router.post("/{package_id}/cancel", response_model=PackageResponse)
async def cancel_package(
    package_id: int,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.cancel_package(package_id, current_user)


@packages_router.post("/{package_id}/recalculate", response_model=PackageResponse)
async def recalculate_package(
    package_id: int,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.recalculate(package_id, current_user)


@packages_router.delete("/{package_id}")
async def delete_package(
    package_id: int,
    current_user: User = Depends(get_current_user),
    service: PackageService = Depends(get_package_service),
):
    return service.delete_package(package_id, current_user)


# ============================================================================
# RECURRING SESSIONS
# ============================================================================


@recurring_router.get("", response_model=list[RecurringSessionResponse])
async def list_recurring_sessions(
    client_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    service: RecurringSessionService = Depends(get_recurring_service),
):
    return service.list_rules(current_user, client_id)


@recurring_router.post("", status_code=201)
async def create_recurring_session(
    data: RecurringSessionCreate,
    current_user: User = Depends(get_current_user),
    service: RecurringSessionService = Depends(get_recurring_service),
):
    """Create a rule and generate its first instances"""
    result = service.create_rule(data, current_user)
    return {
        "recurring_session": RecurringSessionResponse.model_validate(result["recurring_session"]),
        "generated": result["generated"],
    }


@recurring_router.post("/{rule_id}/generate")
async def generate_instances(
    rule_id: int,
    days_ahead: int = Query(30, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    service: RecurringSessionService = Depends(get_recurring_service),
):
    return service.generate(rule_id, current_user, days_ahead)


@recurring_router.patch("/{rule_id}", response_model=RecurringSessionResponse)
async def update_recurring_session(
    rule_id: int,
    data: RecurringSessionUpdate,
    current_user: User = Depends(get_current_user),
    service: RecurringSessionService = Depends(get_recurring_service),
):
    return service.update_rule(rule_id, data, current_user)


@recurring_router.delete("/{rule_id}")
async def delete_recurring_session(
    rule_id: int,
    delete_future: bool = Query(False),
    current_user: User = Depends(get_current_user),
    service: RecurringSessionService = Depends(get_recurring_service),
):
    return service.delete_rule(rule_id, current_user, delete_future)
