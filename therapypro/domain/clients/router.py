"""Client router - FastAPI endpoints for client operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter
from .schemas import (
    BatchDeleteRequest,
    ClientCreate,
    ClientResponse,
    ClientUpdate,
    PublicClientRegistration,
    RegistrationTokenResponse,
)
from .service import ClientService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clients", tags=["Clients"])

# Public registration links
rate_limit_token_check = create_rate_limiter(limit=5, window_seconds=60, key_prefix="registration_check")
rate_limit_registration = create_rate_limiter(limit=10, window_seconds=60, key_prefix="registration_submit")


def get_client_service(db: Session = Depends(get_db)) -> ClientService:
    """Dependency injection for ClientService"""
    return ClientService(db)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ClientResponse])
async def get_clients(
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
    only_active: bool = Query(False),
    search: Optional[str] = Query(None),
):
    """List the user's clients, optionally only active ones or matching a search term"""
    return service.get_clients(current_user, only_active, search)


@router.get("/export")
async def export_clients_csv(
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
    only_active: bool = Query(False),
    search: Optional[str] = Query(None),
):
    return service.export_clients_csv(current_user, only_active, search)


# ============================================================================
# SELF-REGISTRATION LINKS
# ============================================================================


@router.post("/registration-tokens", response_model=RegistrationTokenResponse)
async def generate_registration_token(
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    """Create a 30-day single-use link a client can use to register themselves"""
    return service.generate_registration_token(current_user)


@router.get("/registration/{token}")
async def validate_registration_token(
    token: str,
    service: ClientService = Depends(get_client_service),
    _: None = Depends(rate_limit_token_check),
):
    """Public: status of a registration link (valid, used, expired or not_found)"""
    return service.validate_registration_token(token)


@router.post("/registration/{token}", status_code=201)
async def register_via_token(
    token: str,
    data: PublicClientRegistration,
    service: ClientService = Depends(get_client_service),
    _: None = Depends(rate_limit_registration),
):
    """Public: a client registers through a link shared by the professional"""
    return service.register_via_token(token, data)


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: int,
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    return service.get_client(client_id, current_user)


@router.post("", response_model=ClientResponse, status_code=201)
async def create_client(
    data: ClientCreate,
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    """Create a client (403 when the plan's client limit is reached)"""
    return service.create_client(data, current_user)


@router.patch("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: int,
    data: ClientUpdate,
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    return service.update_client(client_id, data, current_user)


@router.delete("/{client_id}")
async def delete_client(
    client_id: int,
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    return service.delete_client(client_id, current_user)


@router.post("/batch-delete")
async def batch_delete_clients(
    data: BatchDeleteRequest,
    current_user: User = Depends(get_current_user),
    service: ClientService = Depends(get_client_service),
):
    return service.batch_delete_clients(data.client_ids, current_user)
