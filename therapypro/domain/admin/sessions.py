"""Admin back-office authentication: login, session verification and logout"""

import asyncio
import hmac
import logging
import random
import re
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...models import AdminSession, AuditLog
from ...turnstile import verify_turnstile

logger = logging.getLogger(__name__)

ADMIN_COOKIE_NAME = "admin_session"
ADMIN_SESSION_HEADER = "X-Admin-Session"
FAILED_LOGIN_DELAY_RANGE = (0.3, 0.5)  # seconds
IP_PATTERN = re.compile(r"^[\d.:a-fA-F]+$")


def extract_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For entry (or X-Real-IP), kept only if it looks like an IP"""
    forwarded = request.headers.get("X-Forwarded-For")
    candidate = forwarded.split(",")[0].strip() if forwarded else request.headers.get("X-Real-IP")
    if candidate and IP_PATTERN.match(candidate.strip()):
        return candidate.strip()
    return None


def credentials_match(email: str, password: str) -> bool:
    """Compare both credentials in constant time; both comparisons always run"""
    email_ok = hmac.compare_digest((email or "").encode("utf-8"), (config.ADMIN_EMAIL or "").encode("utf-8"))
    password_ok = hmac.compare_digest(
        (password or "").encode("utf-8"), (config.ADMIN_PASSWORD or "").encode("utf-8")
    )
    return email_ok and password_ok


def set_admin_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie(
        key=ADMIN_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=True,
        samesite="strict",
        path="/",
    )


def clear_admin_cookie(response: Response) -> None:
    response.delete_cookie(key=ADMIN_COOKIE_NAME, path="/", secure=True, httponly=True, samesite="strict")


class AdminSessionService:
    """Creates and validates admin sessions"""

    def __init__(self, db: Session):
        self.db = db

    async def login(self, email: str, password: str, captcha_token: Optional[str], request: Request) -> dict:
        client_ip = extract_client_ip(request)
        logger.info(f"🔑 Admin login attempt from IP: {client_ip}")

        if config.TURNSTILE_SECRET_KEY and captcha_token:
            if not await verify_turnstile(captcha_token, client_ip):
                logger.error("❌ Turnstile validation failed, continuing with credential check only")
        else:
            logger.warning("⚠️ Turnstile disabled or token missing, continuing without CAPTCHA")

        if not config.ADMIN_EMAIL or not config.ADMIN_PASSWORD:
            logger.error("❌ Admin credentials not configured")
            raise HTTPException(status_code=500, detail="Credenciais de administrador não configuradas")

        if not credentials_match(email, password):
            await asyncio.sleep(random.uniform(*FAILED_LOGIN_DELAY_RANGE))
            logger.error("❌ Invalid admin credentials")
            raise HTTPException(status_code=401, detail="Credenciais inválidas")

        admin_id = str(uuid.uuid4())
        session_token = str(uuid.uuid4())
        expires_at = datetime.utcnow() + timedelta(hours=config.ADMIN_SESSION_HOURS)

        self.db.add(
            AdminSession(
                admin_id=admin_id,
                session_token=session_token,
                ip_address=client_ip,
                user_agent=(request.headers.get("user-agent") or "")[:500] or None,
                expires_at=expires_at,
            )
        )
        self.db.add(
            AuditLog(
                action="ADMIN_LOGIN",
                actor=admin_id,
                ip_address=client_ip,
                details={"email": email, "ip_address": client_ip},
            )
        )
        self.db.commit()

        logger.info(f"✅ Admin login succeeded, session expires at {expires_at.isoformat()}")
        return {
            "success": True,
            "sessionToken": session_token,
            "userId": admin_id,
            "expiresAt": expires_at.isoformat(),
        }

    def validate(self, token: Optional[str]) -> AdminSession:
        """
        Return the live session for a token.
        Expired sessions are revoked as a side effect; every failure is a 401.
        """
        if not token:
            raise HTTPException(status_code=401, detail="Token de sessão não fornecido")

        session = (
            self.db.query(AdminSession)
            .filter(AdminSession.session_token == token, AdminSession.revoked.is_(False))
            .first()
        )
        if not session:
            logger.warning("⚠️ Admin session not found or revoked")
            raise HTTPException(status_code=401, detail="Sessão inválida")

        now = datetime.utcnow()
        if now >= session.expires_at:
            session.revoked = True
            session.revoked_at = now
            self.db.commit()
            logger.warning(f"⚠️ Admin session {session.id} expired and was revoked")
            raise HTTPException(
                status_code=401,
                detail="Sessão expirada",
                headers={"Set-Cookie": f"{ADMIN_COOKIE_NAME}=; HttpOnly; Secure; SameSite=Strict; Path=/; Max-Age=0"},
            )

        return session

    def revoke(self, token: Optional[str]) -> bool:
        if not token:
            return False
        session = self.db.query(AdminSession).filter(AdminSession.session_token == token).first()
        if not session or session.revoked:
            return False
        session.revoked = True
        session.revoked_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"👋 Admin session {session.id} revoked")
        return True

    def cleanup_expired(self) -> int:
        """Delete sessions that expired or were revoked more than a day ago"""
        cutoff = datetime.utcnow() - timedelta(days=1)
        deleted = (
            self.db.query(AdminSession)
            .filter(AdminSession.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted


def get_admin_token(request: Request) -> Optional[str]:
    return request.cookies.get(ADMIN_COOKIE_NAME) or request.headers.get(ADMIN_SESSION_HEADER)


async def require_admin_session(request: Request, db: Session = Depends(get_db)) -> AdminSession:
    """Dependency protecting every admin endpoint"""
    return AdminSessionService(db).validate(get_admin_token(request))
