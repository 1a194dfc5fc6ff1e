import logging
import secrets
import string
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import User
from .models_referral import Referral

logger = logging.getLogger(__name__)

security = HTTPBearer()

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase access token (HS256 signed with the project JWT secret).
    Signature, expiry and audience are all checked.
    """
    if not SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        return jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        logger.info("ℹ️ Expired Supabase token received")
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token") from e


def _attach_referrer(db: Session, user: User, referral_code: Optional[str]):
    if not referral_code:
        return
    referrer = db.query(User).filter(User.referral_code == referral_code.strip().upper()).first()
    if not referrer or referrer.id == user.id:
        logger.info(f"ℹ️ Ignoring unknown referral code for {user.email}")
        return
    user.referred_by_user_id = referrer.id
    db.add(Referral(referrer_user_id=referrer.id, referred_user_id=user.id, status="pending"))
    logger.info(f"🤝 User {user.email} referred by user {referrer.id}")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from the Supabase access token"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid token format. Expected a valid JWT token.")

    claims = verify_supabase_token(token)

    supabase_uid = claims.get("sub")
    email = (claims.get("email") or "").strip().lower() or None
    metadata = claims.get("user_metadata") or {}

    if not supabase_uid:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    try:
        user = db.query(User).filter(User.supabase_uid == supabase_uid).first()
        if user:
            if not user.is_active:
                raise HTTPException(status_code=403, detail="Conta desativada")
            return user

        if email:
            existing_user = db.query(User).filter(User.email == email).first()
            if existing_user:
                logger.info(f"🔄 Migrating user {email} to Supabase UID {supabase_uid}")
                existing_user.supabase_uid = supabase_uid
                db.commit()
                db.refresh(existing_user)
                return existing_user

        logger.info(f"🆕 Creating new user: {email}")
        user = User(
            supabase_uid=supabase_uid,
            email=email or "",
            nome=metadata.get("name") or metadata.get("nome"),
            profissao=metadata.get("profissao"),
            subscription_plan="basico",
            referral_code=generate_referral_code(),
        )
        db.add(user)
        db.flush()
        _attach_referrer(db, user, metadata.get("referral_code"))
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error(f"❌ Email {email} was taken by another account (race condition)")
            raise HTTPException(
                status_code=409,
                detail="Este email já está cadastrado. Entre com sua conta existente.",
            ) from e
        db.refresh(user)
        logger.info(f"✅ New user created: {user.email}")
        return user

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Authentication failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Authentication failed") from e
