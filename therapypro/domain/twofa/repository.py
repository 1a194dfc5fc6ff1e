"""Two-factor repository - Database operations for 2FA settings and codes"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import User
from ...models_twofa import (
    TwoFactorBackupCode,
    TwoFactorEmailCode,
    TwoFactorResetRequest,
    TwoFactorSettings,
)


class TwoFactorRepository:
    """Repository for 2FA database operations"""

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def get_settings(db: Session, user_id: int) -> Optional[TwoFactorSettings]:
        return db.query(TwoFactorSettings).filter(TwoFactorSettings.user_id == user_id).first()

    @staticmethod
    def get_or_create_settings(db: Session, user_id: int) -> TwoFactorSettings:
        settings = TwoFactorRepository.get_settings(db, user_id)
        if not settings:
            settings = TwoFactorSettings(user_id=user_id)
            db.add(settings)
            db.flush()
        return settings

    @staticmethod
    def invalidate_email_codes(db: Session, user_id: int) -> int:
        """Mark every unused email code of the user as used"""
        return (
            db.query(TwoFactorEmailCode)
            .filter(TwoFactorEmailCode.user_id == user_id, TwoFactorEmailCode.used.is_(False))
            .update({TwoFactorEmailCode.used: True}, synchronize_session=False)
        )

    @staticmethod
    def add_email_code(db: Session, user_id: int, code: str, expires_at: datetime) -> TwoFactorEmailCode:
        email_code = TwoFactorEmailCode(user_id=user_id, code=code, expires_at=expires_at)
        db.add(email_code)
        return email_code

    @staticmethod
    def find_valid_email_code(db: Session, user_id: int, code: str, now: datetime) -> Optional[TwoFactorEmailCode]:
        return (
            db.query(TwoFactorEmailCode)
            .filter(
                TwoFactorEmailCode.user_id == user_id,
                TwoFactorEmailCode.code == code,
                TwoFactorEmailCode.used.is_(False),
                TwoFactorEmailCode.expires_at > now,
            )
            .order_by(TwoFactorEmailCode.created_at.desc(), TwoFactorEmailCode.id.desc())
            .first()
        )

    @staticmethod
    def replace_backup_codes(db: Session, user_id: int, code_hashes: list[str]) -> None:
        db.query(TwoFactorBackupCode).filter(TwoFactorBackupCode.user_id == user_id).delete(
            synchronize_session=False
        )
        db.add_all(TwoFactorBackupCode(user_id=user_id, code_hash=h) for h in code_hashes)

    @staticmethod
    def find_unused_backup_code(db: Session, user_id: int, code_hash: str) -> Optional[TwoFactorBackupCode]:
        return (
            db.query(TwoFactorBackupCode)
            .filter(
                TwoFactorBackupCode.user_id == user_id,
                TwoFactorBackupCode.code_hash == code_hash,
                TwoFactorBackupCode.used.is_(False),
            )
            .first()
        )

    @staticmethod
    def count_unused_backup_codes(db: Session, user_id: int) -> int:
        return (
            db.query(TwoFactorBackupCode)
            .filter(TwoFactorBackupCode.user_id == user_id, TwoFactorBackupCode.used.is_(False))
            .count()
        )

    @staticmethod
    def add_reset_request(
        db: Session, user_id: int, token: str, expires_at: datetime, ip_address: Optional[str]
    ) -> TwoFactorResetRequest:
        reset_request = TwoFactorResetRequest(
            user_id=user_id, token=token, expires_at=expires_at, ip_address=ip_address
        )
        db.add(reset_request)
        return reset_request

    @staticmethod
    def find_open_reset_request(db: Session, token: str, now: datetime) -> Optional[TwoFactorResetRequest]:
        return (
            db.query(TwoFactorResetRequest)
            .filter(
                TwoFactorResetRequest.token == token,
                TwoFactorResetRequest.completed.is_(False),
                TwoFactorResetRequest.expires_at > now,
            )
            .first()
        )

    @staticmethod
    def delete_expired_email_codes(db: Session, now: datetime) -> int:
        return (
            db.query(TwoFactorEmailCode)
            .filter(TwoFactorEmailCode.expires_at <= now)
            .delete(synchronize_session=False)
        )
