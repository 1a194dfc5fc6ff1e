"""Two-factor service - Authenticator, email code, backup code and reset flows"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from cryptography.fernet import InvalidToken
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import ENVIRONMENT
from ...email_service import send_security_notification, send_twofa_code_email, send_twofa_reset_email
from ...models import User
from ...shared.encryption import decrypt_value, encrypt_value
from .repository import TwoFactorRepository
from .schemas import VerifyCodesRequest
from .totp import (
    build_provisioning_uri,
    generate_backup_codes,
    generate_email_code,
    generate_qr_code_base64,
    generate_reset_token,
    generate_totp_secret,
    hash_backup_code,
    is_six_digit_code,
    is_valid_reset_token,
    verify_totp_code,
)

logger = logging.getLogger(__name__)

EMAIL_CODE_TTL = timedelta(minutes=10)
RESET_TOKEN_TTL = timedelta(hours=1)
RESET_REQUEST_MESSAGE = "Se o email estiver cadastrado, você receberá as instruções para redefinir o 2FA."


class TwoFactorService:
    """Service layer for two-factor authentication"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = TwoFactorRepository()

    # ------------------------------------------------------------------ status

    def get_status(self, user: User) -> dict:
        settings = self.repo.get_settings(self.db, user.id)
        return {
            "email_2fa_enabled": bool(settings and settings.email_2fa_enabled),
            "authenticator_2fa_enabled": bool(settings and settings.authenticator_2fa_enabled),
            "backup_codes_remaining": self.repo.count_unused_backup_codes(self.db, user.id),
        }

    # ----------------------------------------------------------- authenticator

    def _authenticator_secret(self, user: User, settings) -> str:
        try:
            return decrypt_value(settings.authenticator_secret)
        except InvalidToken as e:
            logger.error(f"❌ Stored authenticator secret of user {user.id} cannot be decrypted")
            raise HTTPException(
                status_code=409,
                detail="Configuração do autenticador inválida. Reconfigure o 2FA.",
            ) from e

    def generate_authenticator(self, user: User) -> dict:
        """Create a new secret; it only becomes active after a verified code"""
        secret = generate_totp_secret()
        otpauth_url = build_provisioning_uri(secret, user.email)

        settings = self.repo.get_or_create_settings(self.db, user.id)
        settings.authenticator_secret = encrypt_value(secret)
        settings.authenticator_2fa_enabled = False
        self.db.commit()

        logger.info(f"🔐 Authenticator secret generated for user {user.id}")
        return {
            "secret": secret,
            "otpauth_url": otpauth_url,
            "qr_code": generate_qr_code_base64(otpauth_url),
        }

    def verify_authenticator(self, user: User, code: str, enable: bool = True) -> dict:
        settings = self.repo.get_settings(self.db, user.id)
        if not settings or not settings.authenticator_secret:
            raise HTTPException(status_code=400, detail="Autenticador não configurado. Gere um novo código QR.")

        if not is_six_digit_code(code):
            raise HTTPException(status_code=400, detail="O código deve ter 6 dígitos")

        if not verify_totp_code(self._authenticator_secret(user, settings), code):
            logger.warning(f"⚠️ Invalid authenticator code for user {user.id}")
            raise HTTPException(status_code=400, detail="Código inválido")

        settings.authenticator_2fa_enabled = enable
        self.db.commit()
        logger.info(f"✅ Authenticator 2FA {'enabled' if enable else 'disabled'} for user {user.id}")
        return {"success": True, "authenticator_2fa_enabled": enable}

    def disable_authenticator(self, user: User) -> dict:
        settings = self.repo.get_or_create_settings(self.db, user.id)
        settings.authenticator_2fa_enabled = False
        settings.authenticator_secret = None
        self.db.commit()
        logger.info(f"🔓 Authenticator 2FA disabled for user {user.id}")
        return {"success": True, "authenticator_2fa_enabled": False}

    # ------------------------------------------------------------------- email

    def set_email_2fa(self, user: User, enabled: bool) -> dict:
        settings = self.repo.get_or_create_settings(self.db, user.id)
        settings.email_2fa_enabled = enabled
        self.db.commit()
        logger.info(f"📧 Email 2FA {'enabled' if enabled else 'disabled'} for user {user.id}")
        return {"success": True, "email_2fa_enabled": enabled}

    async def send_email_code(self, user: User) -> dict:
        """Invalidate pending codes, store a fresh one and email it"""
        self.repo.invalidate_email_codes(self.db, user.id)
        code = generate_email_code()
        self.repo.add_email_code(self.db, user.id, code, datetime.utcnow() + EMAIL_CODE_TTL)
        self.db.commit()

        try:
            await send_twofa_code_email(user.email, code)
        except Exception as e:
            logger.error(f"❌ Failed to send 2FA email code to user {user.id}: {e}")
            raise HTTPException(status_code=500, detail="Falha ao enviar o código por email") from e

        return {"success": True, "message": "Código enviado para seu email"}

    async def send_email_code_public(self, email: str) -> dict:
        """Login-screen variant; answers the same whether or not the account exists"""
        user = self.repo.get_user_by_email(self.db, email)
        if user:
            settings = self.repo.get_settings(self.db, user.id)
            if settings and settings.email_2fa_enabled:
                await self.send_email_code(user)
        return {"success": True, "message": "Se o email tiver 2FA ativo, um código foi enviado"}

    # ------------------------------------------------------------ backup codes

    def generate_backup_codes(self, user: User) -> list[str]:
        """Replace every existing backup code; the plain codes are only returned here"""
        codes = generate_backup_codes()
        self.repo.replace_backup_codes(self.db, user.id, [hash_backup_code(c) for c in codes])
        self.db.commit()
        logger.info(f"🔑 Generated {len(codes)} backup codes for user {user.id}")
        return codes

    # ------------------------------------------------------------ verification

    def verify_codes(self, data: VerifyCodesRequest) -> dict:
        user = self.repo.get_user_by_email(self.db, data.email)
        if not user:
            raise HTTPException(status_code=404, detail="Usuário não encontrado")

        settings = self.repo.get_settings(self.db, user.id)
        if not settings:
            raise HTTPException(status_code=400, detail="2FA não configurado")

        now = datetime.utcnow()
        email_verified = not settings.email_2fa_enabled
        authenticator_verified = not settings.authenticator_2fa_enabled

        if settings.email_2fa_enabled and data.emailCode:
            email_code = self.repo.find_valid_email_code(self.db, user.id, data.emailCode.strip(), now)
            if email_code:
                email_code.used = True
                email_verified = True

        if settings.authenticator_2fa_enabled and data.authenticatorCode and settings.authenticator_secret:
            authenticator_verified = verify_totp_code(
                self._authenticator_secret(user, settings), data.authenticatorCode.strip()
            )

        if data.backupCode:
            backup = self.repo.find_unused_backup_code(self.db, user.id, hash_backup_code(data.backupCode))
            if backup:
                backup.used = True
                backup.used_at = now
                email_verified = True
                authenticator_verified = True
                logger.info(f"🔑 Backup code consumed by user {user.id}")

        self.db.commit()

        success = email_verified and authenticator_verified
        if not success:
            logger.warning(f"⚠️ 2FA verification failed for user {user.id}")

        return {
            "success": success,
            "message": "Autenticação bem-sucedida" if success else "Código(s) inválido(s)",
            "verified": {"email": email_verified, "authenticator": authenticator_verified},
        }

    # ------------------------------------------------------------------- reset

    async def request_reset(self, email: str, ip_address: Optional[str]) -> dict:
        response = {"success": True, "message": RESET_REQUEST_MESSAGE}

        user = self.repo.get_user_by_email(self.db, email)
        if not user:
            logger.info("ℹ️ 2FA reset requested for unknown email")
            return response

        token = generate_reset_token()
        self.repo.add_reset_request(self.db, user.id, token, datetime.utcnow() + RESET_TOKEN_TTL, ip_address)
        self.db.commit()

        try:
            await send_twofa_reset_email(user.email, token)
        except Exception as e:
            logger.error(f"❌ Failed to send 2FA reset email to user {user.id}: {e}")

        if ENVIRONMENT == "development":
            response["token"] = token
        return response

    async def complete_reset(self, token: str) -> dict:
        if not is_valid_reset_token(token):
            raise HTTPException(status_code=400, detail="Token inválido")

        reset_request = self.repo.find_open_reset_request(self.db, token, datetime.utcnow())
        if not reset_request:
            raise HTTPException(status_code=400, detail="Token inválido ou expirado")

        settings = self.repo.get_or_create_settings(self.db, reset_request.user_id)
        settings.email_2fa_enabled = False
        settings.authenticator_2fa_enabled = False
        settings.authenticator_secret = None
        reset_request.completed = True
        reset_request.completed_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"🔓 2FA reset completed for user {reset_request.user_id}")

        user = self.db.get(User, reset_request.user_id)
        if user:
            try:
                await send_security_notification(
                    user.email,
                    "2FA redefinido",
                    "A autenticação em dois fatores da sua conta foi desativada por um pedido de redefinição.",
                )
            except Exception as e:
                logger.warning(f"⚠️ Security notification not sent: {e}")

        return {"success": True, "message": "2FA redefinido com sucesso"}
