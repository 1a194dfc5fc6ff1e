"""2FA domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator


class AuthenticatorSetupResponse(BaseModel):
    secret: str
    otpauth_url: str
    qr_code: str


class AuthenticatorVerifyRequest(BaseModel):
    code: str
    enable: bool = True

    @field_validator("code")
    @classmethod
    def strip_code(cls, v):
        return v.strip().replace(" ", "")


class BackupCodesResponse(BaseModel):
    codes: list[str]


class PublicEmailRequest(BaseModel):
    email: EmailStr


class VerifyCodesRequest(BaseModel):
    """Login-time verification; every code is optional"""

    email: EmailStr
    emailCode: Optional[str] = None
    authenticatorCode: Optional[str] = None
    backupCode: Optional[str] = None


class VerifiedFactors(BaseModel):
    email: bool
    authenticator: bool


class VerifyCodesResponse(BaseModel):
    success: bool
    message: str
    verified: VerifiedFactors


class ResetCompleteRequest(BaseModel):
    token: str


class TwoFactorStatusResponse(BaseModel):
    email_2fa_enabled: bool
    authenticator_2fa_enabled: bool
    backup_codes_remaining: int
