"""One-time code primitives: TOTP secrets, backup codes, email codes and reset tokens"""

import base64
import hashlib
import io
import re
import secrets
import string
from typing import Optional

import pyotp
import qrcode

TOTP_ISSUER = "TherapyPro"
TOTP_VALID_WINDOW = 1  # accept the previous and next 30 s step for clock drift
SECRET_BYTES = 20  # 160-bit secret, 32 base32 characters

BACKUP_CODE_COUNT = 10
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_CHARSET = string.ascii_uppercase + string.digits

SIX_DIGITS = re.compile(r"^\d{6}$")
RESET_TOKEN = re.compile(r"^[a-f0-9]{64}$")


def generate_totp_secret() -> str:
    return base64.b32encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii")


def build_provisioning_uri(secret: str, account_name: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=TOTP_ISSUER)


def generate_qr_code_base64(data: str) -> str:
    """Render data as a PNG QR code and return it as a data URL"""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode()}"


def is_six_digit_code(code: Optional[str]) -> bool:
    return bool(code) and bool(SIX_DIGITS.match(code))


def verify_totp_code(secret: str, code: Optional[str], for_time=None) -> bool:
    """RFC 6238 check (HMAC-SHA1, 30 s step, 6 digits) with a +/-1 step window"""
    if not secret or not is_six_digit_code(code):
        return False
    return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=TOTP_VALID_WINDOW)


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    """Generate cryptographically secure single-use backup codes"""
    return [
        "".join(secrets.choice(BACKUP_CODE_CHARSET) for _ in range(BACKUP_CODE_LENGTH))
        for _ in range(count)
    ]


def normalize_backup_code(code: str) -> str:
    return re.sub(r"[\s-]", "", code or "").upper()


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_backup_code(code).encode("utf-8")).hexdigest()


def generate_email_code() -> str:
    """6-digit code using cryptographically secure random"""
    return "".join(secrets.choice(string.digits) for _ in range(6))


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def is_valid_reset_token(token: Optional[str]) -> bool:
    return bool(token) and bool(RESET_TOKEN.match(token))
