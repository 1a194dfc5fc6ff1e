"""Field-level encryption for secrets stored in the database"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..config import SECRET_KEY

logger = logging.getLogger(__name__)

cipher_suite = Fernet(base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest()))


def encrypt_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return cipher_suite.encrypt(value.encode()).decode()


def decrypt_value(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    try:
        return cipher_suite.decrypt(value.encode()).decode()
    except InvalidToken:
        logger.error("❌ Failed to decrypt stored value (key rotated or data corrupted)")
        raise
