"""Shared validation utilities for Brazilian documents, phones and PIX keys"""

import re
from typing import Optional


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def validate_br_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a Brazilian phone number.

    Args:
        phone: Phone number in any common format, with or without +55

    Returns:
        Digits with the 55 country code (e.g. 5511987654321)

    Raises:
        ValueError: If the number does not have a DDD plus 8 or 9 digits
    """
    if not phone:
        return phone

    digits = only_digits(phone)
    if digits.startswith("55") and len(digits) in (12, 13):
        digits = digits[2:]

    if len(digits) not in (10, 11):
        raise ValueError("Telefone deve ter DDD e 8 ou 9 dígitos")

    return f"55{digits}"


def is_valid_cpf(cpf: Optional[str]) -> bool:
    cpf = only_digits(cpf)
    if len(cpf) != 11 or cpf == cpf[0] * 11:
        return False

    for check_pos in (9, 10):
        total = sum(int(cpf[i]) * (check_pos + 1 - i) for i in range(check_pos))
        digit = (total * 10) % 11
        if digit == 10:
            digit = 0
        if digit != int(cpf[check_pos]):
            return False
    return True


def is_valid_cnpj(cnpj: Optional[str]) -> bool:
    cnpj = only_digits(cnpj)
    if len(cnpj) != 14 or cnpj == cnpj[0] * 14:
        return False

    weights_first = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
    weights_second = [6] + weights_first
    for weights, check_pos in ((weights_first, 12), (weights_second, 13)):
        total = sum(int(cnpj[i]) * weights[i] for i in range(check_pos))
        remainder = total % 11
        digit = 0 if remainder < 2 else 11 - remainder
        if digit != int(cnpj[check_pos]):
            return False
    return True


def validate_cpf_cnpj(document: Optional[str]) -> Optional[str]:
    """Return the document digits, raising ValueError when neither a valid CPF nor CNPJ"""
    if not document:
        return document
    digits = only_digits(document)
    if len(digits) == 11 and is_valid_cpf(digits):
        return digits
    if len(digits) == 14 and is_valid_cnpj(digits):
        return digits
    raise ValueError("CPF/CNPJ inválido")


UUID_PATTERN = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE)


def detect_pix_key_type(key: Optional[str]) -> Optional[str]:
    """
    Infer the PIX key type.

    Returns one of cpf, cnpj, email, phone, random, or None when the key
    matches no known format. CPF is tried before phone since an 11-digit
    string can be both.
    """
    if not key or not key.strip():
        return None

    key = key.strip()
    if re.match(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", key):
        return "email"
    if UUID_PATTERN.match(key):
        return "random"

    digits = only_digits(key)
    if is_valid_cpf(digits) and not key.startswith("+"):
        return "cpf"
    if is_valid_cnpj(digits):
        return "cnpj"
    if re.match(r"^(55)?\d{10,11}$", re.sub(r"[\s()\-+]", "", key)):
        return "phone"
    return None


def normalize_pix_key(key: str, key_type: str) -> str:
    """Format a PIX key the way the transfer API expects it"""
    key = key.strip()
    if key_type in ("cpf", "cnpj"):
        return only_digits(key)
    if key_type == "phone":
        digits = only_digits(key)
        if not digits.startswith("55") or len(digits) < 12:
            digits = f"55{digits}"
        return f"+{digits}"
    if key_type == "email":
        return key.lower()
    return key


def mask_sensitive(value: Optional[str], visible: int = 4) -> Optional[str]:
    """Mask all but the last characters of a sensitive value for logs and audit rows"""
    if not value:
        return value
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
