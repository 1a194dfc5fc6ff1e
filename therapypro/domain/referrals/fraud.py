"""Self-referral detection between a referrer and the user they referred"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...models import User, UserLoginFingerprint
from ...shared.validators import only_digits

logger = logging.getLogger(__name__)

SAME_DOCUMENT = "same_document"
SAME_PHONE = "same_phone"
SHARED_CUSTOMER = "shared_customer_id"
SAME_CARD = "same_card"
SAME_IP = "same_ip"

# One critical signal blocks the commission; warnings block only in pairs
CRITICAL_SIGNALS = {SAME_DOCUMENT, SHARED_CUSTOMER, SAME_CARD}
WARNING_SIGNALS = {SAME_PHONE, SAME_IP}
WARNINGS_TO_BLOCK = 2


def shared_login_ips(db: Session, first_user_id: int, second_user_id: int) -> list[str]:
    """IP addresses both users have signed in from"""
    first = {
        row.ip_address
        for row in db.query(UserLoginFingerprint.ip_address).filter(UserLoginFingerprint.user_id == first_user_id)
    }
    if not first:
        return []
    rows = (
        db.query(UserLoginFingerprint.ip_address)
        .filter(UserLoginFingerprint.user_id == second_user_id, UserLoginFingerprint.ip_address.in_(first))
        .all()
    )
    return sorted(row.ip_address for row in rows)


def detect_fraud_signals(
    referrer: User,
    referred: User,
    card_match: bool = False,
    shared_ips: Optional[list] = None,
) -> list[str]:
    """
    Compare the two accounts and return the signal types that fired.

    ``card_match`` comes from the gateway (same card fingerprint on both
    customers) and ``shared_ips`` from the recorded login fingerprints.
    """
    signals = []

    referrer_doc, referred_doc = only_digits(referrer.cpf_cnpj), only_digits(referred.cpf_cnpj)
    if referrer_doc and referrer_doc == referred_doc:
        signals.append(SAME_DOCUMENT)

    referrer_phone, referred_phone = only_digits(referrer.telefone), only_digits(referred.telefone)
    if referrer_phone and referrer_phone == referred_phone:
        signals.append(SAME_PHONE)

    for attr in ("stripe_customer_id", "asaas_customer_id"):
        value = getattr(referrer, attr)
        if value and value == getattr(referred, attr):
            signals.append(SHARED_CUSTOMER)
            break

    if card_match:
        signals.append(SAME_CARD)

    if shared_ips:
        signals.append(SAME_IP)

    if signals:
        logger.warning(f"🚨 Fraud signals between users {referrer.id} and {referred.id}: {signals}")
    return signals


def is_blocking(signals: list[str]) -> bool:
    if any(signal in CRITICAL_SIGNALS for signal in signals):
        return True
    return len(WARNING_SIGNALS.intersection(signals)) >= WARNINGS_TO_BLOCK
