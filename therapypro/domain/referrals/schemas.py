"""Referral program schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class BankDetailsRequest(BaseModel):
    """Payout destination; a PIX key alone is enough when the bank fields are left out"""

    tipo_pessoa: str  # PF / PJ (fisica / juridica accepted)
    cpf_cnpj: str
    nome_titular: str
    banco: Optional[str] = None  # bank code, e.g. 260
    agencia: Optional[str] = None
    conta: Optional[str] = None
    tipo_conta: Optional[str] = None  # corrente, poupanca
    chave_pix: Optional[str] = None


class BankDetailsResponse(BaseModel):
    bank_details_validated: bool
    pix_key: Optional[str] = None
    pix_key_type: Optional[str] = None
    bank_code: Optional[str] = None
    bank_agency: Optional[str] = None
    bank_account: Optional[str] = None
    bank_account_type: Optional[str] = None
    bank_holder_name: Optional[str] = None
    bank_holder_document: Optional[str] = None


class PayoutResponse(BaseModel):
    id: int
    amount: int
    status: str
    gateway: str
    payment_type: str
    installment_number: int
    total_installments: int
    commission_rate: int
    gross_amount: Optional[int] = None
    net_amount: Optional[int] = None
    period_start: Optional[datetime] = None
    approval_deadline: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payout_method: Optional[str] = None
    failure_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
