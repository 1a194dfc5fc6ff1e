"""Payment service - session payment bookkeeping"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Client, Payment, User
from ...models import Session as TherapySession
from .repository import PaymentRepository
from .schemas import PaymentCreate, PaymentUpdate

logger = logging.getLogger(__name__)

SESSION_TO_PAYMENT_STATUS = {
    "cancelada": "cancelado",
    "falta": "pendente",
    "realizada": "pago",
}


def payment_status_for_session(session_status: str) -> str:
    """Payment status implied by a session status; anything unlisted stays pending"""
    return SESSION_TO_PAYMENT_STATUS.get(session_status, "pendente")


def apply_payment_status(payment: Payment, status: str, today: Optional[date] = None) -> None:
    """Set a payment's status, stamping the payment date when it becomes paid"""
    payment.status = status
    if status == "pago" and not payment.data_pagamento:
        payment.data_pagamento = today or date.today()


class PaymentService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentRepository()

    def list_payments(
        self,
        user: User,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Payment]:
        return self.repo.list_payments(
            self.db, user.id, status=status, client_id=client_id, start_date=start_date, end_date=end_date
        )

    def get_payment(self, payment_id: int, user: User) -> Payment:
        payment = self.repo.get_payment(self.db, payment_id, user.id)
        if not payment:
            raise HTTPException(status_code=404, detail="Pagamento não encontrado")
        return payment

    def _check_ownership(self, user: User, client_id: int, session_id: Optional[int]):
        client = self.db.query(Client).filter(Client.id == client_id, Client.user_id == user.id).first()
        if not client:
            raise HTTPException(status_code=404, detail="Cliente não encontrado")
        if session_id is not None:
            session = (
                self.db.query(TherapySession)
                .filter(TherapySession.id == session_id, TherapySession.user_id == user.id)
                .first()
            )
            if not session or session.client_id != client_id:
                raise HTTPException(status_code=404, detail="Sessão não encontrada")

    def create_payment(self, data: PaymentCreate, user: User) -> Payment:
        self._check_ownership(user, data.client_id, data.session_id)

        fields = data.model_dump()
        status = fields.pop("status")
        payment = Payment(user_id=user.id, **fields)
        apply_payment_status(payment, status)
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"💵 Payment {payment.id} created for user {user.id}")
        return payment

    def update_payment(self, payment_id: int, data: PaymentUpdate, user: User) -> Payment:
        payment = self.get_payment(payment_id, user)
        updates = data.model_dump(exclude_unset=True)
        status = updates.pop("status", None)
        for key, value in updates.items():
            setattr(payment, key, value)
        if status:
            apply_payment_status(payment, status)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def delete_payment(self, payment_id: int, user: User) -> dict:
        payment = self.get_payment(payment_id, user)
        self.db.delete(payment)
        self.db.commit()
        return {"message": "Pagamento excluído"}

    def summary(self, user: User, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        """Received, pending and cancelled totals (cents) for a period"""
        totals = self.repo.totals_by_status(self.db, user.id, start_date=start_date, end_date=end_date)
        paid = totals.get("pago", (0, 0))
        pending = totals.get("pendente", (0, 0))
        cancelled = totals.get("cancelado", (0, 0))
        return {
            "total_recebido": paid[1],
            "total_pendente": pending[1],
            "total_cancelado": cancelled[1],
            "quantidade_pagos": paid[0],
            "quantidade_pendentes": pending[0],
            "quantidade_cancelados": cancelled[0],
        }
