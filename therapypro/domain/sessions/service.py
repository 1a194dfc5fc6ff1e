"""Session service - scheduling, session packages and recurring sessions"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session as DBSession

from ...models import Client, Package, Payment, RecurringSession, Session, User
from ...plan_limits import can_add_session
from ..payments.service import apply_payment_status, payment_status_for_session
from .recurrence import DEFAULT_DAYS_AHEAD, occurrence_dates
from .repository import PackageRepository, RecurringSessionRepository, SessionRepository
from .schemas import (
    PackageCreate,
    PackageUpdate,
    RecurringSessionCreate,
    RecurringSessionUpdate,
    SessionCreate,
    SessionUpdate,
)

logger = logging.getLogger(__name__)


def recalculate_package(db: DBSession, package: Package) -> Package:
    """
    Recount a package's consumption from its ``realizada`` sessions.
    Cancelled packages keep their status.
    """
    consumed = PackageRepository.count_realized(db, package.id)
    package.sessoes_consumidas = consumed
    if package.status != "cancelado":
        package.status = "concluido" if consumed >= package.total_sessoes else "ativo"
    return package


def create_linked_payment(db: DBSession, session: Session, metodo: Optional[str] = None) -> Payment:
    payment = Payment(
        user_id=session.user_id,
        client_id=session.client_id,
        session_id=session.id,
        valor=session.valor,
        metodo_pagamento=metodo or "A definir",
        data_vencimento=session.data,
    )
    apply_payment_status(payment, payment_status_for_session(session.status))
    db.add(payment)
    return payment


def generate_recurring_instances(
    db: DBSession,
    rule: RecurringSession,
    user: User,
    days_ahead: int = DEFAULT_DAYS_AHEAD,
    today: Optional[date] = None,
) -> list[Session]:
    """
    Create the missing ``agendada`` sessions of a rule inside its window.
    Dates that already have an instance are skipped; generation stops early
    when the plan's per-client session limit is reached. Caller commits.
    """
    client = db.query(Client).filter(Client.id == rule.client_id).first()
    existing = RecurringSessionRepository.existing_dates(db, rule.id)
    dates = occurrence_dates(
        rule.start_date,
        rule.recurrence_type,
        rule.recurrence_interval,
        end_date=rule.recurrence_end_date,
        count=rule.recurrence_count,
        days_ahead=days_ahead,
        today=today,
    )

    created = []
    for day in dates:
        if day in existing:
            continue
        can_add, message = can_add_session(user, client, db)
        if not can_add:
            logger.info(f"⚠️ Recurring rule {rule.id} stopped at plan limit: {message}")
            break
        session = Session(
            user_id=rule.user_id,
            client_id=rule.client_id,
            data=day,
            horario=rule.horario,
            status="agendada",
            valor=rule.valor,
            recurring_session_id=rule.id,
        )
        db.add(session)
        db.flush()
        if session.valor:
            create_linked_payment(db, session)
        created.append(session)

    if created:
        logger.info(f"📅 Generated {len(created)} sessions for recurring rule {rule.id}")
    return created


class SessionService:
    """Service layer for one-off sessions"""

    def __init__(self, db: DBSession):
        self.db = db
        self.repo = SessionRepository()

    def list_sessions(
        self,
        user: User,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Session]:
        return self.repo.list_sessions(self.db, user.id, start_date, end_date, client_id, status)

    def get_session(self, session_id: int, user: User) -> Session:
        session = self.repo.get_session(self.db, session_id, user.id)
        if not session:
            raise HTTPException(status_code=404, detail="Sessão não encontrada")
        return session

    def needing_attention(self, user: User, now: Optional[datetime] = None) -> list[Session]:
        return self.repo.sessions_needing_attention(self.db, user.id, now or datetime.now())

    def _get_client(self, client_id: int, user: User) -> Client:
        client = self.repo.get_client(self.db, client_id, user.id)
        if not client:
            raise HTTPException(status_code=404, detail="Cliente não encontrado")
        return client

    def create_session(self, data: SessionCreate, user: User) -> Session:
        client = self._get_client(data.client_id, user)

        can_add, error_message = can_add_session(user, client, self.db)
        if not can_add:
            logger.warning(f"⚠️ User {user.id} reached session limit for client {client.id}")
            raise HTTPException(status_code=403, detail=error_message)

        package = None
        if data.package_id is not None:
            package = PackageRepository.get_package(self.db, data.package_id, user.id)
            if not package or package.client_id != client.id:
                raise HTTPException(status_code=404, detail="Pacote não encontrado")
            if package.status != "ativo":
                raise HTTPException(status_code=400, detail="Pacote não está ativo")

        if not client.ativo:
            client.ativo = True
            logger.info(f"🔄 Client {client.id} reactivated by new session")

        valor = None if package else (data.valor if data.valor is not None else client.valor_sessao)
        session = Session(
            user_id=user.id,
            client_id=client.id,
            data=data.data,
            horario=data.horario,
            status=data.status,
            valor=valor,
            anotacoes=data.anotacoes,
            package_id=package.id if package else None,
        )
        self.db.add(session)
        self.db.flush()

        if session.valor:
            create_linked_payment(self.db, session, data.metodo_pagamento)
        if package:
            recalculate_package(self.db, package)

        self.db.commit()
        self.db.refresh(session)
        logger.info(f"📅 Session {session.id} created for user {user.id}")
        return session

    def update_session(self, session_id: int, data: SessionUpdate, user: User) -> Session:
        session = self.get_session(session_id, user)
        updates = data.model_dump(exclude_unset=True)
        status_changed = "status" in updates and updates["status"] != session.status

        for key, value in updates.items():
            setattr(session, key, value)

        payments = self.repo.payments_for_session(self.db, session.id)
        for payment in payments:
            if "valor" in updates and session.valor is not None:
                payment.valor = session.valor
            if "data" in updates:
                payment.data_vencimento = session.data
            if status_changed:
                apply_payment_status(payment, payment_status_for_session(session.status))

        if not payments and session.valor and not session.package_id:
            create_linked_payment(self.db, session)

        if status_changed and session.package:
            # autoflush is off; the consumption count reads the new status
            self.db.flush()
            recalculate_package(self.db, session.package)

        self.db.commit()
        self.db.refresh(session)
        if status_changed:
            logger.info(f"🔄 Session {session.id} moved to {session.status}")
        return session

    def delete_session(self, session_id: int, user: User) -> dict:
        session = self.get_session(session_id, user)
        package = session.package
        for payment in self.repo.payments_for_session(self.db, session.id):
            self.db.delete(payment)
        self.db.delete(session)
        self.db.flush()
        if package:
            recalculate_package(self.db, package)
        self.db.commit()
        return {"message": "Sessão excluída"}


class PackageService:
    """Service layer for prepaid session packages"""

    def __init__(self, db: DBSession):
        self.db = db
        self.repo = PackageRepository()

    def list_packages(self, user: User, client_id: Optional[int] = None, status: Optional[str] = None):
        return self.repo.list_packages(self.db, user.id, client_id, status)

    def get_package(self, package_id: int, user: User) -> Package:
        package = self.repo.get_package(self.db, package_id, user.id)
        if not package:
            raise HTTPException(status_code=404, detail="Pacote não encontrado")
        return package

    def create_package(self, data: PackageCreate, user: User) -> Package:
        client = SessionRepository.get_client(self.db, data.client_id, user.id)
        if not client:
            raise HTTPException(status_code=404, detail="Cliente não encontrado")

        fields = data.model_dump(exclude={"metodo_pagamento"})
        package = Package(user_id=user.id, sessoes_consumidas=0, status="ativo", **fields)
        self.db.add(package)
        self.db.flush()

        # One payment covers the whole package
        self.db.add(
            Payment(
                user_id=user.id,
                client_id=client.id,
                package_id=package.id,
                valor=package.valor_total,
                status="pendente",
                metodo_pagamento=data.metodo_pagamento or "A definir",
                data_vencimento=package.data_inicio,
                observacoes=f"Pacote: {package.nome}",
            )
        )
        self.db.commit()
        self.db.refresh(package)
        logger.info(f"📦 Package {package.id} ({package.total_sessoes} sessions) created for user {user.id}")
        return package

    def update_package(self, package_id: int, data: PackageUpdate, user: User) -> Package:
        package = self.get_package(package_id, user)
        updates = data.model_dump(exclude_unset=True)
        for key, value in updates.items():
            setattr(package, key, value)
        if "total_sessoes" in updates or updates.get("status") == "ativo":
            recalculate_package(self.db, package)
        self.db.commit()
        self.db.refresh(package)
        return package

    def cancel_package(self, package_id: int, user: User) -> Package:
        package = self.get_package(package_id, user)
        package.status = "cancelado"
        self.db.commit()
        self.db.refresh(package)
        return package

    def recalculate(self, package_id: int, user: User) -> Package:
        package = recalculate_package(self.db, self.get_package(package_id, user))
        self.db.commit()
        self.db.refresh(package)
        return package

    def delete_package(self, package_id: int, user: User) -> dict:
        """Delete a package along with its sessions and payments"""
        package = self.get_package(package_id, user)
        for session in list(package.sessions):
            for payment in session.payments:
                self.db.delete(payment)
            self.db.delete(session)
        self.db.query(Payment).filter(Payment.package_id == package.id).delete(synchronize_session=False)
        self.db.delete(package)
        self.db.commit()
        return {"message": "Pacote excluído"}


class RecurringSessionService:
    """Service layer for recurrence rules and their generated sessions"""

    def __init__(self, db: DBSession):
        self.db = db
        self.repo = RecurringSessionRepository()

    def list_rules(self, user: User, client_id: Optional[int] = None) -> list[RecurringSession]:
        return self.repo.list_rules(self.db, user.id, client_id)

    def get_rule(self, rule_id: int, user: User) -> RecurringSession:
        rule = self.repo.get_rule(self.db, rule_id, user.id)
        if not rule:
            raise HTTPException(status_code=404, detail="Recorrência não encontrada")
        return rule

    def create_rule(self, data: RecurringSessionCreate, user: User) -> dict:
        client = SessionRepository.get_client(self.db, data.client_id, user.id)
        if not client:
            raise HTTPException(status_code=404, detail="Cliente não encontrado")
        if not client.ativo:
            client.ativo = True

        fields = data.model_dump()
        if fields["valor"] is None:
            fields["valor"] = client.valor_sessao
        rule = RecurringSession(user_id=user.id, status="ativa", **fields)
        self.db.add(rule)
        self.db.flush()

        sessions = generate_recurring_instances(self.db, rule, user)
        self.db.commit()
        self.db.refresh(rule)
        return {"recurring_session": rule, "generated": len(sessions)}

    def generate(self, rule_id: int, user: User, days_ahead: int = DEFAULT_DAYS_AHEAD) -> dict:
        rule = self.get_rule(rule_id, user)
        if rule.status != "ativa":
            raise HTTPException(status_code=400, detail="Recorrência não está ativa")
        sessions = generate_recurring_instances(self.db, rule, user, days_ahead)
        self.db.commit()
        return {"generated": len(sessions), "dates": [s.data.isoformat() for s in sessions]}

    def update_rule(self, rule_id: int, data: RecurringSessionUpdate, user: User) -> RecurringSession:
        rule = self.get_rule(rule_id, user)
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(rule, key, value)
        if rule.recurrence_end_date and rule.recurrence_end_date < rule.start_date:
            raise HTTPException(status_code=400, detail="A data final deve ser posterior à data inicial")
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, rule_id: int, user: User, delete_future: bool = False) -> dict:
        """Delete a rule; optionally also its future sessions that are still scheduled"""
        rule = self.get_rule(rule_id, user)
        removed = 0
        if delete_future:
            removed = self.repo.delete_future_instances(self.db, rule.id, date.today())
            self.db.flush()
        for session in rule.sessions:
            session.recurring_session_id = None
        self.db.delete(rule)
        self.db.commit()
        return {"message": "Recorrência excluída", "deleted_sessions": removed}
