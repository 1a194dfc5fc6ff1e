"""Client repository - Database operations for clients"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Client, RegistrationToken


class ClientRepository:
    """Repository for client database operations"""

    @staticmethod
    def search_clients(
        db: Session,
        user_id: int,
        only_active: bool = False,
        search: Optional[str] = None,
    ) -> list[Client]:
        """Clients of a user, optionally only active ones or matching a name/email term"""
        query = db.query(Client).filter(Client.user_id == user_id)
        if only_active:
            query = query.filter(Client.ativo.is_(True))
        if search and search.strip():
            term = f"%{search.strip()}%"
            query = query.filter(or_(Client.nome.ilike(term), Client.email.ilike(term)))
        return query.order_by(Client.nome.asc()).all()

    @staticmethod
    def get_client_by_id(db: Session, client_id: int, user_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.user_id == user_id).first()

    @staticmethod
    def create_client(db: Session, user_id: int, **kwargs) -> Client:
        client = Client(user_id=user_id, **kwargs)
        db.add(client)
        db.commit()
        db.refresh(client)
        return client

    @staticmethod
    def update_client(db: Session, client: Client, **kwargs) -> Client:
        for key, value in kwargs.items():
            setattr(client, key, value)
        db.commit()
        db.refresh(client)
        return client

    @staticmethod
    def delete_client(db: Session, client: Client) -> None:
        """Delete a client; sessions, payments, packages and recurrence rules cascade"""
        db.delete(client)
        db.commit()

    @staticmethod
    def batch_delete_clients(db: Session, client_ids: list[int], user_id: int) -> int:
        clients = db.query(Client).filter(Client.id.in_(client_ids), Client.user_id == user_id).all()
        # ORM deletes so relationship cascades run
        for client in clients:
            db.delete(client)
        db.commit()
        return len(clients)

    @staticmethod
    def purge_expired_tokens(db: Session, user_id: int, now: datetime) -> int:
        return (
            db.query(RegistrationToken)
            .filter(RegistrationToken.user_id == user_id, RegistrationToken.expires_at < now)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def create_registration_token(db: Session, user_id: int, token: str, expires_at: datetime) -> RegistrationToken:
        record = RegistrationToken(user_id=user_id, token=token, expires_at=expires_at)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def get_registration_token(db: Session, token: str, for_update: bool = False) -> Optional[RegistrationToken]:
        query = db.query(RegistrationToken).filter(RegistrationToken.token == token)
        if for_update:
            query = query.with_for_update()
        return query.first()
