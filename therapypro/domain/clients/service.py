"""Client service - Business logic for client operations"""

import csv
import logging
import re
import secrets
from datetime import datetime, timedelta
from io import StringIO
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...config import FRONTEND_URL
from ...models import Client, RegistrationToken, User
from ...plan_limits import can_add_client
from ...shared.formatters import cents_to_reais
from ..notifications.service import create_notification
from .repository import ClientRepository
from .schemas import ClientCreate, ClientUpdate, PublicClientRegistration

logger = logging.getLogger(__name__)

REGISTRATION_TOKEN_TTL = timedelta(days=30)
TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")
TOKEN_ERRORS = {
    "not_found": "Link inválido ou expirado",
    "expired": "Link inválido ou expirado",
    "used": "Este link já foi utilizado.",
}


class ClientService:
    """Service layer for client business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ClientRepository()

    def get_clients(self, user: User, only_active: bool = False, search: Optional[str] = None) -> list[Client]:
        return self.repo.search_clients(self.db, user.id, only_active, search)

    def get_client(self, client_id: int, user: User) -> Client:
        """Get a client owned by the user; anything else is a 404"""
        client = self.repo.get_client_by_id(self.db, client_id, user.id)
        if not client:
            raise HTTPException(status_code=404, detail="Cliente não encontrado")
        return client

    def create_client(self, data: ClientCreate, user: User) -> Client:
        logger.info(f"📥 Creating client for user_id: {user.id}")

        can_add, error_message = can_add_client(user, self.db)
        if not can_add:
            logger.warning(f"⚠️ User {user.id} reached client limit: {error_message}")
            raise HTTPException(status_code=403, detail=error_message)

        return self.repo.create_client(self.db, user.id, **data.model_dump())

    def update_client(self, client_id: int, data: ClientUpdate, user: User) -> Client:
        client = self.get_client(client_id, user)
        updates = data.model_dump(exclude_unset=True)
        if "nome" in updates and not (updates["nome"] or "").strip():
            raise HTTPException(status_code=400, detail="Nome é obrigatório")
        return self.repo.update_client(self.db, client, **updates)

    def delete_client(self, client_id: int, user: User) -> dict:
        client = self.get_client(client_id, user)
        self.repo.delete_client(self.db, client)
        logger.info(f"🗑️ User {user.id} deleted client {client_id}")
        return {"message": "Cliente excluído"}

    def batch_delete_clients(self, client_ids: list[int], user: User) -> dict:
        if not client_ids:
            raise HTTPException(status_code=400, detail="Nenhum cliente informado")

        deleted_count = self.repo.batch_delete_clients(self.db, client_ids, user.id)
        logger.info(f"✅ User {user.id} deleted {deleted_count} clients")
        return {
            "message": f"{deleted_count} cliente(s) excluído(s) com sucesso",
            "deletedCount": deleted_count,
        }

    # ------------------------------------------------------------------
    # Self-registration links
    # ------------------------------------------------------------------

    def generate_registration_token(self, user: User) -> dict:
        now = datetime.utcnow()
        purged = self.repo.purge_expired_tokens(self.db, user.id, now)
        if purged:
            logger.info(f"🧹 Removed {purged} expired registration links of user {user.id}")

        record = self.repo.create_registration_token(
            self.db, user.id, secrets.token_hex(32), now + REGISTRATION_TOKEN_TTL
        )
        logger.info(f"🔗 Registration link created by user {user.id}")
        return {
            "success": True,
            "token": record.token,
            "registrationUrl": f"{FRONTEND_URL}/register/{record.token}",
            "expiresAt": record.expires_at,
            "professionalName": user.nome or "Profissional",
        }

    def _token_state(self, record: Optional[RegistrationToken], now: datetime) -> str:
        if not record:
            return "not_found"
        if record.used:
            return "used"
        if record.expires_at <= now:
            return "expired"
        return "valid"

    def validate_registration_token(self, token: str) -> dict:
        """Public check of a link before the form is shown"""
        record = self.repo.get_registration_token(self.db, token) if TOKEN_PATTERN.match(token) else None
        state = self._token_state(record, datetime.utcnow())
        if state != "valid":
            return {"status": state, "error": TOKEN_ERRORS[state]}

        owner = self.db.get(User, record.user_id)
        return {
            "status": "valid",
            "professionalName": (owner.nome if owner else None) or "Profissional",
            "expiresAt": record.expires_at,
        }

    def register_via_token(self, token: str, data: PublicClientRegistration) -> dict:
        """Create a client for the link's owner and burn the link"""
        if not TOKEN_PATTERN.match(token):
            raise HTTPException(status_code=400, detail=TOKEN_ERRORS["not_found"])

        record = self.repo.get_registration_token(self.db, token, for_update=True)
        state = self._token_state(record, datetime.utcnow())
        if state != "valid":
            raise HTTPException(status_code=400, detail=TOKEN_ERRORS[state])

        owner = self.db.get(User, record.user_id)
        if not owner or not owner.is_active:
            raise HTTPException(status_code=400, detail=TOKEN_ERRORS["not_found"])

        can_add, error_message = can_add_client(owner, self.db)
        if not can_add:
            logger.warning(f"⚠️ Self-registration blocked for user {owner.id}: {error_message}")
            raise HTTPException(status_code=403, detail="Este profissional não pode receber novos cadastros no momento.")

        client = Client(user_id=owner.id, nome=data.nome, email=data.email, telefone=data.telefone, ativo=True)
        self.db.add(client)
        self.db.flush()

        record.used = True
        record.used_at = datetime.utcnow()
        record.client_id = client.id
        create_notification(
            self.db,
            owner.id,
            "Novo cliente cadastrado",
            f"{client.nome} concluiu o cadastro pelo seu link.",
            commit=False,
        )
        self.db.commit()
        logger.info(f"✅ Client {client.id} self-registered for user {owner.id}")
        return {
            "success": True,
            "message": "Cadastro realizado com sucesso",
            "professionalName": owner.nome or "Profissional",
            "clientId": client.id,
        }

    def export_clients_csv(
        self,
        user: User,
        only_active: bool = False,
        search: Optional[str] = None,
    ) -> StreamingResponse:
        """Export clients as CSV (clinical notes are never exported)"""
        try:
            logger.info(f"📊 CSV Export requested by user {user.id} ({user.email})")

            clients = self.repo.search_clients(self.db, user.id, only_active, search)

            output = StringIO()
            writer = csv.writer(output)
            writer.writerow(["ID", "Nome", "Email", "Telefone", "Valor da Sessão (R$)", "Ativo", "Criado em"])
            for client in clients:
                writer.writerow(
                    [
                        client.id,
                        client.nome or "",
                        client.email or "",
                        client.telefone or "",
                        f"{cents_to_reais(client.valor_sessao):.2f}" if client.valor_sessao is not None else "",
                        "Sim" if client.ativo else "Não",
                        client.created_at.strftime("%d/%m/%Y %H:%M") if client.created_at else "",
                    ]
                )

            output.seek(0)
            filename = f"clientes_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
            logger.info(f"✅ CSV export successful: {filename} ({len(clients)} clients)")

            return StreamingResponse(
                iter([output.getvalue()]),
                media_type="text/csv",
                headers={
                    "Content-Disposition": f"attachment; filename={filename}",
                    "Cache-Control": "no-cache",
                },
            )

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"❌ CSV export failed for user {user.id}: {str(e)}")
            logger.exception(e)
            raise HTTPException(status_code=500, detail="Falha ao exportar clientes. Tente novamente.") from e
