"""
Supabase Auth admin calls used by account deletion
"""

import logging
from typing import Optional

import httpx

from ...config import SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)


class SupabaseAuthError(Exception):
    """Supabase Auth is unreachable, misconfigured or rejected an admin call"""


class SupabaseAuthService:
    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        service_role_key: Optional[str] = None,
    ):
        self.url = (url or SUPABASE_URL or "").rstrip("/")
        self.anon_key = anon_key or SUPABASE_ANON_KEY
        self.service_role_key = service_role_key or SUPABASE_SERVICE_ROLE_KEY

    def _require(self, key: Optional[str]):
        if not self.url or not key:
            raise SupabaseAuthError("Supabase Auth não configurado")

    async def verify_password(self, email: str, password: str) -> bool:
        """Password grant against Supabase Auth; False on wrong credentials"""
        self._require(self.anon_key)
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    f"{self.url}/auth/v1/token",
                    params={"grant_type": "password"},
                    json={"email": email, "password": password},
                    headers={"apikey": self.anon_key},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Supabase password check failed: {e}")
            raise SupabaseAuthError("Erro de conexão com o serviço de autenticação") from e

        if response.status_code == 200:
            return True
        if response.status_code in (400, 401):
            return False
        logger.error(f"❌ Supabase password check returned {response.status_code}")
        raise SupabaseAuthError(f"Serviço de autenticação indisponível ({response.status_code})")

    async def delete_user(self, supabase_uid: str) -> None:
        self._require(self.service_role_key)
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.delete(
                    f"{self.url}/auth/v1/admin/users/{supabase_uid}",
                    headers={
                        "apikey": self.service_role_key,
                        "Authorization": f"Bearer {self.service_role_key}",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Supabase user deletion failed: {e}")
            raise SupabaseAuthError("Erro de conexão com o serviço de autenticação") from e

        # Already gone counts as deleted
        if response.status_code >= 400 and response.status_code != 404:
            logger.error(f"❌ Supabase user deletion returned {response.status_code}: {response.text}")
            raise SupabaseAuthError(f"Falha ao remover usuário da autenticação ({response.status_code})")
        logger.info(f"🗑️ Supabase auth user {supabase_uid} deleted")


supabase_auth = SupabaseAuthService()
