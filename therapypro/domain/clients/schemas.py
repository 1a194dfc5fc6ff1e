"""Client domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ...shared.validators import validate_br_phone


class ClientBase(BaseModel):
    email: Optional[EmailStr] = None
    telefone: Optional[str] = None
    dados_clinicos: Optional[str] = None
    historico: Optional[str] = None
    valor_sessao: Optional[int] = Field(default=None, ge=0)  # cents

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_br_phone(v)
        return v or None


class ClientCreate(ClientBase):
    nome: str = Field(min_length=1, max_length=255)
    ativo: bool = True

    @field_validator("nome")
    @classmethod
    def strip_nome(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Nome é obrigatório")
        return v


class ClientUpdate(ClientBase):
    nome: Optional[str] = Field(default=None, min_length=1, max_length=255)
    ativo: Optional[bool] = None


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: Optional[str] = None
    nome: str
    email: Optional[str] = None
    telefone: Optional[str] = None
    dados_clinicos: Optional[str] = None
    historico: Optional[str] = None
    valor_sessao: Optional[int] = None
    ativo: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BatchDeleteRequest(BaseModel):
    client_ids: list[int]


class RegistrationTokenResponse(BaseModel):
    success: bool = True
    token: str
    registrationUrl: str
    expiresAt: datetime
    professionalName: str


class PublicClientRegistration(BaseModel):
    """What a client may fill in on the shared registration link"""

    nome: str = Field(min_length=1, max_length=255)
    email: EmailStr
    telefone: Optional[str] = None

    @field_validator("nome")
    @classmethod
    def strip_nome(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Nome é obrigatório")
        return v

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_br_phone(v)
        return v or None
