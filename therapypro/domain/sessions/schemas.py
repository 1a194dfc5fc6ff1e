"""Session domain schemas - sessions, packages and recurrence rules"""

from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SessionStatus = Literal["agendada", "realizada", "cancelada", "falta"]
PackageStatus = Literal["ativo", "concluido", "cancelado"]
RecurrenceType = Literal["diaria", "semanal", "quinzenal", "mensal"]
RecurrenceStatus = Literal["ativa", "pausada", "cancelada"]


# ============================================================================
# SESSIONS
# ============================================================================


class SessionCreate(BaseModel):
    client_id: int
    data: date
    horario: time
    status: SessionStatus = "agendada"
    valor: Optional[int] = Field(default=None, ge=0)  # cents; defaults to the client's valor_sessao
    anotacoes: Optional[str] = None
    package_id: Optional[int] = None
    metodo_pagamento: Optional[str] = None


class SessionUpdate(BaseModel):
    data: Optional[date] = None
    horario: Optional[time] = None
    status: Optional[SessionStatus] = None
    valor: Optional[int] = Field(default=None, ge=0)
    anotacoes: Optional[str] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: Optional[str] = None
    client_id: int
    data: date
    horario: time
    status: str
    valor: Optional[int] = None
    anotacoes: Optional[str] = None
    recurring_session_id: Optional[int] = None
    package_id: Optional[int] = None
    created_at: Optional[datetime] = None


# ============================================================================
# PACKAGES
# ============================================================================


class PackageCreate(BaseModel):
    client_id: int
    nome: str = Field(min_length=1, max_length=255)
    total_sessoes: int = Field(ge=1)
    valor_total: int = Field(ge=0)  # cents
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None
    metodo_pagamento: Optional[str] = None


class PackageUpdate(BaseModel):
    nome: Optional[str] = Field(default=None, min_length=1, max_length=255)
    total_sessoes: Optional[int] = Field(default=None, ge=1)
    valor_total: Optional[int] = Field(default=None, ge=0)
    status: Optional[PackageStatus] = None
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    nome: str
    total_sessoes: int
    sessoes_consumidas: int
    valor_total: int
    status: str
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None
    created_at: Optional[datetime] = None


# ============================================================================
# RECURRENCE RULES
# ============================================================================


class RecurringSessionCreate(BaseModel):
    client_id: int
    horario: time
    recurrence_type: RecurrenceType
    recurrence_interval: int = Field(default=1, ge=1)
    start_date: date
    recurrence_end_date: Optional[date] = None
    recurrence_count: Optional[int] = Field(default=None, ge=1)
    valor: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_end_date(self):
        if self.recurrence_end_date and self.recurrence_end_date < self.start_date:
            raise ValueError("A data final deve ser posterior à data inicial")
        return self


class RecurringSessionUpdate(BaseModel):
    horario: Optional[time] = None
    recurrence_interval: Optional[int] = Field(default=None, ge=1)
    recurrence_end_date: Optional[date] = None
    recurrence_count: Optional[int] = Field(default=None, ge=1)
    valor: Optional[int] = Field(default=None, ge=0)
    status: Optional[RecurrenceStatus] = None


class RecurringSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    horario: time
    recurrence_type: str
    recurrence_interval: int
    start_date: date
    recurrence_end_date: Optional[date] = None
    recurrence_count: Optional[int] = None
    valor: Optional[int] = None
    status: str
    created_at: Optional[datetime] = None
