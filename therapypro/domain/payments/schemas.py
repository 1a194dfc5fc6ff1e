"""Payment domain schemas"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

PaymentStatus = Literal["pendente", "pago", "cancelado"]


class PaymentCreate(BaseModel):
    client_id: int
    session_id: Optional[int] = None
    valor: int = Field(ge=0)  # cents
    status: PaymentStatus = "pendente"
    metodo_pagamento: str = "A definir"
    data_pagamento: Optional[date] = None
    data_vencimento: Optional[date] = None
    observacoes: Optional[str] = None


class PaymentUpdate(BaseModel):
    valor: Optional[int] = Field(default=None, ge=0)
    status: Optional[PaymentStatus] = None
    metodo_pagamento: Optional[str] = None
    data_pagamento: Optional[date] = None
    data_vencimento: Optional[date] = None
    observacoes: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: Optional[str] = None
    client_id: int
    session_id: Optional[int] = None
    package_id: Optional[int] = None
    valor: int
    status: str
    metodo_pagamento: str
    data_pagamento: Optional[date] = None
    data_vencimento: Optional[date] = None
    observacoes: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentSummary(BaseModel):
    total_recebido: int
    total_pendente: int
    total_cancelado: int
    quantidade_pagos: int
    quantidade_pendentes: int
    quantidade_cancelados: int
