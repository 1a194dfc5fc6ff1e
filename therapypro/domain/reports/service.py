"""Report service - financial reports and payment exports"""

import csv
import logging
from collections import OrderedDict
from datetime import date, datetime
from io import StringIO
from typing import Optional

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session as DBSession

from ...models import Client, Payment, Session, User
from ...plan_limits import has_feature
from ...shared.formatters import cents_to_reais, format_date_br
from ..payments.repository import PERIOD_DATE

logger = logging.getLogger(__name__)

SESSION_STATUSES = ("agendada", "realizada", "cancelada", "falta")
PAYMENT_COLUMNS = {"pago": "recebido", "pendente": "pendente", "cancelado": "cancelado"}


def _client_row(client_id: int, names: dict) -> dict:
    return {
        "client_id": client_id,
        "nome": names.get(client_id, ""),
        "recebido": 0,
        "pendente": 0,
        "cancelado": 0,
        "pagamentos": 0,
        "sessoes_realizadas": 0,
    }


def default_period(start_date: Optional[date], end_date: Optional[date]) -> tuple[date, date]:
    """Missing bounds default to the current month"""
    today = date.today()
    start = start_date or today.replace(day=1)
    end = end_date or today
    if end < start:
        raise HTTPException(status_code=400, detail="Período inválido: data final anterior à inicial")
    return start, end


class ReportService:
    def __init__(self, db: DBSession):
        self.db = db

    def _period_payments(self, user: User, start: date, end: date) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user.id, PERIOD_DATE >= start, PERIOD_DATE <= end)
            .order_by(PERIOD_DATE.asc(), Payment.id.asc())
            .all()
        )

    def financial_report(self, user: User, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        """
        Sessions by status, revenue received/pending/cancelled and a
        per-client breakdown for a period.
        """
        start, end = default_period(start_date, end_date)

        session_rows = (
            self.db.query(Session.status, func.count(Session.id))
            .filter(Session.user_id == user.id, Session.data >= start, Session.data <= end)
            .group_by(Session.status)
            .all()
        )
        sessions_by_status = {status: 0 for status in SESSION_STATUSES}
        sessions_by_status.update({status: count for status, count in session_rows})

        clients = {
            c.id: c.nome for c in self.db.query(Client.id, Client.nome).filter(Client.user_id == user.id).all()
        }
        totals = {"pago": 0, "pendente": 0, "cancelado": 0}
        per_client: "OrderedDict[int, dict]" = OrderedDict()

        for payment in self._period_payments(user, start, end):
            totals[payment.status] = totals.get(payment.status, 0) + payment.valor
            row = per_client.setdefault(payment.client_id, _client_row(payment.client_id, clients))
            if payment.status in PAYMENT_COLUMNS:
                row[PAYMENT_COLUMNS[payment.status]] += payment.valor
            row["pagamentos"] += 1

        client_sessions = (
            self.db.query(Session.client_id, func.count(Session.id))
            .filter(
                Session.user_id == user.id,
                Session.data >= start,
                Session.data <= end,
                Session.status == "realizada",
            )
            .group_by(Session.client_id)
            .all()
        )
        for client_id, count in client_sessions:
            per_client.setdefault(client_id, _client_row(client_id, clients))["sessoes_realizadas"] = count

        breakdown = sorted(per_client.values(), key=lambda r: (-r["recebido"], r["nome"]))

        return {
            "periodo": {"inicio": start.isoformat(), "fim": end.isoformat()},
            "sessoes": {"total": sum(sessions_by_status.values()), "por_status": sessions_by_status},
            "receita": {
                "recebido": totals["pago"],
                "pendente": totals["pendente"],
                "cancelado": totals["cancelado"],
            },
            "por_cliente": breakdown,
        }

    def export_payments_csv(
        self, user: User, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> StreamingResponse:
        start, end = default_period(start_date, end_date)
        try:
            payments = self._period_payments(user, start, end)
            clients = {
                c.id: c.nome for c in self.db.query(Client.id, Client.nome).filter(Client.user_id == user.id).all()
            }

            output = StringIO()
            writer = csv.writer(output)
            writer.writerow(
                ["ID", "Cliente", "Valor (R$)", "Status", "Método", "Data do Pagamento", "Vencimento", "Observações"]
            )
            for payment in payments:
                writer.writerow(
                    [
                        payment.id,
                        clients.get(payment.client_id, ""),
                        f"{cents_to_reais(payment.valor):.2f}",
                        payment.status,
                        payment.metodo_pagamento or "",
                        format_date_br(payment.data_pagamento),
                        format_date_br(payment.data_vencimento),
                        payment.observacoes or "",
                    ]
                )

            output.seek(0)
            filename = f"pagamentos_{start.isoformat()}_{end.isoformat()}.csv"
            logger.info(f"✅ Payments CSV export for user {user.id}: {len(payments)} rows")
            return StreamingResponse(
                iter([output.getvalue()]),
                media_type="text/csv",
                headers={"Content-Disposition": f"attachment; filename={filename}", "Cache-Control": "no-cache"},
            )
        except Exception as e:
            logger.error(f"❌ Payments CSV export failed for user {user.id}: {e}")
            raise HTTPException(status_code=500, detail="Falha ao exportar pagamentos") from e

    def receipt_pdf(self, payment_id: int, user: User) -> bytes:
        from .pdf import ReceiptPDFGenerator

        payment = self.db.query(Payment).filter(Payment.id == payment_id, Payment.user_id == user.id).first()
        if not payment:
            raise HTTPException(status_code=404, detail="Pagamento não encontrado")
        if payment.status != "pago":
            raise HTTPException(status_code=400, detail="Recibo disponível apenas para pagamentos confirmados")

        client = self.db.query(Client).filter(Client.id == payment.client_id).first()
        return ReceiptPDFGenerator(payment, client, user).generate()

    def period_report_pdf(self, user: User, start_date: Optional[date] = None, end_date: Optional[date] = None) -> bytes:
        from .pdf import FinancialReportPDFGenerator

        if not has_feature(user, "hasPDFReports"):
            raise HTTPException(
                status_code=403,
                detail="Relatórios em PDF estão disponíveis apenas no plano Premium. Faça upgrade para acessar.",
            )
        report = self.financial_report(user, start_date, end_date)
        return FinancialReportPDFGenerator(report, user, generated_at=datetime.utcnow()).generate()
