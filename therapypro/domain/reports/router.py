"""Report router - financial reports, CSV export and PDF documents"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .service import ReportService

router = APIRouter(prefix="/reports", tags=["Reports"])


def get_report_service(db: Session = Depends(get_db)) -> ReportService:
    return ReportService(db)


def _pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/financial")
async def financial_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    service: ReportService = Depends(get_report_service),
):
    """Sessions and revenue for a period (defaults to the current month)"""
    return service.financial_report(current_user, start_date, end_date)


@router.get("/payments.csv")
async def export_payments_csv(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    service: ReportService = Depends(get_report_service),
):
    return service.export_payments_csv(current_user, start_date, end_date)


@router.get("/financial.pdf")
async def financial_report_pdf(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    service: ReportService = Depends(get_report_service),
):
    """Premium only"""
    content = service.period_report_pdf(current_user, start_date, end_date)
    return _pdf_response(content, "relatorio_financeiro.pdf")


@router.get("/receipts/{payment_id}")
async def payment_receipt(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    service: ReportService = Depends(get_report_service),
):
    content = service.receipt_pdf(payment_id, current_user)
    return _pdf_response(content, f"recibo_{payment_id}.pdf")
