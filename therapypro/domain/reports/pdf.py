"""
PDF documents: payment receipts and period financial reports.
"""

import io
import logging
from datetime import datetime
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...models import Client, Payment, User
from ...shared.formatters import format_brl, format_date_br
from ...shared.validators import only_digits

logger = logging.getLogger(__name__)

STATUS_LABELS = {"agendada": "Agendadas", "realizada": "Realizadas", "cancelada": "Canceladas", "falta": "Faltas"}


def format_document(value: Optional[str]) -> str:
    """Format CPF/CNPJ digits with the usual punctuation"""
    digits = only_digits(value)
    if len(digits) == 11:
        return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
    if len(digits) == 14:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"
    return value or ""


class _BasePDF:
    """Page setup and shared paragraph styles"""

    def __init__(self):
        self.page_width, self.page_height = A4
        self.margin = 2 * cm
        self.content_width = self.page_width - (2 * self.margin)

        self.brand_color = colors.HexColor("#6366f1")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

        styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            "TPTitle", parent=styles["Heading1"], fontSize=20, textColor=self.brand_color, spaceAfter=12, alignment=1
        )
        self.heading_style = ParagraphStyle(
            "TPHeading", parent=styles["Heading2"], fontSize=13, textColor=self.dark_gray, spaceBefore=16, spaceAfter=8
        )
        self.body_style = ParagraphStyle(
            "TPBody", parent=styles["Normal"], fontSize=10, textColor=self.dark_gray, spaceAfter=6, leading=14
        )
        self.small_style = ParagraphStyle(
            "TPSmall", parent=self.body_style, fontSize=8, textColor=colors.HexColor("#64748b")
        )

    def _document(self, buffer: io.BytesIO, title: str) -> SimpleDocTemplate:
        return SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=title,
        )

    def _info_table(self, rows: list[list[str]]) -> Table:
        table = Table(rows, colWidths=[4.5 * cm, self.content_width - 4.5 * cm])
        table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        return table

    def _grid_table(self, rows: list[list], col_widths: list[float]) -> Table:
        table = Table(rows, colWidths=col_widths, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 9),
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 9),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#cbd5e1")),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
                    ("TOPPADDING", (0, 0), (-1, -1), 5),
                ]
            )
        )
        return table


class ReceiptPDFGenerator(_BasePDF):
    """Receipt for a confirmed session payment"""

    def __init__(self, payment: Payment, client: Client, professional: User):
        super().__init__()
        self.payment = payment
        self.client = client
        self.professional = professional

    def generate(self) -> bytes:
        logger.info(f"📄 Generating receipt PDF for payment {self.payment.id}")
        buffer = io.BytesIO()
        doc = self._document(buffer, f"Recibo - {self.client.nome}")

        professional_name = self.professional.nome or self.professional.email
        amount = format_brl(self.payment.valor)
        paid_on = format_date_br(self.payment.data_pagamento)

        story = [
            Paragraph("RECIBO", self.title_style),
            Paragraph(f"Nº {self.payment.public_id or self.payment.id}", self.small_style),
            Spacer(1, 0.6 * cm),
            Paragraph(
                f"Recebi de <b>{self.client.nome}</b> a importância de <b>{amount}</b> "
                f"referente a atendimento profissional"
                + (f" realizado em {format_date_br(self.payment.session.data)}" if self.payment.session else "")
                + ".",
                self.body_style,
            ),
            Spacer(1, 0.4 * cm),
        ]

        rows = [
            ["Profissional:", professional_name],
            ["Profissão:", self.professional.profissao or "-"],
            ["CPF/CNPJ:", format_document(self.professional.cpf_cnpj) or "-"],
            ["Cliente:", self.client.nome],
            ["Valor:", amount],
            ["Forma de pagamento:", self.payment.metodo_pagamento or "A definir"],
            ["Data do pagamento:", paid_on or "-"],
        ]
        if self.payment.observacoes:
            rows.append(["Observações:", self.payment.observacoes])
        story.append(self._info_table(rows))

        story.append(Spacer(1, 2 * cm))
        story.append(Paragraph("_" * 50, self.body_style))
        story.append(Paragraph(professional_name, self.body_style))
        story.append(Spacer(1, 1 * cm))
        story.append(Paragraph(f"Emitido em {datetime.utcnow().strftime('%d/%m/%Y')} via TherapyPro", self.small_style))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        logger.info(f"✅ Receipt PDF generated ({len(pdf_bytes)} bytes)")
        return pdf_bytes


class FinancialReportPDFGenerator(_BasePDF):
    """Period financial report built from ReportService.financial_report output"""

    def __init__(self, report: dict, professional: User, generated_at: Optional[datetime] = None):
        super().__init__()
        self.report = report
        self.professional = professional
        self.generated_at = generated_at or datetime.utcnow()

    def generate(self) -> bytes:
        logger.info(f"📄 Generating financial report PDF for user {self.professional.id}")
        buffer = io.BytesIO()
        doc = self._document(buffer, "Relatório Financeiro")

        period = self.report["periodo"]
        start = datetime.fromisoformat(period["inicio"]).date()
        end = datetime.fromisoformat(period["fim"]).date()
        revenue = self.report["receita"]
        sessions = self.report["sessoes"]

        story = [
            Paragraph("RELATÓRIO FINANCEIRO", self.title_style),
            self._info_table(
                [
                    ["Profissional:", self.professional.nome or self.professional.email],
                    ["Período:", f"{format_date_br(start)} a {format_date_br(end)}"],
                    ["Gerado em:", self.generated_at.strftime("%d/%m/%Y %H:%M")],
                ]
            ),
            Paragraph("Resumo", self.heading_style),
            self._grid_table(
                [
                    ["Indicador", "Valor"],
                    ["Recebido", format_brl(revenue["recebido"])],
                    ["Pendente", format_brl(revenue["pendente"])],
                    ["Cancelado", format_brl(revenue["cancelado"])],
                    ["Sessões no período", str(sessions["total"])],
                ]
                + [[label, str(sessions["por_status"].get(status, 0))] for status, label in STATUS_LABELS.items()],
                [self.content_width * 0.6, self.content_width * 0.4],
            ),
        ]

        clients = self.report["por_cliente"]
        story.append(Paragraph("Por cliente", self.heading_style))
        if clients:
            rows = [["Cliente", "Sessões", "Recebido", "Pendente", "Cancelado"]]
            for row in clients:
                rows.append(
                    [
                        row["nome"] or "-",
                        str(row["sessoes_realizadas"]),
                        format_brl(row["recebido"]),
                        format_brl(row["pendente"]),
                        format_brl(row["cancelado"]),
                    ]
                )
            width = self.content_width
            story.append(self._grid_table(rows, [width * 0.36, width * 0.12, width * 0.17, width * 0.17, width * 0.18]))
        else:
            story.append(Paragraph("Nenhuma movimentação no período.", self.body_style))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        logger.info(f"✅ Financial report PDF generated ({len(pdf_bytes)} bytes)")
        return pdf_bytes
