"""Display helpers for money and dates in pt-BR"""

from datetime import date, datetime
from typing import Optional


def format_brl(cents: Optional[int]) -> str:
    """Format integer cents as Brazilian reais, e.g. 123456 -> 'R$ 1.234,56'"""
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    reais, centavos = divmod(abs(int(cents)), 100)
    reais_str = f"{reais:,}".replace(",", ".")
    return f"{sign}R$ {reais_str},{centavos:02d}"


def cents_to_reais(cents: Optional[int]) -> float:
    return round((cents or 0) / 100, 2)


def format_date_br(value: Optional[date]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%d/%m/%Y")
