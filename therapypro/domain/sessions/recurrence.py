"""
Date arithmetic for recurring sessions.

Occurrences are always computed from the rule's ``start_date`` anchor, so a
monthly rule started on the 31st lands on the last day of shorter months and
returns to the 31st afterwards.
"""

from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

DEFAULT_DAYS_AHEAD = 30
DEFAULT_MAX_COUNT = 100

DAY_STEPS = {"diaria": 1, "semanal": 7, "quinzenal": 14}


def occurrence(start: date, recurrence_type: str, interval: int, index: int) -> date:
    """Date of the ``index``-th occurrence (0 is the start date)"""
    if recurrence_type == "mensal":
        return start + relativedelta(months=interval * index)
    try:
        step = DAY_STEPS[recurrence_type]
    except KeyError:
        raise ValueError(f"Tipo de recorrência inválido: {recurrence_type}") from None
    return start + timedelta(days=step * interval * index)


def occurrence_dates(
    start: date,
    recurrence_type: str,
    interval: int = 1,
    end_date: Optional[date] = None,
    count: Optional[int] = None,
    days_ahead: int = DEFAULT_DAYS_AHEAD,
    today: Optional[date] = None,
) -> list[date]:
    """
    Every occurrence of a rule that falls inside the generation window.

    The window ends at ``end_date`` when the rule has one, otherwise
    ``days_ahead`` days after the later of ``start`` and ``today``. At most
    ``count`` (default 100) occurrences exist for a rule, counted from the
    start date; occurrences before ``today`` are counted but not returned.
    """
    interval = max(1, interval or 1)
    max_count = count or DEFAULT_MAX_COUNT
    today = today or date.today()
    horizon = end_date or (max(start, today) + timedelta(days=days_ahead))

    dates = []
    for index in range(max_count):
        current = occurrence(start, recurrence_type, interval, index)
        if current > horizon:
            break
        if current >= today:
            dates.append(current)
    return dates
