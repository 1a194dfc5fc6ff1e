from datetime import date

import pytest

from therapypro.domain.sessions.recurrence import occurrence, occurrence_dates


def test_weekly_dates_inside_default_window():
    dates = occurrence_dates(date(2025, 3, 3), "semanal", today=date(2025, 3, 3))
    assert dates == [date(2025, 3, 3), date(2025, 3, 10), date(2025, 3, 17), date(2025, 3, 24), date(2025, 3, 31)]


def test_biweekly_with_interval():
    dates = occurrence_dates(date(2025, 1, 1), "quinzenal", interval=2, days_ahead=90, today=date(2025, 1, 1))
    assert dates == [date(2025, 1, 1), date(2025, 1, 29), date(2025, 2, 26), date(2025, 3, 26)]


def test_monthly_from_31st_keeps_anchor():
    start = date(2025, 1, 31)
    assert occurrence(start, "mensal", 1, 1) == date(2025, 2, 28)
    assert occurrence(start, "mensal", 1, 2) == date(2025, 3, 31)
    assert occurrence(start, "mensal", 1, 3) == date(2025, 4, 30)


def test_end_date_bounds_window():
    dates = occurrence_dates(
        date(2025, 5, 1), "diaria", end_date=date(2025, 5, 4), days_ahead=365, today=date(2025, 5, 1)
    )
    assert dates == [date(2025, 5, 1), date(2025, 5, 2), date(2025, 5, 3), date(2025, 5, 4)]


def test_count_limits_occurrences_from_start_date():
    # 5 occurrences in total; the first two are already in the past
    dates = occurrence_dates(
        date(2025, 6, 2), "semanal", count=5, end_date=date(2025, 12, 31), today=date(2025, 6, 16)
    )
    assert dates == [date(2025, 6, 16), date(2025, 6, 23), date(2025, 6, 30)]


def test_future_start_window_measured_from_start():
    dates = occurrence_dates(date(2025, 9, 1), "semanal", days_ahead=14, today=date(2025, 8, 1))
    assert dates == [date(2025, 9, 1), date(2025, 9, 8), date(2025, 9, 15)]


def test_past_start_window_measured_from_today():
    dates = occurrence_dates(date(2025, 1, 1), "semanal", today=date(2025, 3, 3))
    assert dates == [date(2025, 3, 5), date(2025, 3, 12), date(2025, 3, 19), date(2025, 3, 26), date(2025, 4, 2)]


def test_zero_interval_treated_as_one():
    dates = occurrence_dates(date(2025, 2, 1), "diaria", interval=0, days_ahead=2, today=date(2025, 2, 1))
    assert dates == [date(2025, 2, 1), date(2025, 2, 2), date(2025, 2, 3)]


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        occurrence(date(2025, 1, 1), "anual", 1, 1)
