"""Recurring series expansion planning: pure functions, no I/O."""

from collections.abc import Iterable
from datetime import date, timedelta

from src.cm_scheduling.domain.models import RecurringSeries
from src.cm_scheduling.domain.recurrence import RecurrenceRule


def expansion_window(series: RecurringSeries, today: date) -> tuple[date, date] | None:
    """[series_start_date, min(series_end_date, today + max_advance_days)] or None if empty."""
    horizon = today + timedelta(days=series.max_advance_days)
    end = horizon if series.series_end_date is None else min(series.series_end_date, horizon)
    if end < series.series_start_date:
        return None
    return series.series_start_date, end


def plan_instance_dates(
    series: RecurringSeries, today: date, existing_dates: Iterable[date]
) -> list[date]:
    """Candidate dates in the window that do not yet hold an instance."""
    window = expansion_window(series, today)
    if window is None:
        return []
    rule = RecurrenceRule.parse(series.recurrence_rule)
    candidates = rule.occurrences(window[0], window[1], anchor=series.series_start_date)
    existing = set(existing_dates)
    return [d for d in candidates if d not in existing]
