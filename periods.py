from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

END_OF_DAY = time(23, 59, 59, 999999)
TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class Window:
    slug: str
    start: datetime
    end: datetime

    @property
    def length(self) -> timedelta:
        return self.end - self.start + TICK


def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, time.min), datetime.combine(end, END_OF_DAY)


def _month_end(day: date) -> date:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def resolve_window(
    duration: Optional[str],
    *,
    first_activity: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Window:
    """Turn a duration descriptor into a concrete inclusive window.

    Accepts ``today``, ``thisWeek``, ``thisMonth``, ``thisYear``, ``all`` or a
    custom ``YYYY-MM-DD,YYYY-MM-DD`` range. Unknown or missing descriptors
    fall back to the current month.
    """
    now = now or datetime.now()
    today = now.date()

    if duration and "," in duration:
        start_raw, _, end_raw = duration.partition(",")
        try:
            start_date = date.fromisoformat(start_raw.strip())
            end_date = date.fromisoformat(end_raw.strip())
        except ValueError as exc:
            raise ValueError("Invalid custom date range format or order.") from exc
        if start_date >= end_date:
            raise ValueError("Invalid custom date range format or order.")
        return Window("custom", *_day_bounds(start_date, end_date))

    if duration == "today":
        return Window("today", *_day_bounds(today, today))
    if duration == "thisWeek":
        # weeks start on Sunday
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        return Window("thisWeek", *_day_bounds(week_start, week_start + timedelta(days=6)))
    if duration == "thisYear":
        return Window(
            "thisYear", *_day_bounds(date(today.year, 1, 1), date(today.year, 12, 31))
        )
    if duration == "all":
        anchor = min(first_activity.date(), today) if first_activity else today
        return Window("all", *_day_bounds(date(anchor.year, 1, 1), today))

    first = today.replace(day=1)
    return Window("thisMonth", *_day_bounds(first, _month_end(first)))


def previous_window(window: Window) -> Window:
    """The equal-length window ending immediately before ``window`` starts."""
    length = window.length
    return Window(
        f"previous_{window.slug}",
        window.start - length,
        window.start - TICK,
    )
