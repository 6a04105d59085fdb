from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Window:
    """Half-open datetime range [start, end)."""

    slug: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)


def _next_month(first: datetime) -> datetime:
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def current_month(now: Optional[datetime] = None) -> Window:
    now = now or local_now()
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return Window("this_month", first, _next_month(first))


def previous_month(now: Optional[datetime] = None) -> Window:
    this_first = current_month(now).start
    last_first = (this_first - timedelta(days=1)).replace(day=1)
    return Window("last_month", last_first, this_first)


def last_n_days(days: int, now: Optional[datetime] = None) -> Window:
    if days <= 0:
        raise ValueError("Window length must be positive")
    now = now or local_now()
    # end is exclusive, so nudge it past "now" to keep a transaction stamped now
    return Window(
        f"last_{days}_days", now - timedelta(days=days), now + timedelta(microseconds=1)
    )


def resolve_window(slug: Optional[str], *, now: Optional[datetime] = None) -> Window:
    if not slug or slug == "this_month":
        return current_month(now)
    if slug == "last_month":
        return previous_month(now)
    if slug == "last_7_days":
        return last_n_days(7, now)
    if slug == "last_30_days":
        return last_n_days(30, now)
    raise ValueError(f"Unknown window: {slug}")
