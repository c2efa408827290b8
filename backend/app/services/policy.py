"""Calendar windows and point arithmetic shared by the gift services.

Every function takes ``now`` explicitly (naive, in the season timezone) so the
callers and tests decide what "today" is.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from app.core.config import settings


MAX_SCORE = 365
CENTS_PER_POINT = 100
SECONDS_PER_DAY = 60 * 60 * 24


@dataclass(frozen=True)
class ChristmasWindow:
    year: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    days_until_start: int


def local_now() -> datetime:
    return datetime.now(ZoneInfo(settings.season_timezone)).replace(tzinfo=None)


def christmas_window_bounds(year: int) -> tuple[datetime, datetime]:
    start = datetime(year, 12, settings.christmas_window_start_day)
    end = datetime(year, 12, settings.christmas_window_end_day, 23, 59, 59, 999999)
    return start, end


def is_christmas_window(now: datetime | None = None) -> bool:
    now = now or local_now()
    start, end = christmas_window_bounds(now.year)
    return start <= now <= end


def get_christmas_window(year: int | None = None, now: datetime | None = None) -> ChristmasWindow:
    now = now or local_now()
    target_year = year or now.year
    start, end = christmas_window_bounds(target_year)
    seconds_until = (start - now).total_seconds()
    return ChristmasWindow(
        year=target_year,
        start_date=start,
        end_date=end,
        is_active=start <= now <= end,
        days_until_start=max(0, math.ceil(seconds_until / SECONDS_PER_DAY)),
    )


def christmas_day_end(year: int) -> datetime:
    return datetime(year, 12, 25, 23, 59, 59, 999999)


def is_after_christmas(now: datetime) -> bool:
    return now > christmas_day_end(now.year)


def days_until_christmas(now: datetime) -> int:
    seconds = (christmas_day_end(now.year) - now).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


def calendar_year_bounds(year: int) -> tuple[datetime, datetime]:
    """Half-open [Jan 1, next Jan 1) range used for yearly quotas."""
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)


def magic_points_cost(price: Decimal | float | None) -> int:
    """Magic points are 1:1 with dollars, rounded up."""
    if not price:
        return 0
    return math.ceil(Decimal(str(price)))


def neighbor_points(neighbor_balance_cents: int) -> int:
    return max(0, neighbor_balance_cents) // CENTS_PER_POINT


def available_points(score365: int, neighbor_balance_cents: int) -> int:
    return score365 + neighbor_points(neighbor_balance_cents)


def vote_day(now: datetime) -> date:
    return now.date()
