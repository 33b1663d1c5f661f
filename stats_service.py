from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

import data_access
from algorithms import UnitFormatter
from cache import ClientCache
from settings_schema import SettingsSchema
from store import RemoteStore

TIME_RANGES = ("7days", "8weeks", "12months")


def days_to_fetch(time_range: str) -> int:
    if time_range not in data_access.RANGE_DAYS:
        raise ValueError(f"unknown time range: {time_range}")
    return data_access.RANGE_DAYS[time_range]


def _row_date(value) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def _month_start(year: int, month: int) -> datetime.date:
    # month may fall outside 1..12 while stepping backwards
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime.date(year, month, 1)


def _buckets(
    time_range: str, today: datetime.date, week_start: int
) -> List[tuple[datetime.date, datetime.date, str]]:
    """Return ``(first_day, last_day, label)`` per bucket, oldest first."""
    if time_range == "7days":
        days = [today - datetime.timedelta(days=n) for n in range(6, -1, -1)]
        return [(d, d, f"{d:%b} {d.day}") for d in days]
    if time_range == "8weeks":
        current = today - datetime.timedelta(days=(today.weekday() - week_start) % 7)
        starts = [current - datetime.timedelta(weeks=n) for n in range(7, -1, -1)]
        return [
            (s, s + datetime.timedelta(days=6), f"{s:%b} {s.day}") for s in starts
        ]
    if time_range == "12months":
        result = []
        for n in range(11, -1, -1):
            start = _month_start(today.year, today.month - n)
            end = _month_start(start.year, start.month + 1) - datetime.timedelta(days=1)
            result.append((start, end, f"{start:%b %Y}"))
        return result
    raise ValueError(f"unknown time range: {time_range}")


def format_volume_data(
    rows: Iterable[Dict],
    time_range: str,
    today: datetime.date,
    week_start: int = 0,
) -> List[Dict[str, object]]:
    """Sum ``{date, volume}`` rows into a fixed-length chronological series.

    ``7days`` yields seven daily buckets ending ``today``, ``8weeks`` eight weeks
    starting on ``week_start`` (0 = Monday) and ``12months`` twelve calendar
    months ending with the current one. Empty buckets are 0 and rows outside
    every bucket are dropped.
    """
    buckets = _buckets(time_range, today, week_start)
    totals = [0.0] * len(buckets)
    first, last = buckets[0][0], buckets[-1][1]
    for row in rows:
        day = _row_date(row["date"])
        if day < first or day > last:
            continue
        for idx, (start, end, _label) in enumerate(buckets):
            if start <= day <= end:
                totals[idx] += float(row.get("volume") or 0)
                break
    return [
        {"date": label, "start": start.isoformat(), "volume": round(total, 2)}
        for (start, _end, label), total in zip(buckets, totals)
    ]


class StatisticsService:
    """Volume charts and profile totals read through the client cache."""

    def __init__(
        self,
        cache: ClientCache,
        store: RemoteStore,
        settings: SettingsSchema | None = None,
    ) -> None:
        self.cache = cache
        self.store = store
        self.settings = settings or SettingsSchema()

    def _today(self) -> datetime.date:
        return datetime.datetime.now(ZoneInfo(self.settings.timezone)).date()

    async def volume_series(
        self,
        user_id: str,
        time_range: str = "7days",
        today: Optional[datetime.date] = None,
    ) -> List[Dict[str, object]]:
        today = today or self._today()
        days_to_fetch(time_range)
        rows = await self.cache.get(
            ("volume", user_id, time_range),
            lambda: data_access.fetch_volume_data(self.store, user_id, time_range, today),
        )
        return format_volume_data(rows, time_range, today, self.settings.week_start)

    async def dashboard(
        self,
        user_id: str,
        time_range: str = "7days",
        today: Optional[datetime.date] = None,
    ) -> Dict[str, object]:
        """Return lifetime totals and the chart series in the user's units."""
        profile = await self.cache.get(
            ("profile", user_id),
            lambda: data_access.fetch_profile(self.store, user_id),
        )
        series = await self.volume_series(user_id, time_range, today)
        units = UnitFormatter(profile.get("unit_preference") or self.settings.unit_preference)
        return {
            "unit": units.unit_label,
            "total_volume": round(units.convert_from_kg(profile.get("total_volume") or 0.0), 2),
            "total_workouts": profile.get("total_workouts") or 0,
            "time_range": time_range,
            "series": [
                {**point, "volume": round(units.convert_from_kg(point["volume"]), 2)}
                for point in series
            ],
        }
