import datetime
import os
import random
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cache import ClientCache
from settings_schema import SettingsSchema
from stats_service import StatisticsService, days_to_fetch, format_volume_data

EXPECTED_LENGTH = {"7days": 7, "8weeks": 8, "12months": 12}


def test_single_row_lands_in_last_day():
    series = format_volume_data(
        [{"date": "2024-01-01", "volume": 100}], "7days", datetime.date(2024, 1, 1)
    )
    assert len(series) == 7
    assert series[-1]["volume"] == 100
    assert [p["volume"] for p in series[:-1]] == [0] * 6
    assert series[0]["date"] == "Dec 26"
    assert series[-1]["date"] == "Jan 1"


@pytest.mark.parametrize("time_range", sorted(EXPECTED_LENGTH))
def test_empty_rows_give_zero_buckets(time_range):
    series = format_volume_data([], time_range, datetime.date(2024, 5, 17))
    assert len(series) == EXPECTED_LENGTH[time_range]
    assert all(p["volume"] == 0 for p in series)


@pytest.mark.parametrize("time_range", sorted(EXPECTED_LENGTH))
def test_random_rows_fill_fixed_chronological_buckets(time_range):
    rng = random.Random(42)
    today = datetime.date(2024, 3, 15)
    rows = [
        {
            "date": (today - datetime.timedelta(days=rng.randint(-3, 420))).isoformat(),
            "volume": rng.randint(0, 5000),
        }
        for _ in range(300)
    ]
    series = format_volume_data(rows, time_range, today)
    assert len(series) == EXPECTED_LENGTH[time_range]
    starts = [p["start"] for p in series]
    assert starts == sorted(starts)
    assert len(set(starts)) == len(starts)
    assert sum(p["volume"] for p in series) <= sum(r["volume"] for r in rows)
    assert all(p["volume"] >= 0 for p in series)


def test_weeks_start_on_monday_by_default():
    today = datetime.date(2024, 1, 10)  # Wednesday
    rows = [
        {"date": "2024-01-08", "volume": 10},
        {"date": "2024-01-07", "volume": 5},
        {"date": "2024-01-01T07:30:00", "volume": 1},
        {"date": "2023-11-19", "volume": 99},
    ]
    series = format_volume_data(rows, "8weeks", today)
    assert series[-1] == {"date": "Jan 8", "start": "2024-01-08", "volume": 10}
    assert series[-2]["start"] == "2024-01-01"
    assert series[-2]["volume"] == 6
    assert series[0]["start"] == "2023-11-20"
    assert sum(p["volume"] for p in series) == 16


def test_week_start_is_configurable():
    series = format_volume_data([], "8weeks", datetime.date(2024, 1, 10), week_start=6)
    assert series[-1]["start"] == "2024-01-07"


def test_twelve_calendar_months():
    rows = [
        {"date": "2023-03-31", "volume": 50},
        {"date": "2023-04-01", "volume": 20},
        {"date": "2024-02-29T10:00:00", "volume": 30},
        {"date": "2024-02-01", "volume": 12.25},
    ]
    series = format_volume_data(rows, "12months", datetime.date(2024, 3, 15))
    assert series[0]["date"] == "Apr 2023"
    assert series[0]["volume"] == 20
    assert series[-2] == {"date": "Feb 2024", "start": "2024-02-01", "volume": 42.25}
    assert series[-1]["date"] == "Mar 2024"


def test_unknown_range():
    with pytest.raises(ValueError):
        format_volume_data([], "3years", datetime.date(2024, 1, 1))
    with pytest.raises(ValueError):
        days_to_fetch("3years")
    assert [days_to_fetch(r) for r in ("7days", "8weeks", "12months")] == [7, 56, 365]


class FakeStore:
    def __init__(self, unit_preference: str = "metric") -> None:
        self.volume_calls = []
        self.profile = {
            "id": "u1",
            "unit_preference": unit_preference,
            "total_volume": 1000.0,
            "total_workouts": 4,
        }

    async def fetch_volume_by_day(self, user_id, days, today=None):
        self.volume_calls.append((user_id, days, today))
        return [{"date": "2024-01-01", "volume": 100.0}]

    async def get_profile(self, user_id):
        return dict(self.profile)


@pytest.mark.asyncio
async def test_volume_series_reads_through_cache():
    store = FakeStore()
    stats = StatisticsService(ClientCache(), store, SettingsSchema())
    today = datetime.date(2024, 1, 1)
    first = await stats.volume_series("u1", "7days", today)
    second = await stats.volume_series("u1", "7days", today)
    assert first == second
    assert first[-1]["volume"] == 100
    assert store.volume_calls == [("u1", 7, today)]


@pytest.mark.asyncio
async def test_dashboard_converts_to_user_units():
    stats = StatisticsService(ClientCache(), FakeStore("imperial"))
    board = await stats.dashboard("u1", "7days", datetime.date(2024, 1, 1))
    assert board["unit"] == "lb"
    assert board["total_workouts"] == 4
    assert board["total_volume"] == pytest.approx(2204.62)
    assert board["series"][-1]["volume"] == pytest.approx(220.46)
    assert len(board["series"]) == 7
