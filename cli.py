import argparse
import asyncio
import datetime
import shutil
import time
from typing import Optional

import requests

from algorithms import HeightConverter, WeightConverter
from auth_service import AuthService
from cache import ClientCache
from config import configure_logging, load_settings
from errors import AuthError
from models import Exercise
from settings_schema import SettingsSchema
from stats_service import TIME_RANGES, StatisticsService
from store import RemoteStore
from workout_service import WorkoutService
from workout_state import WorkoutEditor

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo-password"


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def benchmark(url: str, runs: int = 10) -> float:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")
    return avg


def convert(value: float, unit: str) -> str:
    if unit == "kg":
        return f"{value} kg = {WeightConverter.kg_to_lb(value)} lb"
    if unit == "lb":
        return f"{value} lb = {WeightConverter.lb_to_kg(value)} kg"
    if unit == "cm":
        feet, inches = HeightConverter.cm_to_feet_inches(value)
        return f"{value} cm = {HeightConverter.cm_to_in(value)} in ({feet}' {inches}\")"
    return f"{value} in = {HeightConverter.in_to_cm(value)} cm"


async def _demo(db_path: str, settings: SettingsSchema) -> Optional[str]:
    auth = AuthService(db_path, settings.model_copy(update={"require_email_confirmation": False}))
    try:
        result = await auth.sign_up(DEMO_EMAIL, DEMO_PASSWORD, name="Demo User")
    except AuthError as e:
        if e.kind != "user_exists":
            raise
        return None
    user_id = result["user"]["id"]
    store = RemoteStore(db_path)
    service = WorkoutService(store, ClientCache(), page_size=settings.page_size, tz=settings.timezone)
    catalog = [ex for ex in await service.available_exercises() if ex["name"] in ("Bench Press", "Running")]
    exercises = [Exercise(**ex) for ex in catalog]
    today = datetime.date.today()
    for days_ago, reps, weight in ((2, 8, 60.0), (0, 10, 62.5)):
        editor = WorkoutEditor()
        for ex in exercises:
            editor.toggle(ex.id)
        editor.add_selected(exercises)
        for index, draft in enumerate(editor.state.exercises):
            if draft.exercise.uses_weight:
                editor.edit_set(index, 0, "reps", reps)
                editor.edit_set(index, 0, "weight_kg", weight)
            else:
                editor.edit_set(index, 0, "duration_seconds", 1200)
                editor.edit_set(index, 0, "distance_meters", 4000)
        day = (today - datetime.timedelta(days=days_ago)).isoformat()
        await service.save_workout(user_id, editor.state, f"{day}T18:00:00+00:00")
    return user_id


def demo_data(db_path: str, yaml_path: str) -> Optional[str]:
    """Create a confirmed demo user with two workouts unless it exists."""
    settings = load_settings(yaml_path)
    user_id = asyncio.run(_demo(db_path, settings))
    if user_id is None:
        print("Demo user already exists")
    else:
        print(f"Demo data inserted for {DEMO_EMAIL} ({user_id})")
    return user_id


async def _volume(db_path: str, user_id: str, time_range: str, today: datetime.date, settings: SettingsSchema):
    stats = StatisticsService(ClientCache(), RemoteStore(db_path), settings)
    return await stats.volume_series(user_id, time_range, today)


def print_volume(db_path: str, yaml_path: str, user_id: str, time_range: str, today: Optional[str] = None) -> list:
    settings = load_settings(yaml_path)
    day = datetime.date.fromisoformat(today) if today else datetime.date.today()
    series = asyncio.run(_volume(db_path, user_id, time_range, day, settings))
    for point in series:
        print(f"{point['date']:>10}  {point['volume']:.2f}")
    return series


def serve(db_path: str, yaml_path: str, host: str, port: int) -> None:
    import uvicorn
    from rest_api import FitnessAPI

    api = FitnessAPI(db_path=db_path, yaml_path=yaml_path)
    configure_logging(api.settings.log_level)
    uvicorn.run(api.app, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    sub = parser.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve")
    srv.add_argument("--db", default="workout.db")
    srv.add_argument("--yaml", default="settings.yaml")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="workout.db")
    demo.add_argument("--yaml", default="settings.yaml")

    vol = sub.add_parser("volume")
    vol.add_argument("--db", default="workout.db")
    vol.add_argument("--yaml", default="settings.yaml")
    vol.add_argument("--user", required=True)
    vol.add_argument("--range", dest="time_range", choices=TIME_RANGES, default="7days")
    vol.add_argument("--today")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="workout.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="workout.db")

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    conv = sub.add_parser("convert")
    conv.add_argument("--value", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb", "cm", "in"], required=True)

    args = parser.parse_args()

    if args.cmd == "serve":
        serve(args.db, args.yaml, args.host, args.port)
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml)
    elif args.cmd == "volume":
        print_volume(args.db, args.yaml, args.user, args.time_range, args.today)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)
    elif args.cmd == "convert":
        print(convert(args.value, args.unit))


if __name__ == "__main__":
    main()
