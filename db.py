import sqlite3
import aiosqlite
import datetime
import json
import uuid
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT,
                    email_confirmed INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );""",
            ["id", "email", "password_hash", "email_confirmed", "metadata", "created_at"],
        ),
        "auth_codes": (
            """CREATE TABLE auth_codes (
                    code TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    redirect_to TEXT,
                    expires_at TEXT NOT NULL,
                    used INTEGER NOT NULL DEFAULT 0
                );""",
            ["code", "user_id", "purpose", "redirect_to", "expires_at", "used"],
        ),
        "refresh_tokens": (
            """CREATE TABLE refresh_tokens (
                    token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    revoked INTEGER NOT NULL DEFAULT 0
                );""",
            ["token", "user_id", "created_at", "revoked"],
        ),
        "email_logs": (
            """CREATE TABLE email_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    address TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    success INTEGER NOT NULL
                );""",
            ["id", "timestamp", "address", "subject", "body", "success"],
        ),
        "profiles": (
            """CREATE TABLE profiles (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    gender TEXT,
                    date_of_birth TEXT,
                    weight_kg REAL,
                    height_cm REAL,
                    body_fat_percentage REAL,
                    unit_preference TEXT NOT NULL DEFAULT 'metric',
                    theme_preference TEXT NOT NULL DEFAULT 'light',
                    total_volume REAL NOT NULL DEFAULT 0,
                    total_workouts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT
                );""",
            [
                "id",
                "name",
                "gender",
                "date_of_birth",
                "weight_kg",
                "height_cm",
                "body_fat_percentage",
                "unit_preference",
                "theme_preference",
                "total_volume",
                "total_workouts",
                "created_at",
                "updated_at",
            ],
        ),
        "equipment": (
            """CREATE TABLE equipment (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    equipment_type TEXT NOT NULL,
                    name TEXT NOT NULL UNIQUE,
                    muscles TEXT NOT NULL
                );""",
            ["id", "equipment_type", "name", "muscles"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    primary_muscle_group TEXT NOT NULL,
                    secondary_muscle_group TEXT,
                    category TEXT NOT NULL DEFAULT 'strength_training',
                    uses_reps INTEGER NOT NULL DEFAULT 1,
                    uses_weight INTEGER NOT NULL DEFAULT 1,
                    uses_duration INTEGER NOT NULL DEFAULT 0,
                    uses_distance INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER NOT NULL DEFAULT 0
                );""",
            [
                "id",
                "name",
                "primary_muscle_group",
                "secondary_muscle_group",
                "category",
                "uses_reps",
                "uses_weight",
                "uses_duration",
                "uses_distance",
                "is_deleted",
            ],
        ),
        "user_exercises": (
            """CREATE TABLE user_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    primary_muscle_group TEXT NOT NULL,
                    secondary_muscle_group TEXT,
                    category TEXT NOT NULL DEFAULT 'strength_training',
                    uses_reps INTEGER NOT NULL DEFAULT 1,
                    uses_weight INTEGER NOT NULL DEFAULT 1,
                    uses_duration INTEGER NOT NULL DEFAULT 0,
                    uses_distance INTEGER NOT NULL DEFAULT 0
                );""",
            [
                "id",
                "user_id",
                "name",
                "primary_muscle_group",
                "secondary_muscle_group",
                "category",
                "uses_reps",
                "uses_weight",
                "uses_duration",
                "uses_distance",
            ],
        ),
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    workout_date TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );""",
            ["id", "user_id", "workout_date", "created_at"],
        ),
        "workout_exercises": (
            """CREATE TABLE workout_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    exercise_type TEXT NOT NULL,
                    predefined_exercise_id INTEGER,
                    user_exercise_id INTEGER,
                    position INTEGER NOT NULL DEFAULT 0,
                    effort_level TEXT,
                    created_at TEXT NOT NULL,
                    CHECK ((predefined_exercise_id IS NULL) <> (user_exercise_id IS NULL)),
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE,
                    FOREIGN KEY(predefined_exercise_id) REFERENCES exercises(id),
                    FOREIGN KEY(user_exercise_id) REFERENCES user_exercises(id)
                );""",
            [
                "id",
                "workout_id",
                "exercise_type",
                "predefined_exercise_id",
                "user_exercise_id",
                "position",
                "effort_level",
                "created_at",
            ],
        ),
        "sets": (
            """CREATE TABLE sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_exercise_id INTEGER NOT NULL,
                    set_number INTEGER NOT NULL,
                    reps INTEGER,
                    weight_kg REAL,
                    duration_seconds INTEGER,
                    distance_meters REAL,
                    created_at TEXT NOT NULL,
                    CHECK (set_number >= 1),
                    FOREIGN KEY(workout_exercise_id) REFERENCES workout_exercises(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "workout_exercise_id",
                "set_number",
                "reps",
                "weight_kg",
                "duration_seconds",
                "distance_meters",
                "created_at",
            ],
        ),
    }

    # name, primary, secondary, category, reps, weight, duration, distance
    _PREDEFINED_EXERCISES = [
        ("Bench Press", "chest", "triceps", "strength_training", 1, 1, 0, 0),
        ("Incline Dumbbell Press", "chest", "shoulders", "strength_training", 1, 1, 0, 0),
        ("Back Squat", "legs", "glutes", "strength_training", 1, 1, 0, 0),
        ("Deadlift", "back", "legs", "strength_training", 1, 1, 0, 0),
        ("Overhead Press", "shoulders", "triceps", "strength_training", 1, 1, 0, 0),
        ("Barbell Row", "back", "biceps", "strength_training", 1, 1, 0, 0),
        ("Pull Up", "back", "biceps", "strength_training", 1, 0, 0, 0),
        ("Push Up", "chest", "triceps", "strength_training", 1, 0, 0, 0),
        ("Bicep Curl", "arms", None, "strength_training", 1, 1, 0, 0),
        ("Plank", "core", None, "strength_training", 0, 0, 1, 0),
        ("Running", "cardio", "legs", "cardio", 0, 0, 1, 1),
        ("Rowing Machine", "cardio", "back", "cardio", 0, 0, 1, 1),
    ]

    _EQUIPMENT = [
        ("Free Weights", "Olympic Barbell", "Chest|Back|Legs|Shoulders"),
        ("Free Weights", "Dumbbells", "Chest|Arms|Shoulders"),
        ("Machines", "Cable Machine", "Chest|Back|Arms"),
        ("Machines", "Rowing Machine", "Back|Legs"),
        ("Bodyweight", "Pull Up Bar", "Back|Arms"),
        ("Bodyweight", "Bodyweight", "Core"),
    ]

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._import_equipment_data()
        self._import_exercise_data()
        self._ensure_views()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            cursor.execute("PRAGMA legacy_alter_table=ON;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_views(self) -> None:
        """Create the per user per day volume view."""
        with self._connection() as conn:
            conn.execute(
                "CREATE VIEW IF NOT EXISTS daily_volume AS "
                "SELECT w.user_id AS user_id, substr(w.workout_date, 1, 10) AS date, "
                "SUM(COALESCE(s.reps, 0) * COALESCE(s.weight_kg, 0)) AS volume "
                "FROM workouts w "
                "JOIN workout_exercises we ON we.workout_id = w.id "
                "JOIN sets s ON s.workout_exercise_id = we.id "
                "GROUP BY w.user_id, substr(w.workout_date, 1, 10);"
            )

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("unit_preference",):
                        return "'metric'"
                    if col in ("theme_preference",):
                        return "'light'"
                    if col in ("position", "total_volume", "total_workouts", "is_deleted"):
                        return "0"
                    if col == "metadata":
                        return "'{}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _import_equipment_data(self) -> None:
        with self._connection() as conn:
            for equipment_type, name, muscles in self._EQUIPMENT:
                conn.execute(
                    "INSERT INTO equipment (equipment_type, name, muscles) VALUES (?, ?, ?) "
                    "ON CONFLICT(name) DO UPDATE SET equipment_type=excluded.equipment_type, muscles=excluded.muscles;",
                    (equipment_type, name, muscles),
                )

    def _import_exercise_data(self) -> None:
        with self._connection() as conn:
            for record in self._PREDEFINED_EXERCISES:
                conn.execute(
                    "INSERT INTO exercises (name, primary_muscle_group, secondary_muscle_group, category, uses_reps, uses_weight, uses_duration, uses_distance) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(name) DO UPDATE SET primary_muscle_group=excluded.primary_muscle_group, secondary_muscle_group=excluded.secondary_muscle_group, category=excluded.category, "
                    "uses_reps=excluded.uses_reps, uses_weight=excluded.uses_weight, uses_duration=excluded.uses_duration, uses_distance=excluded.uses_distance;",
                    record,
                )


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous repository base using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def execute_many(self, query: str, rows: Iterable[Tuple]) -> None:
        async with self._async_connection() as conn:
            await conn.executemany(query, list(rows))
            await conn.commit()

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows

    async def fetch_dicts(self, query: str, params: Tuple = ()) -> list[dict]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            names = [d[0] for d in cursor.description]
            return [dict(zip(names, row)) for row in rows]

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


class AsyncUserRepository(AsyncBaseRepository):
    """Async repository for authentication users."""

    async def create(
        self,
        email: str,
        password_hash: str | None,
        confirmed: bool = False,
        metadata: dict | None = None,
    ) -> str:
        user_id = str(uuid.uuid4())
        await self.execute(
            "INSERT INTO users (id, email, password_hash, email_confirmed, metadata, created_at) VALUES (?, ?, ?, ?, ?, ?);",
            (
                user_id,
                email.lower(),
                password_hash,
                int(confirmed),
                json.dumps(metadata or {}),
                utc_now(),
            ),
        )
        return user_id

    async def _fetch_where(self, column: str, value: str) -> dict | None:
        rows = await self.fetch_dicts(
            f"SELECT id, email, password_hash, email_confirmed, metadata, created_at FROM users WHERE {column} = ?;",
            (value,),
        )
        if not rows:
            return None
        row = rows[0]
        row["email_confirmed"] = bool(row["email_confirmed"])
        row["metadata"] = json.loads(row["metadata"] or "{}")
        return row

    async def fetch_by_email(self, email: str) -> dict | None:
        return await self._fetch_where("email", email.lower())

    async def fetch_detail(self, user_id: str) -> dict | None:
        return await self._fetch_where("id", user_id)

    async def confirm(self, user_id: str) -> None:
        await self.execute(
            "UPDATE users SET email_confirmed = 1 WHERE id = ?;",
            (user_id,),
        )


class AsyncAuthCodeRepository(AsyncBaseRepository):
    """One-time codes for magic links, email confirmation and OAuth callbacks."""

    async def add(
        self,
        code: str,
        user_id: str,
        purpose: str,
        expires_at: str,
        redirect_to: str | None = None,
    ) -> None:
        await self.execute(
            "INSERT INTO auth_codes (code, user_id, purpose, redirect_to, expires_at) VALUES (?, ?, ?, ?, ?);",
            (code, user_id, purpose, redirect_to, expires_at),
        )

    async def consume(self, code: str) -> dict | None:
        rows = await self.fetch_dicts(
            "SELECT code, user_id, purpose, redirect_to, expires_at FROM auth_codes WHERE code = ? AND used = 0;",
            (code,),
        )
        if not rows:
            return None
        await self.execute("UPDATE auth_codes SET used = 1 WHERE code = ?;", (code,))
        return rows[0]


class AsyncRefreshTokenRepository(AsyncBaseRepository):
    async def add(self, token: str, user_id: str) -> None:
        await self.execute(
            "INSERT INTO refresh_tokens (token, user_id, created_at) VALUES (?, ?, ?);",
            (token, user_id, utc_now()),
        )

    async def fetch_active(self, token: str) -> dict | None:
        rows = await self.fetch_dicts(
            "SELECT token, user_id, created_at FROM refresh_tokens WHERE token = ? AND revoked = 0;",
            (token,),
        )
        return rows[0] if rows else None

    async def revoke(self, token: str) -> None:
        await self.execute(
            "UPDATE refresh_tokens SET revoked = 1 WHERE token = ?;", (token,)
        )

    async def revoke_for_user(self, user_id: str) -> None:
        await self.execute(
            "UPDATE refresh_tokens SET revoked = 1 WHERE user_id = ?;", (user_id,)
        )


class AsyncEmailLogRepository(AsyncBaseRepository):
    """Repository for outgoing authentication mail."""

    async def add(self, address: str, subject: str, body: str, success: bool) -> int:
        return await self.execute(
            "INSERT INTO email_logs (timestamp, address, subject, body, success) VALUES (?, ?, ?, ?, ?);",
            (utc_now(), address, subject, body, 1 if success else 0),
        )

    async def fetch_all_logs(self, address: str | None = None) -> list[dict[str, object]]:
        query = "SELECT id, timestamp, address, subject, body, success FROM email_logs"
        params: tuple = ()
        if address is not None:
            query += " WHERE address = ?"
            params = (address.lower(),)
        rows = await self.fetch_dicts(query + " ORDER BY id;", params)
        for r in rows:
            r["success"] = bool(r["success"])
        return rows


class AsyncProfileRepository(AsyncBaseRepository):
    """Async repository for user profiles and their lifetime aggregates."""

    _COLUMNS = (
        "id, name, gender, date_of_birth, weight_kg, height_cm, body_fat_percentage, "
        "unit_preference, theme_preference, total_volume, total_workouts, created_at, updated_at"
    )
    _UPDATABLE = {
        "name",
        "gender",
        "date_of_birth",
        "weight_kg",
        "height_cm",
        "body_fat_percentage",
        "unit_preference",
        "theme_preference",
    }

    async def fetch_detail(self, user_id: str) -> dict | None:
        rows = await self.fetch_dicts(
            f"SELECT {self._COLUMNS} FROM profiles WHERE id = ?;", (user_id,)
        )
        return rows[0] if rows else None

    async def create(
        self,
        user_id: str,
        name: str = "New User",
        unit_preference: str = "metric",
        theme_preference: str = "light",
        date_of_birth: str | None = "2000-01-01",
    ) -> None:
        now = utc_now()
        await self.execute(
            "INSERT INTO profiles (id, name, date_of_birth, unit_preference, theme_preference, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?);",
            (user_id, name, date_of_birth, unit_preference, theme_preference, now, now),
        )

    async def update(self, user_id: str, fields: dict) -> int:
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"cannot update profile fields: {', '.join(sorted(unknown))}")
        if not fields:
            return 0
        assignments = ", ".join(f"{k} = ?" for k in fields)
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                f"UPDATE profiles SET {assignments}, updated_at = ? WHERE id = ?;",
                (*fields.values(), utc_now(), user_id),
            )
            return cursor.rowcount

    async def add_aggregates(
        self, user_id: str, volume_delta: float, workouts_delta: int
    ) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                "UPDATE profiles SET total_volume = MAX(total_volume + ?, 0), "
                "total_workouts = MAX(total_workouts + ?, 0), updated_at = ? WHERE id = ?;",
                (volume_delta, workouts_delta, utc_now(), user_id),
            )
            return cursor.rowcount


class AsyncEquipmentRepository(AsyncBaseRepository):
    async def fetch_all_equipment(self) -> list[dict]:
        rows = await self.fetch_dicts(
            "SELECT id, equipment_type, name, muscles FROM equipment ORDER BY equipment_type, name;"
        )
        for r in rows:
            r["muscles"] = r["muscles"].split("|")
        return rows


class AsyncExerciseCatalogRepository(AsyncBaseRepository):
    """Predefined and user authored exercises."""

    _FLAGS = ("uses_reps", "uses_weight", "uses_duration", "uses_distance")

    def _normalize(self, row: dict, source: str) -> dict:
        for flag in self._FLAGS + ("is_deleted",):
            if flag in row:
                row[flag] = bool(row[flag])
        row["source"] = source
        return row

    async def fetch_predefined(self, include_deleted: bool = False) -> list[dict]:
        query = (
            "SELECT id, name, category, primary_muscle_group, secondary_muscle_group, "
            "uses_reps, uses_weight, uses_duration, uses_distance, is_deleted FROM exercises"
        )
        if not include_deleted:
            query += " WHERE is_deleted = 0"
        rows = await self.fetch_dicts(query + " ORDER BY name;")
        return [self._normalize(r, "predefined") for r in rows]

    async def fetch_for_user(self, user_id: str) -> list[dict]:
        rows = await self.fetch_dicts(
            "SELECT id, name, category, primary_muscle_group, secondary_muscle_group, "
            "uses_reps, uses_weight, uses_duration, uses_distance FROM user_exercises WHERE user_id = ? ORDER BY name;",
            (user_id,),
        )
        return [self._normalize(r, "user") for r in rows]

    async def add_user_exercise(
        self,
        user_id: str,
        name: str,
        primary_muscle_group: str,
        secondary_muscle_group: Optional[str] = None,
        category: str = "strength_training",
        uses_reps: bool = True,
        uses_weight: bool = True,
        uses_duration: bool = False,
        uses_distance: bool = False,
    ) -> int:
        if not name.strip():
            raise ValueError("exercise name must not be empty")
        return await self.execute(
            "INSERT INTO user_exercises (user_id, name, primary_muscle_group, secondary_muscle_group, category, uses_reps, uses_weight, uses_duration, uses_distance) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (
                user_id,
                name.strip(),
                primary_muscle_group,
                secondary_muscle_group,
                category,
                int(uses_reps),
                int(uses_weight),
                int(uses_duration),
                int(uses_distance),
            ),
        )


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async repository for workout table operations."""

    async def create(self, user_id: str, workout_date: str | None = None) -> int:
        now = utc_now()
        return await self.execute(
            "INSERT INTO workouts (user_id, workout_date, created_at) VALUES (?, ?, ?);",
            (user_id, workout_date or now, now),
        )

    async def fetch_page(self, user_id: str, limit: int, offset: int) -> list[dict]:
        return await self.fetch_dicts(
            "SELECT id, user_id, workout_date, created_at FROM workouts WHERE user_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?;",
            (user_id, limit, offset),
        )

    async def fetch_detail(self, workout_id: int) -> dict:
        rows = await self.fetch_dicts(
            "SELECT id, user_id, workout_date, created_at FROM workouts WHERE id = ?;",
            (workout_id,),
        )
        if not rows:
            raise ValueError("workout not found")
        return rows[0]

    async def volume(self, workout_id: int) -> float:
        rows = await self.fetch_all(
            "SELECT COALESCE(SUM(COALESCE(s.reps, 0) * COALESCE(s.weight_kg, 0)), 0) "
            "FROM sets s JOIN workout_exercises we ON s.workout_exercise_id = we.id WHERE we.workout_id = ?;",
            (workout_id,),
        )
        return float(rows[0][0]) if rows else 0.0

    async def delete(self, workout_id: int) -> None:
        rows = await self.fetch_all(
            "SELECT id FROM workouts WHERE id = ?;",
            (workout_id,),
        )
        if not rows:
            raise ValueError("workout not found")
        await self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

    async def daily_volume(self, user_id: str, start_date: str, end_date: str) -> list[dict]:
        return await self.fetch_dicts(
            "SELECT date, volume FROM daily_volume WHERE user_id = ? AND date >= ? AND date <= ? ORDER BY date;",
            (user_id, start_date, end_date),
        )


class AsyncWorkoutExerciseRepository(AsyncBaseRepository):
    async def add(
        self,
        workout_id: int,
        exercise_type: str,
        predefined_exercise_id: int | None,
        user_exercise_id: int | None,
        position: int,
        effort_level: str | None = None,
    ) -> int:
        return await self.execute(
            "INSERT INTO workout_exercises (workout_id, exercise_type, predefined_exercise_id, user_exercise_id, position, effort_level, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (
                workout_id,
                exercise_type,
                predefined_exercise_id,
                user_exercise_id,
                position,
                effort_level,
                utc_now(),
            ),
        )

    async def fetch_for_workouts(self, workout_ids: list[int]) -> list[dict]:
        """Return workout exercises joined with whichever exercise they reference."""
        if not workout_ids:
            return []
        marks = ", ".join("?" for _ in workout_ids)
        return await self.fetch_dicts(
            "SELECT we.id, we.workout_id, we.exercise_type, we.predefined_exercise_id, we.user_exercise_id, "
            "we.position, we.effort_level, we.created_at, "
            "COALESCE(e.id, ue.id) AS exercise_id, COALESCE(e.name, ue.name) AS name, "
            "COALESCE(e.primary_muscle_group, ue.primary_muscle_group) AS primary_muscle_group, "
            "COALESCE(e.secondary_muscle_group, ue.secondary_muscle_group) AS secondary_muscle_group, "
            "COALESCE(e.category, ue.category) AS category, "
            "COALESCE(e.uses_reps, ue.uses_reps) AS uses_reps, "
            "COALESCE(e.uses_weight, ue.uses_weight) AS uses_weight, "
            "COALESCE(e.uses_duration, ue.uses_duration) AS uses_duration, "
            "COALESCE(e.uses_distance, ue.uses_distance) AS uses_distance, "
            "COALESCE(e.is_deleted, 0) AS is_deleted "
            "FROM workout_exercises we "
            "LEFT JOIN exercises e ON we.predefined_exercise_id = e.id "
            "LEFT JOIN user_exercises ue ON we.user_exercise_id = ue.id "
            f"WHERE we.workout_id IN ({marks}) ORDER BY we.workout_id, we.position, we.id;",
            tuple(workout_ids),
        )


class AsyncSetRepository(AsyncBaseRepository):
    async def bulk_add(self, workout_exercise_id: int, entries: Iterable[dict]) -> None:
        now = utc_now()
        await self.execute_many(
            "INSERT INTO sets (workout_exercise_id, set_number, reps, weight_kg, duration_seconds, distance_meters, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (
                (
                    workout_exercise_id,
                    e["set_number"],
                    e.get("reps"),
                    e.get("weight_kg"),
                    e.get("duration_seconds"),
                    e.get("distance_meters"),
                    now,
                )
                for e in entries
            ),
        )

    async def fetch_for_workout_exercises(self, ids: list[int]) -> list[dict]:
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        return await self.fetch_dicts(
            "SELECT id, workout_exercise_id, set_number, reps, weight_kg, duration_seconds, distance_meters, created_at "
            f"FROM sets WHERE workout_exercise_id IN ({marks}) ORDER BY workout_exercise_id, set_number;",
            tuple(ids),
        )
