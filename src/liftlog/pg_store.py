"""PostgreSQL-backed versioned record store (psycopg, async).

Same contract as ``InMemoryRecordStore``: rows are only ever inserted. Soft
deletes live in ``liftlog_tombstones``; ``is_deleted`` is applied on read.
Concurrent supersessions of one set version are serialized by locking the
superseded row, and a unique partial index on ``previous_version_id`` makes a
second successor impossible even across connections.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .records import (
    ExerciseInstance,
    SetRecord,
    Workout,
    normalize_exercise_row,
    normalize_set_row,
    normalize_workout_row,
)
from .store import (
    DuplicateRecordError,
    Record,
    RecordNotFoundError,
    StaleVersionError,
    Tombstone,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS liftlog_workouts (
    id TEXT PRIMARY KEY,
    started_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ,
    name TEXT,
    template_id TEXT,
    timezone TEXT,
    bodyweight_kg DOUBLE PRECISION,
    sleep_hours DOUBLE PRECISION,
    readiness_score INTEGER,
    notes TEXT,
    is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
    deleted_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS liftlog_exercise_instances (
    id TEXT PRIMARY KEY,
    workout_id TEXT NOT NULL REFERENCES liftlog_workouts (id),
    exercise_ref_id TEXT NOT NULL,
    name TEXT NOT NULL,
    movement_pattern TEXT,
    primary_muscle_groups TEXT[] NOT NULL DEFAULT '{}',
    secondary_muscle_groups TEXT[] NOT NULL DEFAULT '{}',
    equipment TEXT,
    "order" INTEGER NOT NULL DEFAULT 0,
    superset_id TEXT,
    notes TEXT,
    is_deleted BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE TABLE IF NOT EXISTS liftlog_sets (
    id TEXT PRIMARY KEY,
    exercise_instance_id TEXT NOT NULL REFERENCES liftlog_exercise_instances (id),
    set_number INTEGER NOT NULL,
    weight_kg DOUBLE PRECISION,
    reps INTEGER,
    rpe DOUBLE PRECISION,
    rir INTEGER,
    rest_seconds INTEGER,
    tempo TEXT,
    is_warmup BOOLEAN NOT NULL DEFAULT FALSE,
    is_failure BOOLEAN NOT NULL DEFAULT FALSE,
    is_dropset BOOLEAN NOT NULL DEFAULT FALSE,
    is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
    completed_at TIMESTAMPTZ,
    previous_version_id TEXT REFERENCES liftlog_sets (id)
);

CREATE UNIQUE INDEX IF NOT EXISTS liftlog_sets_single_successor
    ON liftlog_sets (previous_version_id)
    WHERE previous_version_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS liftlog_tombstones (
    record_id TEXT PRIMARY KEY,
    deleted_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS liftlog_snapshots (
    id BIGSERIAL PRIMARY KEY,
    workout_id TEXT NOT NULL,
    schema_version TEXT NOT NULL,
    document JSONB NOT NULL,
    appended_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS liftlog_snapshots_workout
    ON liftlog_snapshots (workout_id, id);
"""

_SET_COLUMNS = """
    s.id, s.exercise_instance_id, s.set_number, s.weight_kg, s.reps, s.rpe, s.rir,
    s.rest_seconds, s.tempo, s.is_warmup, s.is_failure, s.is_dropset,
    (s.is_deleted OR t.record_id IS NOT NULL) AS is_deleted,
    s.completed_at, s.previous_version_id
"""

_EXERCISE_COLUMNS = """
    e.id, e.workout_id, e.exercise_ref_id, e.name, e.movement_pattern,
    e.primary_muscle_groups, e.secondary_muscle_groups, e.equipment,
    e."order", e.superset_id, e.notes,
    (e.is_deleted OR t.record_id IS NOT NULL) AS is_deleted
"""

_SUCCESSOR_CONSTRAINT = "liftlog_sets_single_successor"


class PostgresRecordStore:
    """Append-only store over an open ``psycopg.AsyncConnection``."""

    def __init__(self, conn: psycopg.AsyncConnection[Any]) -> None:
        self.conn = conn

    async def ensure_schema(self) -> None:
        await self.conn.execute(SCHEMA_SQL)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, entry: Record | Tombstone) -> None:
        """Append one record or tombstone in a single transaction.

        A set carrying ``previous_version_id`` goes through ``supersede``.
        """
        if isinstance(entry, SetRecord) and entry.previous_version_id is not None:
            await self.supersede(entry.previous_version_id, entry)
            return
        try:
            async with self.conn.transaction():
                async with self.conn.cursor() as cur:
                    if isinstance(entry, Tombstone):
                        await self._insert_tombstone(cur, entry)
                    elif isinstance(entry, Workout):
                        await self._insert_workout(cur, entry)
                    elif isinstance(entry, ExerciseInstance):
                        await self._insert_exercise(cur, entry)
                    elif isinstance(entry, SetRecord):
                        await self._insert_set(cur, entry)
                    else:
                        raise TypeError(f"Cannot append {type(entry).__name__} to the record store")
        except psycopg.errors.UniqueViolation as exc:
            if exc.diag.constraint_name == _SUCCESSOR_CONSTRAINT:
                raise StaleVersionError(str(exc)) from exc
            raise DuplicateRecordError(str(exc)) from exc
        except psycopg.errors.ForeignKeyViolation as exc:
            raise RecordNotFoundError(str(exc)) from exc

    async def supersede(self, old_id: str, new_record: SetRecord) -> SetRecord:
        """Compare-and-append under a row lock on the superseded version."""
        if not isinstance(new_record, SetRecord):
            raise TypeError("Only sets carry a supersession chain")
        try:
            async with self.conn.transaction():
                async with self.conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        f"""
                        SELECT {_SET_COLUMNS}
                        FROM liftlog_sets s
                        LEFT JOIN liftlog_tombstones t ON t.record_id = s.id
                        WHERE s.id = %s
                        FOR UPDATE OF s
                        """,
                        (old_id,),
                    )
                    row = await cur.fetchone()
                    if row is None:
                        raise RecordNotFoundError(f"set {old_id} does not exist")
                    await cur.execute(
                        "SELECT id FROM liftlog_sets WHERE previous_version_id = %s",
                        (old_id,),
                    )
                    successor = await cur.fetchone()
                    if successor is not None:
                        raise StaleVersionError(
                            f"set {old_id} was already superseded by {successor['id']}"
                        )
                    if row["is_deleted"]:
                        raise StaleVersionError(f"set {old_id} is deleted")

                    linked = replace(
                        new_record,
                        previous_version_id=old_id,
                        exercise_instance_id=new_record.exercise_instance_id
                        or row["exercise_instance_id"],
                        is_deleted=False,
                    )
                    await self._insert_set(cur, linked)
        except psycopg.errors.UniqueViolation as exc:
            if exc.diag.constraint_name == _SUCCESSOR_CONSTRAINT:
                raise StaleVersionError(f"set {old_id} was superseded concurrently") from exc
            raise DuplicateRecordError(str(exc)) from exc

        logger.info(
            "Superseded set %s with %s",
            old_id,
            linked.id,
            extra={"liftlog_set_id": linked.id, "liftlog_previous_version_id": old_id},
        )
        return linked

    async def append_snapshot(self, document: dict[str, Any]) -> None:
        workout_id = str(document.get("workout_id") or "").strip()
        if not workout_id:
            raise ValueError("snapshot document has no workout_id")
        async with self.conn.transaction():
            await self.conn.execute(
                """
                INSERT INTO liftlog_snapshots (workout_id, schema_version, document)
                VALUES (%s, %s, %s)
                """,
                (workout_id, str(document.get("schema_version") or ""), Jsonb(document)),
            )

    async def _insert_tombstone(self, cur: psycopg.AsyncCursor[Any], tombstone: Tombstone) -> None:
        await cur.execute(
            """
            SELECT 1 FROM liftlog_workouts WHERE id = %(id)s
            UNION ALL SELECT 1 FROM liftlog_exercise_instances WHERE id = %(id)s
            UNION ALL SELECT 1 FROM liftlog_sets WHERE id = %(id)s
            """,
            {"id": tombstone.record_id},
        )
        if await cur.fetchone() is None:
            raise RecordNotFoundError(f"cannot tombstone unknown record {tombstone.record_id}")
        # First tombstone wins.
        await cur.execute(
            """
            INSERT INTO liftlog_tombstones (record_id, deleted_at)
            VALUES (%s, %s)
            ON CONFLICT (record_id) DO NOTHING
            """,
            (tombstone.record_id, tombstone.deleted_at),
        )

    async def _insert_workout(self, cur: psycopg.AsyncCursor[Any], workout: Workout) -> None:
        await cur.execute(
            """
            INSERT INTO liftlog_workouts (
                id, started_at, completed_at, name, template_id, timezone,
                bodyweight_kg, sleep_hours, readiness_score, notes,
                is_deleted, deleted_at, created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()), %s
            )
            """,
            (
                workout.id,
                workout.started_at,
                workout.completed_at,
                workout.name,
                workout.template_id,
                workout.timezone,
                workout.bodyweight_kg,
                workout.sleep_hours,
                workout.readiness_score,
                workout.notes,
                workout.is_deleted,
                workout.deleted_at,
                workout.created_at,
                workout.updated_at,
            ),
        )
        for exercise in workout.exercises:
            if exercise.workout_id and exercise.workout_id != workout.id:
                raise ValueError(
                    f"exercise {exercise.id} belongs to workout {exercise.workout_id}, not {workout.id}"
                )
            await self._insert_exercise(cur, exercise, workout_id=workout.id)

    async def _insert_exercise(
        self,
        cur: psycopg.AsyncCursor[Any],
        exercise: ExerciseInstance,
        workout_id: str | None = None,
    ) -> None:
        definition = exercise.definition
        await cur.execute(
            """
            INSERT INTO liftlog_exercise_instances (
                id, workout_id, exercise_ref_id, name, movement_pattern,
                primary_muscle_groups, secondary_muscle_groups, equipment,
                "order", superset_id, notes, is_deleted
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                exercise.id,
                workout_id or exercise.workout_id,
                exercise.exercise_ref_id,
                definition.name,
                definition.movement_pattern,
                list(definition.primary_muscle_groups),
                list(definition.secondary_muscle_groups),
                definition.equipment,
                exercise.order,
                exercise.superset_id,
                exercise.notes,
                exercise.is_deleted,
            ),
        )
        for s in exercise.sets:
            await self._insert_set(cur, s, exercise_instance_id=exercise.id)

    async def _insert_set(
        self,
        cur: psycopg.AsyncCursor[Any],
        s: SetRecord,
        exercise_instance_id: str | None = None,
    ) -> None:
        await cur.execute(
            """
            INSERT INTO liftlog_sets (
                id, exercise_instance_id, set_number, weight_kg, reps, rpe, rir,
                rest_seconds, tempo, is_warmup, is_failure, is_dropset, is_deleted,
                completed_at, previous_version_id
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                s.id,
                exercise_instance_id or s.exercise_instance_id,
                s.set_number,
                s.weight_kg,
                s.reps,
                s.rpe,
                s.rir,
                s.rest_seconds,
                s.tempo,
                s.is_warmup,
                s.is_failure,
                s.is_dropset,
                s.is_deleted,
                s.completed_at,
                s.previous_version_id,
            ),
        )
        if s.previous_version_id is not None:
            # The new version retires its predecessor unless it is already deleted.
            await cur.execute(
                """
                INSERT INTO liftlog_tombstones (record_id, deleted_at)
                SELECT id, NOW() FROM liftlog_sets WHERE id = %s AND NOT is_deleted
                ON CONFLICT (record_id) DO NOTHING
                """,
                (s.previous_version_id,),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def sets(
        self,
        exercise_instance_id: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[SetRecord]:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT {_SET_COLUMNS}
                FROM liftlog_sets s
                LEFT JOIN liftlog_tombstones t ON t.record_id = s.id
                WHERE (%(parent)s::text IS NULL OR s.exercise_instance_id = %(parent)s)
                ORDER BY s.exercise_instance_id, s.set_number, s.id
                """,
                {"parent": exercise_instance_id},
            )
            rows = await cur.fetchall()
        result = [normalize_set_row(row) for row in rows]
        if not include_deleted:
            result = [s for s in result if not s.is_deleted]
        return result

    async def get_set(self, set_id: str) -> SetRecord:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT {_SET_COLUMNS}
                FROM liftlog_sets s
                LEFT JOIN liftlog_tombstones t ON t.record_id = s.id
                WHERE s.id = %s
                """,
                (set_id,),
            )
            row = await cur.fetchone()
        if row is None:
            raise RecordNotFoundError(f"set {set_id} does not exist")
        return normalize_set_row(row)

    async def get(self, record_id: str) -> Record:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT 'set' AS kind, NULL AS workout_id FROM liftlog_sets WHERE id = %(id)s
                UNION ALL
                SELECT 'exercise', workout_id FROM liftlog_exercise_instances WHERE id = %(id)s
                UNION ALL
                SELECT 'workout', id FROM liftlog_workouts WHERE id = %(id)s
                """,
                {"id": record_id},
            )
            row = await cur.fetchone()
        if row is None:
            raise RecordNotFoundError(f"record {record_id} does not exist")
        if row["kind"] == "set":
            return await self.get_set(record_id)
        if row["kind"] == "workout":
            return await self.workout(record_id)
        exercises = await self.exercise_instances(row["workout_id"], include_deleted=True)
        return next(ex for ex in exercises if ex.id == record_id)

    async def exercise_instances(
        self,
        workout_id: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ExerciseInstance]:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT {_EXERCISE_COLUMNS}
                FROM liftlog_exercise_instances e
                LEFT JOIN liftlog_tombstones t ON t.record_id = e.id
                WHERE (%(workout)s::text IS NULL OR e.workout_id = %(workout)s)
                ORDER BY e."order", e.id
                """,
                {"workout": workout_id},
            )
            rows = await cur.fetchall()
        if not include_deleted:
            rows = [row for row in rows if not row["is_deleted"]]
        return [
            normalize_exercise_row(row, sets=await self.sets(row["id"], include_deleted=include_deleted))
            for row in rows
        ]

    async def workout(self, workout_id: str, *, include_deleted: bool = True) -> Workout:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT w.id, w.started_at, w.completed_at, w.name, w.template_id, w.timezone,
                       w.bodyweight_kg, w.sleep_hours, w.readiness_score, w.notes,
                       (w.is_deleted OR t.record_id IS NOT NULL) AS is_deleted,
                       COALESCE(w.deleted_at, t.deleted_at) AS deleted_at,
                       w.created_at, w.updated_at
                FROM liftlog_workouts w
                LEFT JOIN liftlog_tombstones t ON t.record_id = w.id
                WHERE w.id = %s
                """,
                (workout_id,),
            )
            workout_row = await cur.fetchone()
            if workout_row is None:
                raise RecordNotFoundError(f"workout {workout_id} does not exist")
            await cur.execute(
                f"""
                SELECT {_EXERCISE_COLUMNS}
                FROM liftlog_exercise_instances e
                LEFT JOIN liftlog_tombstones t ON t.record_id = e.id
                WHERE e.workout_id = %s
                ORDER BY e."order", e.id
                """,
                (workout_id,),
            )
            exercise_rows = await cur.fetchall()
            await cur.execute(
                f"""
                SELECT {_SET_COLUMNS}
                FROM liftlog_sets s
                JOIN liftlog_exercise_instances e ON e.id = s.exercise_instance_id
                LEFT JOIN liftlog_tombstones t ON t.record_id = s.id
                WHERE e.workout_id = %s
                ORDER BY s.set_number, s.id
                """,
                (workout_id,),
            )
            set_rows = await cur.fetchall()

        sets_by_parent: dict[str, list[SetRecord]] = {}
        for row in set_rows:
            s = normalize_set_row(row)
            if include_deleted or not s.is_deleted:
                sets_by_parent.setdefault(s.exercise_instance_id, []).append(s)

        exercises = [
            normalize_exercise_row(row, sets=sets_by_parent.get(row["id"], []))
            for row in exercise_rows
        ]
        if not include_deleted:
            exercises = [ex for ex in exercises if not ex.is_deleted]
        return normalize_workout_row(workout_row, exercises=exercises)

    async def workouts(self, *, include_deleted: bool = False) -> list[Workout]:
        """All workouts, newest first."""
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT w.id
                FROM liftlog_workouts w
                LEFT JOIN liftlog_tombstones t ON t.record_id = w.id
                WHERE %s OR NOT (w.is_deleted OR t.record_id IS NOT NULL)
                ORDER BY w.started_at DESC
                """,
                (include_deleted,),
            )
            ids = [row["id"] for row in await cur.fetchall()]
        return [await self.workout(workout_id, include_deleted=include_deleted) for workout_id in ids]

    async def history(self, set_id: str) -> list[SetRecord]:
        """Every version of the logical set containing ``set_id``, oldest first."""
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                WITH RECURSIVE back AS (
                    SELECT id, previous_version_id FROM liftlog_sets WHERE id = %(id)s
                    UNION ALL
                    SELECT p.id, p.previous_version_id
                    FROM liftlog_sets p JOIN back b ON p.id = b.previous_version_id
                ),
                root AS (
                    SELECT id FROM back WHERE previous_version_id IS NULL
                ),
                chain AS (
                    SELECT id, 0 AS depth FROM root
                    UNION ALL
                    SELECT n.id, c.depth + 1
                    FROM liftlog_sets n JOIN chain c ON n.previous_version_id = c.id
                )
                SELECT {_SET_COLUMNS}
                FROM chain
                JOIN liftlog_sets s ON s.id = chain.id
                LEFT JOIN liftlog_tombstones t ON t.record_id = s.id
                ORDER BY chain.depth
                """,
                {"id": set_id},
            )
            rows = await cur.fetchall()
        if not rows:
            raise RecordNotFoundError(f"set {set_id} does not exist")
        return [normalize_set_row(row) for row in rows]

    async def current_version(self, set_id: str) -> SetRecord:
        return (await self.history(set_id))[-1]

    async def snapshots(self, workout_id: str) -> list[dict[str, Any]]:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT document FROM liftlog_snapshots WHERE workout_id = %s ORDER BY id",
                (workout_id,),
            )
            return [row["document"] for row in await cur.fetchall()]

    async def latest_snapshot(self, workout_id: str) -> dict[str, Any] | None:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT document FROM liftlog_snapshots
                WHERE workout_id = %s
                ORDER BY id DESC
                LIMIT 1
                """,
                (workout_id,),
            )
            row = await cur.fetchone()
        return row["document"] if row else None
