"""Append-only versioned record store.

The write API is deliberately two methods wide: ``append`` (a record or a
``Tombstone``) and ``supersede`` (replace one set version with a new one).
There is no update and no hard delete. Soft deletion is a tombstone entry;
an edit is a tombstone for the old set plus a new set whose
``previous_version_id`` points back at it.

Reads return materialized views: the stored record with ``is_deleted``
applied from the tombstone log.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Union

from .records import ExerciseInstance, SetRecord, Workout

logger = logging.getLogger(__name__)

Record = Union[Workout, ExerciseInstance, SetRecord]


class RecordStoreError(Exception):
    """Base class for store integrity errors."""


class DuplicateRecordError(RecordStoreError):
    pass


class RecordNotFoundError(RecordStoreError):
    pass


class StaleVersionError(RecordStoreError):
    """Raised when a supersession targets a version that is no longer current."""


@dataclass(frozen=True)
class Tombstone:
    record_id: str
    deleted_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _flatten(entry: Record) -> list[Record]:
    """Parent-first list of the rows one append writes, children detached."""
    if isinstance(entry, SetRecord):
        return [entry]
    if isinstance(entry, ExerciseInstance):
        sets = [replace(s, exercise_instance_id=entry.id) for s in entry.sets]
        return [replace(entry, sets=()), *sets]
    rows: list[Record] = [replace(entry, exercises=())]
    for exercise in entry.exercises:
        if exercise.workout_id and exercise.workout_id != entry.id:
            raise ValueError(
                f"exercise {exercise.id} belongs to workout {exercise.workout_id}, not {entry.id}"
            )
        rows.extend(_flatten(replace(exercise, workout_id=entry.id)))
    return rows


class InMemoryRecordStore:
    """Thread-safe append-only store for workouts, exercise instances and sets."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._workouts: dict[str, Workout] = {}
        self._exercises: dict[str, ExerciseInstance] = {}
        self._sets: dict[str, SetRecord] = {}
        self._tombstones: dict[str, Tombstone] = {}
        self._successor: dict[str, str] = {}
        self._snapshots: dict[str, list[str]] = {}
        self._log: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: Record | Tombstone) -> None:
        """Append one record (workouts cascade to their children) or a tombstone.

        A set carrying ``previous_version_id`` is a new version of that set and
        goes through ``supersede``. Workouts and exercises are validated as a
        whole batch, so a rejected append writes nothing.
        """
        if isinstance(entry, SetRecord) and entry.previous_version_id is not None:
            self.supersede(entry.previous_version_id, entry)
            return
        with self._lock:
            if isinstance(entry, Tombstone):
                self._append_tombstone(entry)
            elif isinstance(entry, (Workout, ExerciseInstance, SetRecord)):
                batch = _flatten(entry)
                self._check_batch(batch)
                for record in batch:
                    self._store(record)
            else:
                raise TypeError(f"Cannot append {type(entry).__name__} to the record store")

    def supersede(self, old_id: str, new_record: SetRecord) -> SetRecord:
        """Compare-and-append a new version of a set.

        Fails with ``StaleVersionError`` unless ``old_id`` is the live head of
        its chain, so two writers racing on the same version cannot both win.
        """
        if not isinstance(new_record, SetRecord):
            raise TypeError("Only sets carry a supersession chain")
        with self._lock:
            old = self._sets.get(old_id)
            if old is None:
                raise RecordNotFoundError(f"set {old_id} does not exist")
            if old_id in self._successor:
                raise StaleVersionError(
                    f"set {old_id} was already superseded by {self._successor[old_id]}"
                )
            if old_id in self._tombstones or old.is_deleted:
                raise StaleVersionError(f"set {old_id} is deleted")
            self._check_new_id(new_record.id)

            linked = replace(
                new_record,
                previous_version_id=old_id,
                exercise_instance_id=new_record.exercise_instance_id or old.exercise_instance_id,
                is_deleted=False,
            )
            self._store(linked)
            logger.info(
                "Superseded set %s with %s",
                old_id,
                linked.id,
                extra={"liftlog_set_id": linked.id, "liftlog_previous_version_id": old_id},
            )
            return linked

    def append_snapshot(self, document: dict[str, Any]) -> None:
        """Store an immutable copy of a canonical snapshot document."""
        workout_id = str(document.get("workout_id") or "").strip()
        if not workout_id:
            raise ValueError("snapshot document has no workout_id")
        frozen = json.dumps(document, sort_keys=True, default=str)
        with self._lock:
            self._snapshots.setdefault(workout_id, []).append(frozen)
            self._log.append(("snapshot", workout_id))
        logger.debug(
            "Appended snapshot for workout %s",
            workout_id,
            extra={"liftlog_workout_id": workout_id},
        )

    def _all_ids(self) -> set[str]:
        return set(self._workouts) | set(self._exercises) | set(self._sets)

    def _check_new_id(self, record_id: str) -> None:
        if record_id in self._workouts or record_id in self._exercises or record_id in self._sets:
            raise DuplicateRecordError(f"record {record_id} already exists")

    def _check_batch(self, batch: list[Record]) -> None:
        seen: set[str] = set()
        seen_sets: set[str] = set()
        claimed: set[str] = set()
        for record in batch:
            if record.id in seen:
                raise DuplicateRecordError(f"record {record.id} appears more than once")
            self._check_new_id(record.id)
            seen.add(record.id)
            if not isinstance(record, SetRecord):
                continue
            previous = record.previous_version_id
            if previous is not None:
                # Links inside a batch may only point at sets written earlier.
                if previous not in self._sets and previous not in seen_sets:
                    raise RecordNotFoundError(f"set {record.id} supersedes unknown set {previous}")
                if previous in self._successor or previous in claimed:
                    raise StaleVersionError(f"set {previous} was already superseded")
                claimed.add(previous)
            seen_sets.add(record.id)

    def _store(self, record: Record) -> None:
        if isinstance(record, Workout):
            self._workouts[record.id] = record
            self._log.append(("workout", record.id))
        elif isinstance(record, ExerciseInstance):
            self._exercises[record.id] = record
            self._log.append(("exercise", record.id))
        else:
            previous = record.previous_version_id
            if previous is not None:
                self._successor[previous] = record.id
                if not self._sets[previous].is_deleted:
                    self._append_tombstone(Tombstone(record_id=previous, deleted_at=_utcnow()))
            self._sets[record.id] = record
            self._log.append(("set", record.id))

    def _append_tombstone(self, tombstone: Tombstone) -> None:
        if tombstone.record_id not in self._all_ids():
            raise RecordNotFoundError(f"cannot tombstone unknown record {tombstone.record_id}")
        # The first tombstone wins; repeats are no-ops.
        if tombstone.record_id in self._tombstones:
            return
        self._tombstones[tombstone.record_id] = tombstone
        self._log.append(("tombstone", tombstone.record_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _materialize_set(self, s: SetRecord) -> SetRecord:
        if s.id in self._tombstones and not s.is_deleted:
            return replace(s, is_deleted=True)
        return s

    def _materialize_exercise(self, exercise: ExerciseInstance, include_deleted: bool) -> ExerciseInstance:
        sets = [
            self._materialize_set(s)
            for s in self._sets.values()
            if s.exercise_instance_id == exercise.id
        ]
        if not include_deleted:
            sets = [s for s in sets if not s.is_deleted]
        sets.sort(key=lambda s: (s.set_number, s.completed_at or datetime.min.replace(tzinfo=timezone.utc), s.id))
        return replace(
            exercise,
            is_deleted=exercise.is_deleted or exercise.id in self._tombstones,
            sets=tuple(sets),
        )

    def _materialize_workout(self, workout: Workout, include_deleted: bool) -> Workout:
        exercises = [
            self._materialize_exercise(ex, include_deleted)
            for ex in self._exercises.values()
            if ex.workout_id == workout.id
        ]
        if not include_deleted:
            exercises = [ex for ex in exercises if not ex.is_deleted]
        exercises.sort(key=lambda ex: (ex.order, ex.id))
        tombstone = self._tombstones.get(workout.id)
        if tombstone is not None:
            workout = replace(
                workout,
                is_deleted=True,
                deleted_at=workout.deleted_at or tombstone.deleted_at,
            )
        return replace(workout, exercises=tuple(exercises))

    def get(self, record_id: str) -> Record:
        with self._lock:
            if record_id in self._sets:
                return self._materialize_set(self._sets[record_id])
            if record_id in self._exercises:
                return self._materialize_exercise(self._exercises[record_id], include_deleted=True)
            if record_id in self._workouts:
                return self._materialize_workout(self._workouts[record_id], include_deleted=True)
        raise RecordNotFoundError(f"record {record_id} does not exist")

    def get_set(self, set_id: str) -> SetRecord:
        with self._lock:
            stored = self._sets.get(set_id)
            if stored is None:
                raise RecordNotFoundError(f"set {set_id} does not exist")
            return self._materialize_set(stored)

    def sets(
        self,
        exercise_instance_id: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[SetRecord]:
        with self._lock:
            result = [
                self._materialize_set(s)
                for s in self._sets.values()
                if exercise_instance_id is None or s.exercise_instance_id == exercise_instance_id
            ]
        if not include_deleted:
            result = [s for s in result if not s.is_deleted]
        return result

    def exercise_instances(
        self,
        workout_id: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ExerciseInstance]:
        with self._lock:
            result = [
                self._materialize_exercise(ex, include_deleted)
                for ex in self._exercises.values()
                if workout_id is None or ex.workout_id == workout_id
            ]
        if not include_deleted:
            result = [ex for ex in result if not ex.is_deleted]
        return sorted(result, key=lambda ex: (ex.order, ex.id))

    def workout(self, workout_id: str, *, include_deleted: bool = True) -> Workout:
        """Assemble one workout; deleted children are kept by default for audit."""
        with self._lock:
            stored = self._workouts.get(workout_id)
            if stored is None:
                raise RecordNotFoundError(f"workout {workout_id} does not exist")
            return self._materialize_workout(stored, include_deleted)

    def workouts(self, *, include_deleted: bool = False) -> list[Workout]:
        """All workouts, newest first."""
        with self._lock:
            result = [
                self._materialize_workout(w, include_deleted=True)
                for w in self._workouts.values()
            ]
        if not include_deleted:
            result = [w for w in result if not w.is_deleted]
        return sorted(result, key=lambda w: w.started_at, reverse=True)

    def history(self, set_id: str) -> list[SetRecord]:
        """Every version of the logical set containing ``set_id``, oldest first."""
        with self._lock:
            if set_id not in self._sets:
                raise RecordNotFoundError(f"set {set_id} does not exist")
            root = self._sets[set_id]
            while root.previous_version_id is not None:
                root = self._sets[root.previous_version_id]
            chain = [self._materialize_set(root)]
            cursor = root.id
            while cursor in self._successor:
                cursor = self._successor[cursor]
                chain.append(self._materialize_set(self._sets[cursor]))
        return chain

    def current_version(self, set_id: str) -> SetRecord:
        return self.history(set_id)[-1]

    def snapshots(self, workout_id: str) -> list[dict[str, Any]]:
        with self._lock:
            stored = list(self._snapshots.get(workout_id, []))
        return [json.loads(raw) for raw in stored]

    def latest_snapshot(self, workout_id: str) -> dict[str, Any] | None:
        with self._lock:
            stored = self._snapshots.get(workout_id)
            if not stored:
                return None
            return json.loads(stored[-1])

    def log(self) -> list[tuple[str, str]]:
        """Append order of every write as ``(kind, id)`` pairs."""
        with self._lock:
            return copy.copy(self._log)
