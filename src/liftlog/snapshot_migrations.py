"""Ordered, version-gated transforms for stored snapshot documents.

Each migration declares the version it reads and the version it writes.
``migrate_snapshot`` walks the chain from a document's ``schema_version`` up to
``CURRENT_SCHEMA_VERSION``. Missing or unknown versions fail closed with
``SchemaVersionError``; nothing is guessed.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = "1.2.0"

LB_TO_KG = 0.453592


class SchemaVersionError(ValueError):
    """Snapshot version is missing, unknown, or cannot be migrated."""


@dataclass(frozen=True)
class SnapshotMigration:
    from_version: str
    to_version: str
    transform: Callable[[dict[str, Any]], dict[str, Any]]
    description: str = ""


def _iter_sets(document: dict[str, Any]):
    for exercise in document.get("exercises") or []:
        for set_doc in exercise.get("sets") or []:
            yield set_doc


def _explicit_units(document: dict[str, Any]) -> dict[str, Any]:
    metadata = document.setdefault("metadata", {})
    unit = str(metadata.pop("weight_unit", None) or "kg").strip().lower()
    if unit not in ("kg", "lb"):
        raise SchemaVersionError(f"Cannot migrate weights recorded in unit {unit!r}")
    factor = LB_TO_KG if unit == "lb" else 1.0

    for set_doc in _iter_sets(document):
        if "weight_kg" not in set_doc:
            weight = set_doc.pop("weight", None)
            set_doc["weight_kg"] = None if weight is None else float(weight) * factor
        set_doc.setdefault("rir", None)
        set_doc.setdefault("rest_seconds", None)
        set_doc.setdefault("tempo", None)
        set_doc.setdefault("is_failure", False)
        set_doc.setdefault("is_dropset", False)
    return document


def _muscle_group_lists(document: dict[str, Any]) -> dict[str, Any]:
    for exercise in document.get("exercises") or []:
        definition = exercise.setdefault("exercise_definition", {})
        legacy = definition.pop("muscle_group", None)
        if "primary_muscle_groups" not in definition:
            definition["primary_muscle_groups"] = [
                part.strip() for part in str(legacy or "").split(",") if part.strip()
            ]
        definition.setdefault("secondary_muscle_groups", [])

    metadata = document.setdefault("metadata", {})
    for key in ("timezone", "bodyweight_kg", "sleep_hours", "readiness_score", "deleted_at"):
        metadata.setdefault(key, None)
    return document


MIGRATIONS: tuple[SnapshotMigration, ...] = (
    SnapshotMigration(
        from_version="1.0.0",
        to_version="1.1.0",
        transform=_explicit_units,
        description="weight + weight_unit -> weight_kg; add rir, rest, tempo, failure and dropset flags",
    ),
    SnapshotMigration(
        from_version="1.1.0",
        to_version="1.2.0",
        transform=_muscle_group_lists,
        description="muscle_group -> primary/secondary lists; add readiness metadata",
    ),
)


def validate_chain(migrations: tuple[SnapshotMigration, ...], current: str) -> None:
    """A chain must be linear, gap-free and end at ``current``."""
    seen: set[str] = set()
    for previous, following in zip(migrations, migrations[1:]):
        if previous.to_version != following.from_version:
            raise ValueError(
                f"Migration gap: {previous.to_version} does not lead to {following.from_version}"
            )
    for migration in migrations:
        if migration.from_version in seen:
            raise ValueError(f"Duplicate migration from {migration.from_version}")
        seen.add(migration.from_version)
    if migrations and migrations[-1].to_version != current:
        raise ValueError(
            f"Migration chain ends at {migrations[-1].to_version}, expected {current}"
        )


validate_chain(MIGRATIONS, CURRENT_SCHEMA_VERSION)


def supported_versions() -> tuple[str, ...]:
    return tuple(m.from_version for m in MIGRATIONS) + (CURRENT_SCHEMA_VERSION,)


def migrate_snapshot(
    document: dict[str, Any],
    migrations: tuple[SnapshotMigration, ...] = MIGRATIONS,
    target_version: str = CURRENT_SCHEMA_VERSION,
) -> dict[str, Any]:
    """Return a copy of ``document`` upgraded to ``target_version``.

    The input is never mutated.
    """
    if not isinstance(document, dict):
        raise SchemaVersionError("Snapshot document must be a JSON object")
    version = document.get("schema_version")
    if not isinstance(version, str) or not version.strip():
        raise SchemaVersionError("Snapshot has no schema_version")
    version = version.strip()

    migrated = copy.deepcopy(document)
    by_source = {m.from_version: m for m in migrations}
    while version != target_version:
        step = by_source.get(version)
        if step is None:
            raise SchemaVersionError(
                f"Unknown snapshot schema_version {version!r}; "
                f"supported: {', '.join(supported_versions())}"
            )
        migrated = step.transform(migrated)
        migrated["schema_version"] = step.to_version
        logger.info(
            "Migrated snapshot %s from %s to %s",
            migrated.get("workout_id"),
            step.from_version,
            step.to_version,
            extra={
                "liftlog_workout_id": migrated.get("workout_id"),
                "liftlog_from_version": step.from_version,
                "liftlog_to_version": step.to_version,
            },
        )
        version = step.to_version
    migrated["schema_version"] = version
    return migrated
