"""Tests for the versioned snapshot migration chain."""

import copy
import logging

import pytest

from liftlog.snapshot_migrations import (
    CURRENT_SCHEMA_VERSION,
    LB_TO_KG,
    MIGRATIONS,
    SchemaVersionError,
    SnapshotMigration,
    migrate_snapshot,
    supported_versions,
    validate_chain,
)

from .builders import legacy_document


def test_chain_reaches_current_version():
    assert supported_versions() == ("1.0.0", "1.1.0", CURRENT_SCHEMA_VERSION)
    validate_chain(MIGRATIONS, CURRENT_SCHEMA_VERSION)


def test_pounds_are_converted_to_kilograms():
    migrated = migrate_snapshot(legacy_document(weight=225, unit="lb"))
    set_doc = migrated["exercises"][0]["sets"][0]
    assert migrated["schema_version"] == CURRENT_SCHEMA_VERSION
    assert set_doc["weight_kg"] == pytest.approx(225 * LB_TO_KG)
    assert "weight" not in set_doc
    assert "weight_unit" not in migrated["metadata"]


def test_kilograms_pass_through():
    migrated = migrate_snapshot(legacy_document(weight=100, unit="kg"))
    assert migrated["exercises"][0]["sets"][0]["weight_kg"] == 100


def test_bodyweight_set_keeps_null_weight():
    migrated = migrate_snapshot(legacy_document(weight=None))
    assert migrated["exercises"][0]["sets"][0]["weight_kg"] is None


def test_new_fields_get_defaults():
    migrated = migrate_snapshot(legacy_document())
    set_doc = migrated["exercises"][0]["sets"][0]
    assert set_doc["rir"] is None
    assert set_doc["is_failure"] is False
    assert set_doc["is_dropset"] is False
    assert migrated["metadata"]["timezone"] is None
    assert migrated["metadata"]["readiness_score"] is None


def test_muscle_group_becomes_lists():
    definition = migrate_snapshot(legacy_document())["exercises"][0]["exercise_definition"]
    assert definition["primary_muscle_groups"] == ["chest", "triceps"]
    assert definition["secondary_muscle_groups"] == []
    assert "muscle_group" not in definition


def test_input_is_not_mutated():
    document = legacy_document()
    before = copy.deepcopy(document)
    migrate_snapshot(document)
    assert document == before


def test_current_version_is_a_no_op():
    document = migrate_snapshot(legacy_document())
    assert migrate_snapshot(document) == document


def test_partial_target_version():
    migrated = migrate_snapshot(legacy_document(), target_version="1.1.0")
    assert migrated["schema_version"] == "1.1.0"
    assert migrated["exercises"][0]["exercise_definition"]["muscle_group"] == "chest, triceps"


@pytest.mark.parametrize("version", [None, "", "   "])
def test_missing_version_fails_closed(version):
    document = legacy_document()
    document["schema_version"] = version
    with pytest.raises(SchemaVersionError, match="no schema_version"):
        migrate_snapshot(document)


@pytest.mark.parametrize("document", [["1.2.0"], "1.2.0", 42])
def test_non_object_document_fails_closed(document):
    with pytest.raises(SchemaVersionError, match="must be a JSON object"):
        migrate_snapshot(document)


def test_unknown_version_fails_closed():
    document = legacy_document()
    document["schema_version"] = "0.9.0"
    with pytest.raises(SchemaVersionError, match="Unknown snapshot schema_version"):
        migrate_snapshot(document)


def test_unsupported_weight_unit():
    with pytest.raises(SchemaVersionError, match="stone"):
        migrate_snapshot(legacy_document(unit="stone"))


def test_each_step_is_logged(caplog):
    with caplog.at_level(logging.INFO, logger="liftlog.snapshot_migrations"):
        migrate_snapshot(legacy_document())
    steps = [(r.liftlog_from_version, r.liftlog_to_version) for r in caplog.records]
    assert steps == [("1.0.0", "1.1.0"), ("1.1.0", "1.2.0")]


class TestValidateChain:
    def _noop(self, document):
        return document

    def test_gap(self):
        chain = (
            SnapshotMigration("1.0.0", "1.1.0", self._noop),
            SnapshotMigration("1.2.0", "1.3.0", self._noop),
        )
        with pytest.raises(ValueError, match="gap"):
            validate_chain(chain, "1.3.0")

    def test_wrong_end(self):
        chain = (SnapshotMigration("1.0.0", "1.1.0", self._noop),)
        with pytest.raises(ValueError, match="ends at"):
            validate_chain(chain, "2.0.0")
