"""
Tests for merge-patch decoding and application.

Covers version handling, decode-stage failures, sparse merge semantics,
validation that collects every violation, and completed_at derivation.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from task_tracker.errors import MalformedBodyError, TaskValidationError
from task_tracker.models import Task, TaskStatus
from task_tracker.patch import UNCHANGED, SetTo, TaskPatch, apply_patch, decode_patch, decode_status

CREATED = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
NOW = CREATED + timedelta(hours=1)


def _snapshot(**overrides) -> Task:
    task = Task(
        id=7,
        owner_id=1,
        title="Buy milk",
        description="2%",
        status=TaskStatus.PENDING,
        version=3,
        created_at=CREATED,
        updated_at=CREATED,
        completed_at=None,
    )
    return replace(task, **overrides)


class TestDecodeVersion:

    @pytest.mark.parametrize("document", [
        {},
        {"title": "New title"},
        {"status": "COMPLETED", "description": None},
        {"status": "BOGUS"},
        {"title": 42},
    ])
    def test_missing_version_names_version_field(self, document):
        with pytest.raises(TaskValidationError) as exc_info:
            decode_patch(document)
        assert [v.field for v in exc_info.value.violations] == ["version"]

    @pytest.mark.parametrize("version", [None, -1, "0", 1.5, True])
    def test_invalid_version_is_validation_failure(self, version):
        with pytest.raises(TaskValidationError) as exc_info:
            decode_patch({"version": version})
        assert exc_info.value.violations[0].field == "version"

    def test_version_only_patch_changes_nothing_else(self):
        patch = decode_patch({"version": 0})
        assert patch == TaskPatch(version=0)
        assert patch.title is UNCHANGED
        assert patch.description is UNCHANGED
        assert patch.status is UNCHANGED


class TestDecodeFields:

    def test_unknown_status_literal_is_malformed(self):
        with pytest.raises(MalformedBodyError):
            decode_patch({"status": "BOGUS", "version": 0})

    def test_lowercase_status_literal_is_malformed(self):
        with pytest.raises(MalformedBodyError):
            decode_patch({"status": "completed", "version": 0})

    def test_non_string_title_is_malformed(self):
        with pytest.raises(MalformedBodyError):
            decode_patch({"title": 42, "version": 0})

    def test_non_object_document_is_malformed(self):
        with pytest.raises(MalformedBodyError):
            decode_patch(["version", 0])

    def test_explicit_null_description_is_a_change(self):
        patch = decode_patch({"description": None, "version": 1})
        assert patch.description == SetTo(None)

    def test_status_decodes_to_enum(self):
        patch = decode_patch({"status": "COMPLETED", "version": 1})
        assert patch.status == SetTo(TaskStatus.COMPLETED)

    def test_immutable_keys_are_ignored(self):
        patch = decode_patch({"id": 99, "owner_id": 5, "created_at": "x", "version": 2})
        assert patch == TaskPatch(version=2)

    def test_decode_status_rejects_numbers(self):
        with pytest.raises(MalformedBodyError):
            decode_status(1)


class TestApplyPatch:

    def test_absent_keys_leave_fields_unchanged(self):
        snapshot = _snapshot()
        working = apply_patch(snapshot, TaskPatch(version=3, title=SetTo("Buy bread")), NOW)

        assert working.title == "Buy bread"
        assert working.description == "2%"
        assert working.status == TaskStatus.PENDING
        assert working.updated_at == NOW

    def test_null_description_clears_it(self):
        working = apply_patch(_snapshot(), TaskPatch(version=3, description=SetTo(None)), NOW)
        assert working.description is None

    def test_working_copy_carries_caller_version(self):
        working = apply_patch(_snapshot(version=3), TaskPatch(version=1), NOW)
        assert working.version == 1

    def test_identity_and_creation_fields_are_preserved(self):
        snapshot = _snapshot()
        working = apply_patch(snapshot, TaskPatch(version=3, title=SetTo("x")), NOW)
        assert (working.id, working.owner_id, working.created_at) == (7, 1, CREATED)

    def test_collects_all_violations(self):
        patch = TaskPatch(version=3, title=SetTo("   "), description=SetTo("d" * 1001))
        with pytest.raises(TaskValidationError) as exc_info:
            apply_patch(_snapshot(), patch, NOW)

        fields = sorted(v.field for v in exc_info.value.violations)
        assert fields == ["description", "title"]

    def test_title_too_long(self):
        with pytest.raises(TaskValidationError) as exc_info:
            apply_patch(_snapshot(), TaskPatch(version=3, title=SetTo("t" * 256)), NOW)
        assert exc_info.value.violations[0].field == "title"

    def test_null_status_is_validation_failure(self):
        with pytest.raises(TaskValidationError) as exc_info:
            apply_patch(_snapshot(), TaskPatch(version=3, status=SetTo(None)), NOW)
        assert [v.field for v in exc_info.value.violations] == ["status"]

    def test_completing_sets_completed_at(self):
        working = apply_patch(_snapshot(), TaskPatch(version=3, status=SetTo(TaskStatus.COMPLETED)), NOW)
        assert working.completed_at == NOW

    def test_recompleting_keeps_completed_at(self):
        snapshot = _snapshot(status=TaskStatus.COMPLETED, completed_at=CREATED)
        working = apply_patch(snapshot, TaskPatch(version=3, status=SetTo(TaskStatus.COMPLETED)), NOW)
        assert working.completed_at == CREATED

    def test_reopening_clears_completed_at(self):
        snapshot = _snapshot(status=TaskStatus.COMPLETED, completed_at=CREATED)
        working = apply_patch(snapshot, TaskPatch(version=3, status=SetTo(TaskStatus.PENDING)), NOW)
        assert working.completed_at is None

    def test_snapshot_is_not_modified(self):
        snapshot = _snapshot()
        apply_patch(snapshot, TaskPatch(version=3, title=SetTo("Other")), NOW)
        assert snapshot.title == "Buy milk"
