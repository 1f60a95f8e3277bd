"""Tests for schema validation."""

import pytest

from bartloop.lib.validate import ValidationError, validate, validate_before_write


class TestValidate:

    def test_valid_task_document(self):
        validate({"tasks": [{"id": "A1", "workstream": "A", "title": "t"}]}, "tasks")

    def test_error_has_path(self):
        with pytest.raises(ValidationError) as exc:
            validate({"tasks": [{"id": "A1", "workstream": "A", "title": "t", "status": "done"}]}, "tasks")
        assert exc.value.schema_name == "tasks"
        assert exc.value.path == "tasks.0.status"

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            validate({}, "nope")

    def test_history_entry(self):
        validate({"timestamp": "t", "event": "reset", "task_id": "A1", "duration_ms": None}, "history_entry")
        with pytest.raises(ValidationError):
            validate({"timestamp": "t", "event": "reset", "task_id": "A1", "resets": -1}, "history_entry")


class TestValidateBeforeWrite:

    def test_refuses_invalid(self, tmp_path):
        with pytest.raises(ValidationError, match="Refusing to write"):
            validate_before_write({"tasks": "nope"}, "tasks", tmp_path / "tasks.json")
        assert not (tmp_path / "tasks.json").exists()
