"""
Tests for the execution repository.

Covers: db/repo.py, db/models.py
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from db.models import WorkflowExecution
from db.repo import (
    create_execution,
    get_execution,
    get_healing_stats,
    record_healing_result,
    update_execution_status,
)

EXEC_ID = "6f1c1c9e-8d1e-4d55-9a35-0f6f1f9f0001"


def _execution(**overrides):
    fields = {
        "id": uuid.UUID(EXEC_ID),
        "user_id": "user-1",
        "workflow_json": {"name": "Original"},
        "validation_progress": {"stage": "validation"},
        "status": "queued",
        "retry_count": 0,
        "metadata_": {"source": "chat"},
    }
    fields.update(overrides)
    return WorkflowExecution(**fields)


def _db_returning(execution):
    db = MagicMock()
    db.query.return_value.filter.return_value.first.return_value = execution
    return db


class TestCreateAndGet:
    def test_create_flushes_without_commit(self):
        db = MagicMock()
        execution = create_execution(db, {"name": "Flow"}, user_id="u1", metadata={"k": "v"})

        db.add.assert_called_once_with(execution)
        db.flush.assert_called_once()
        db.commit.assert_not_called()
        assert execution.status == "queued"
        assert execution.workflow_json == {"name": "Flow"}
        assert execution.metadata_ == {"k": "v"}

    def test_malformed_id_short_circuits(self):
        db = MagicMock()
        assert get_execution(db, "not-a-uuid") is None
        db.query.assert_not_called()

    def test_get_found(self):
        execution = _execution()
        assert get_execution(_db_returning(execution), EXEC_ID) is execution


class TestUpdateStatus:
    def test_terminal_status_sets_completed_at(self):
        execution = _execution()
        db = _db_returning(execution)

        assert update_execution_status(db, EXEC_ID, "failed", error_details={"errors": []}) is True

        assert execution.status == "failed"
        assert execution.completed_at is not None
        assert execution.error_details == {"errors": []}
        assert execution.validation_progress == {"stage": "validation"}

    def test_repeat_is_safe(self):
        execution = _execution()
        db = _db_returning(execution)
        update_execution_status(db, EXEC_ID, "queued", validation_progress={"valid": False})
        update_execution_status(db, EXEC_ID, "queued", validation_progress={"valid": False})
        assert execution.status == "queued"
        assert execution.validation_progress == {"valid": False}
        assert execution.completed_at is None

    def test_missing_execution(self):
        assert update_execution_status(_db_returning(None), EXEC_ID, "queued") is False

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            update_execution_status(MagicMock(), EXEC_ID, "deploying")


class TestRecordHealingResult:
    def test_success_overwrites_document(self):
        execution = _execution()
        db = _db_returning(execution)
        fix = {"fix_type": "fix_node_positions", "confidence": 0.95}
        result = {
            "success": True, "workflow": {"name": "Healed"}, "applied_fixes": [fix],
            "remaining_errors": [], "confidence": 0.95, "attempts": 1,
        }

        record_healing_result(db, EXEC_ID, result, [{"type": "invalid_position"}])

        assert execution.workflow_json == {"name": "Healed"}
        assert execution.metadata_["auto_healed"] is True
        assert execution.metadata_["applied_fixes"] == [fix]
        assert execution.metadata_["healed_error_types"] == ["invalid_position"]
        assert execution.metadata_["source"] == "chat"
        assert execution.validation_progress["healing"]["fixes_applied"] == 1
        assert execution.status == "queued"

    def test_failure_keeps_document(self):
        execution = _execution()
        db = _db_returning(execution)
        remaining = [{"type": "minItems"}]
        result = {
            "success": False, "workflow": None, "applied_fixes": [],
            "remaining_errors": remaining, "confidence": 0.0, "attempts": 1,
        }

        record_healing_result(db, EXEC_ID, result, remaining)

        assert execution.workflow_json == {"name": "Original"}
        assert execution.status == "failed"
        assert execution.error_details == {"remaining_errors": remaining}
        assert execution.metadata_["auto_healed"] is False
        assert execution.metadata_["heal_attempted"] is True


class TestHealingStats:
    def _rows(self):
        return [
            _execution(metadata_={"heal_attempted": True, "auto_healed": True,
                                  "healed_error_types": ["invalid_position", "required"]}),
            _execution(metadata_={"heal_attempted": True, "auto_healed": True,
                                  "healed_error_types": ["invalid_position"]}),
            _execution(metadata_={"heal_attempted": True, "auto_healed": False,
                                  "healed_error_types": ["circular_dependency"]}),
            _execution(metadata_={}),
            _execution(metadata_=None),
        ]

    def test_stats(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.all.return_value = self._rows()

        stats = get_healing_stats(db, "week")

        assert stats["timeframe"] == "week"
        assert stats["total_attempts"] == 3
        assert stats["successful_heals"] == 2
        assert stats["success_rate"] == 66.67
        assert stats["common_errors"][0] == {"error_type": "invalid_position", "count": 2}

    def test_empty_window(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.all.return_value = []
        stats = get_healing_stats(db)
        assert stats["success_rate"] == 0.0
        assert stats["common_errors"] == []

    def test_unknown_timeframe(self):
        with pytest.raises(ValueError):
            get_healing_stats(MagicMock(), "year")


class TestModel:
    def test_to_dict(self):
        now = datetime(2026, 1, 2, tzinfo=timezone.utc)
        execution = _execution(created_at=now, updated_at=now)
        data = execution.to_dict()
        assert data["id"] == EXEC_ID
        assert data["workflow"] == {"name": "Original"}
        assert data["metadata"] == {"source": "chat"}
        assert data["created_at"] == now.isoformat()
        assert data["completed_at"] is None
