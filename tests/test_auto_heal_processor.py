"""
Tests for the auto_heal and workflow_validation job handlers.

Covers: autoheal/auto_heal_processor.py
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from autoheal.auto_heal_processor import (
    ExecutionNotFoundError,
    handle_auto_heal_job,
    handle_validation_job,
    start_auto_heal_processor,
    start_validation_processor,
)
from autoheal.healing_strategies import default_registry
from autoheal.self_heal_workflow import AutoHealer
from autoheal.validate_workflow import validate_workflow

EXEC_ID = "6f1c1c9e-8d1e-4d55-9a35-0f6f1f9f0001"


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def session_factory(db):
    return MagicMock(return_value=db)


@pytest.fixture
def healer():
    return AutoHealer(default_registry(), validate_workflow)


@pytest.fixture(autouse=True)
def no_supabase():
    with patch("autoheal.auto_heal_processor.sync_execution_status") as status, \
         patch("autoheal.auto_heal_processor.sync_healing_event") as event:
        yield SimpleNamespace(status=status, event=event)


def _execution(workflow, user_id="user-1"):
    return SimpleNamespace(workflow_json=workflow, user_id=user_id, validation_progress={})


# ── auto_heal ────────────────────────────────────────────────

class TestAutoHealJob:
    @patch("autoheal.auto_heal_processor.record_healing_result")
    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_success_enqueues_revalidation(self, mock_get, mock_update, mock_record,
                                           healer, session_factory, db, valid_workflow):
        valid_workflow["nodes"][2]["position"] = "bad"
        mock_get.return_value = _execution(valid_workflow)
        errors = validate_workflow(valid_workflow)["errors"]
        enqueue = MagicMock()

        result = handle_auto_heal_job(
            {"execution_id": EXEC_ID, "layer": "structure", "errors": errors},
            healer, session_factory, enqueue=enqueue,
        )

        assert result["success"] is True
        assert mock_update.call_args.args[2] == "auto_healing"
        mock_record.assert_called_once_with(db, EXEC_ID, result, errors)
        enqueue.assert_called_once_with("workflow_validation", {
            "execution_id": EXEC_ID,
            "workflow": result["workflow"],
            "user_id": "user-1",
            "retry_after_healing": True,
        })
        assert db.commit.call_count == 2
        db.close.assert_called_once()

    @patch("autoheal.auto_heal_processor.record_healing_result")
    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_failure_does_not_enqueue(self, mock_get, mock_update, mock_record,
                                      healer, session_factory, valid_workflow, no_supabase):
        valid_workflow["nodes"] = []
        valid_workflow["connections"] = {}
        mock_get.return_value = _execution(valid_workflow)
        errors = validate_workflow(valid_workflow)["errors"]
        enqueue = MagicMock()

        result = handle_auto_heal_job(
            {"execution_id": EXEC_ID, "layer": "structure", "errors": errors},
            healer, session_factory, enqueue=enqueue,
        )

        assert result["success"] is False
        enqueue.assert_not_called()
        assert mock_record.call_args.args[2]["success"] is False
        assert no_supabase.status.call_args.args[1] == "failed"

    @patch("autoheal.auto_heal_processor.get_execution", return_value=None)
    def test_missing_execution(self, mock_get, healer, session_factory, db):
        with pytest.raises(ExecutionNotFoundError):
            handle_auto_heal_job({"execution_id": EXEC_ID, "errors": []}, healer, session_factory)
        db.rollback.assert_called_once()
        db.close.assert_called_once()

    def test_missing_execution_id(self, healer, session_factory):
        with pytest.raises(ValueError):
            handle_auto_heal_job({"errors": []}, healer, session_factory)

    @patch("autoheal.auto_heal_processor.record_healing_result")
    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_enqueue_failure_propagates(self, mock_get, mock_update, mock_record,
                                        healer, session_factory, valid_workflow):
        mock_get.return_value = _execution(valid_workflow)
        enqueue = MagicMock(side_effect=RuntimeError("Enqueue failed: db down"))
        with pytest.raises(RuntimeError):
            handle_auto_heal_job({"execution_id": EXEC_ID, "errors": []},
                                 healer, session_factory, enqueue=enqueue)


# ── workflow_validation ──────────────────────────────────────

class TestValidationJob:
    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_valid_completes(self, mock_get, mock_update, session_factory, valid_workflow):
        mock_get.return_value = _execution(valid_workflow)
        enqueue = MagicMock()

        report = handle_validation_job({"execution_id": EXEC_ID}, session_factory, enqueue=enqueue)

        assert report["valid"] is True
        assert mock_update.call_args.args[2] == "completed"
        enqueue.assert_not_called()

    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_valid_with_deployment_test(self, mock_get, mock_update, session_factory, valid_workflow):
        mock_get.return_value = _execution(valid_workflow)
        enqueue = MagicMock()

        handle_validation_job({"execution_id": EXEC_ID, "skip_deployment_test": False},
                              session_factory, enqueue=enqueue)

        queue_name, job = enqueue.call_args.args
        assert queue_name == "deployment_test"
        assert job["execution_id"] == EXEC_ID

    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_fixable_queues_healing(self, mock_get, mock_update, session_factory, cyclic_workflow):
        mock_get.return_value = _execution(cyclic_workflow)
        enqueue = MagicMock()

        handle_validation_job({"execution_id": EXEC_ID}, session_factory, enqueue=enqueue)

        assert mock_update.call_args.args[2] == "queued"
        queue_name, job = enqueue.call_args.args
        assert queue_name == "auto_heal"
        assert job["layer"] == "business"
        assert job["errors"][0]["type"] == "circular_dependency"

    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_retry_after_healing_never_loops(self, mock_get, mock_update, session_factory,
                                             cyclic_workflow):
        mock_get.return_value = _execution({})
        enqueue = MagicMock()

        handle_validation_job(
            {"execution_id": EXEC_ID, "workflow": cyclic_workflow, "retry_after_healing": True},
            session_factory, enqueue=enqueue,
        )

        assert mock_update.call_args.args[2] == "failed"
        assert mock_update.call_args.kwargs["error_details"]["errors"][0]["type"] == "circular_dependency"
        enqueue.assert_not_called()

    @patch("autoheal.auto_heal_processor.update_execution_status")
    @patch("autoheal.auto_heal_processor.get_execution")
    def test_unfixable_fails(self, mock_get, mock_update, session_factory, valid_workflow):
        valid_workflow["nodes"] = []
        valid_workflow["connections"] = {}
        mock_get.return_value = _execution(valid_workflow)
        enqueue = MagicMock()

        handle_validation_job({"execution_id": EXEC_ID}, session_factory, enqueue=enqueue)

        assert mock_update.call_args.args[2] == "failed"
        enqueue.assert_not_called()

    @patch("autoheal.auto_heal_processor.get_execution", return_value=None)
    def test_missing_execution(self, mock_get, session_factory):
        with pytest.raises(ExecutionNotFoundError):
            handle_validation_job({"execution_id": EXEC_ID}, session_factory)


# ── Registration ─────────────────────────────────────────────

class TestRegistration:
    def test_auto_heal_processor(self, healer, session_factory):
        processor = MagicMock()
        start_auto_heal_processor(processor, healer, session_factory)

        args, kwargs = processor.start_processor.call_args
        assert args[0] == "auto_heal"
        assert kwargs["visibility_timeout"] == 120
        assert kwargs["batch_size"] == 5

    def test_validation_processor(self, session_factory):
        processor = MagicMock()
        start_validation_processor(processor, session_factory)

        args, kwargs = processor.start_processor.call_args
        assert args[0] == "workflow_validation"
        assert kwargs["visibility_timeout"] == 30

    @patch("autoheal.auto_heal_processor.handle_auto_heal_job")
    def test_registered_handler_dispatches(self, mock_handle, healer, session_factory):
        processor = MagicMock()
        start_auto_heal_processor(processor, healer, session_factory)
        handler = processor.start_processor.call_args.args[1]

        handler({"execution_id": EXEC_ID})

        mock_handle.assert_called_once_with({"execution_id": EXEC_ID}, healer, session_factory)
