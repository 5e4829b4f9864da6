"""Tests for the command union and payload parsing."""

import json

import pytest
from pydantic import ValidationError

from convflow.application.commands import (
    AnswerQuestion,
    ConfirmPlan,
    SetPlan,
    UpdateTaskStatus,
    command_types,
    parse_command,
)
from convflow.domain.models.workflow_state import TaskStatus


class TestParseCommand:
    def test_dict_payload(self) -> None:
        cmd = parse_command({"type": "update_task_status", "task_id": "t1", "status": "failed"})
        assert isinstance(cmd, UpdateTaskStatus)
        assert cmd.status == TaskStatus.FAILED

    def test_json_payload(self) -> None:
        cmd = parse_command(json.dumps({"type": "set_plan", "plan": {"id": "p", "tasks": []}}))
        assert isinstance(cmd, SetPlan)
        assert cmd.plan.version == 1

    def test_bare_command(self) -> None:
        assert isinstance(parse_command({"type": "confirm_plan"}), ConfirmPlan)

    @pytest.mark.parametrize(
        "answer",
        [True, "yes", ["a", "b"]],
    )
    def test_answer_shapes(self, answer) -> None:
        cmd = parse_command({"type": "answer_question", "question_id": "q", "answer": answer})
        assert isinstance(cmd, AnswerQuestion)
        assert cmd.answer == answer

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError):
            parse_command({"type": "launch_rockets"})

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            parse_command({"type": "confirm_plan", "force": True})

    def test_commands_are_frozen(self) -> None:
        cmd = UpdateTaskStatus(task_id="t1", status=TaskStatus.COMPLETED)
        with pytest.raises(ValidationError):
            cmd.task_id = "t2"


class TestCommandTypes:
    def test_tags_are_unique(self) -> None:
        tags = command_types()
        assert len(tags) == len(set(tags))
        assert "start" in tags
        assert "summarize_execution" in tags
