"""Tests for operations and the per-node callable."""

from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from pmp.config import Direction
from pmp.exceptions import ExecError
from pmp.node import NodeId
from pmp.operations import Operation, build_operation


@pytest.mark.parametrize(
    "operation, direction, action",
    [
        (Operation.PREVIEW, Direction.FORWARD, "plan"),
        (Operation.APPLY, Direction.FORWARD, "apply"),
        (Operation.REFRESH, Direction.FORWARD, "refresh"),
        (Operation.DESTROY, Direction.REVERSE, "destroy"),
    ],
)
def test_operation_properties(operation, direction, action):
    assert operation.direction == direction
    assert operation.action == action
    assert operation.destructive == (operation == Operation.DESTROY)


class TestBuildOperation:
    @pytest.fixture
    def executor(self):
        mock = MagicMock()
        mock.name = "opentofu"
        with patch("pmp.operations.get_executor", return_value=mock) as factory:
            mock.factory = factory
            yield mock

    def test_inits_then_runs_action(self, executor, make_node, tmp_path):
        node = replace(
            make_node("app:dev", path=tmp_path),
            executor_commands={"plan": "tofu plan -lock=false"},
        )

        build_operation(Operation.PREVIEW, extra_args=["-no-color"])(node)

        executor.factory.assert_called_once_with("opentofu")
        executor.init.assert_called_once_with(str(tmp_path))
        executor.plan.assert_called_once_with(
            {"plan": "tofu plan -lock=false"}, str(tmp_path), ("-no-color",)
        )

    def test_executor_override(self, executor, make_node, tmp_path):
        build_operation("apply", executor_name="none")(make_node("app:dev", path=tmp_path))

        executor.factory.assert_called_once_with("none")
        executor.apply.assert_called_once()

    def test_node_without_directory(self, executor, make_node):
        op = build_operation(Operation.APPLY)

        with pytest.raises(ExecError, match="no environment directory") as exc_info:
            op(make_node("app:dev"))

        assert exc_info.value.node == NodeId("app", "dev")
        executor.apply.assert_not_called()

    def test_failure_attributed_to_node(self, executor, make_node, tmp_path):
        executor.destroy.side_effect = ExecError("Command failed: tofu destroy", exit_code=1)

        with pytest.raises(ExecError) as exc_info:
            build_operation(Operation.DESTROY)(make_node("db:prod", path=tmp_path))

        assert exc_info.value.node == NodeId("db", "prod")
        assert exc_info.value.exit_code == 1
        assert "✗ Operation failed: db:prod" in str(exc_info.value)

    def test_init_failure_stops_action(self, executor, make_node, tmp_path):
        executor.init.side_effect = ExecError("tofu init failed")

        with pytest.raises(ExecError, match="tofu init failed"):
            build_operation(Operation.APPLY)(make_node("app:dev", path=tmp_path))

        executor.apply.assert_not_called()
