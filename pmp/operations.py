"""Operations the scheduler runs against each node."""

from enum import Enum
from typing import Callable, Optional, Sequence

from pmp.config import Direction
from pmp.exceptions import ExecError
from pmp.executor.registry import get_executor
from pmp.node import Node
from pmp.utils.logging import logger


class Operation(str, Enum):
    """Infrastructure operation run across a graph."""

    PREVIEW = "preview"
    APPLY = "apply"
    DESTROY = "destroy"
    REFRESH = "refresh"

    @property
    def direction(self) -> Direction:
        # Dependents are torn down before what they depend on
        if self == Operation.DESTROY:
            return Direction.REVERSE
        return Direction.FORWARD

    @property
    def action(self) -> str:
        """Executor method that implements the operation."""
        if self == Operation.PREVIEW:
            return "plan"
        return self.value

    @property
    def destructive(self) -> bool:
        return self == Operation.DESTROY


def build_operation(
    operation: Operation,
    extra_args: Sequence[str] = (),
    executor_name: Optional[str] = None,
) -> Callable[[Node], None]:
    """Create the per-node callable handed to the scheduler.

    The callable initializes the node's environment directory and then runs
    the operation's command there.

    Args:
        operation: Operation to run
        extra_args: Appended to every command line
        executor_name: Use this executor for every node instead of each
            node's own

    Returns:
        ``op(node)``; raises ExecError when the node's operation fails
    """
    operation = Operation(operation)
    extra_args = tuple(extra_args)

    def op(node: Node) -> None:
        if node.path is None:
            raise ExecError("Node has no environment directory", node=node.id)

        executor = get_executor(executor_name or node.executor_name)
        working_dir = str(node.path)
        logger.info(
            f"Running {operation.value}",
            node=str(node.id),
            executor=executor.name,
            working_dir=working_dir,
        )

        try:
            executor.init(working_dir)
            getattr(executor, operation.action)(node.executor_commands, working_dir, extra_args)
        except ExecError as e:
            if e.node is not None:
                raise
            raise ExecError(
                e.message, node=node.id, exit_code=e.exit_code, suggestions=e.suggestions
            ) from e

    return op
