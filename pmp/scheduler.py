"""Level-by-level execution of an operation across the dependency graph."""

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pmp.config import Direction, FailurePolicy
from pmp.node import ExecutorKind, Node, NodeId, OperationOutcome, OutcomeStatus
from pmp.utils.logging import logger

OperationFn = Callable[[Node], None]

REASON_DEPENDENCY_ONLY = "dependency-only project"
REASON_STOPPED = "not started: run stopped after a failure"
REASON_INTERRUPTED = "not started: run interrupted"


class ContinueDecision(str, Enum):
    """What happens after a level that had failures."""

    CONTINUE = "continue"
    STOP_NOW = "stop_now"
    STOP_AFTER_LEVEL = "stop_after_level"


def should_continue_after_failures(policy: FailurePolicy, level_failures: int) -> ContinueDecision:
    """Map a failure policy and a level's failure count to a decision."""
    if level_failures == 0:
        return ContinueDecision.CONTINUE
    if policy == FailurePolicy.STOP:
        return ContinueDecision.STOP_NOW
    if policy == FailurePolicy.FINISH_LEVEL:
        return ContinueDecision.STOP_AFTER_LEVEL
    return ContinueDecision.CONTINUE


@dataclass
class ExecutionResults:
    """Outcomes of one run, in level order and node-id order within a level."""

    direction: Direction
    outcomes: List[OperationOutcome] = field(default_factory=list)
    duration: float = 0.0
    interrupted: bool = False
    halted_after_level: Optional[int] = None

    def get_outcome(self, node_id: NodeId) -> Optional[OperationOutcome]:
        for outcome in self.outcomes:
            if outcome.node_id == node_id:
                return outcome
        return None

    def _with_status(self, status: OutcomeStatus) -> List[NodeId]:
        return [o.node_id for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> List[NodeId]:
        return self._with_status(OutcomeStatus.SUCCESS)

    @property
    def failed(self) -> List[NodeId]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> List[NodeId]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "succeeded": [n.key for n in self.succeeded],
            "failed": [n.key for n in self.failed],
            "skipped": [n.key for n in self.skipped],
            "interrupted": self.interrupted,
            "halted_after_level": self.halted_after_level,
            "duration": round(self.duration, 3),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class ExecutionScheduler:
    """Drives an operation across levels with a barrier between levels.

    Within a level at most ``max_parallel`` operations run at once on a
    worker pool. Only the control thread touches the outcome collection;
    workers hand their outcome back through their future.
    """

    def __init__(
        self,
        nodes: Mapping[NodeId, Node],
        max_parallel: int = 1,
        on_failure: FailurePolicy = FailurePolicy.CONTINUE,
        cancel_event: Optional[threading.Event] = None,
    ):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.nodes = nodes
        self.max_parallel = max_parallel
        self.on_failure = FailurePolicy(on_failure)
        self.cancel_event = cancel_event or threading.Event()

    def execute(
        self,
        levels: Sequence[Sequence[NodeId]],
        op: OperationFn,
        direction: Direction = Direction.FORWARD,
    ) -> ExecutionResults:
        """Run ``op`` on every node, level by level.

        Args:
            levels: Level partition, dependencies first
            op: Called with each node; raising marks the node failed
            direction: ``REVERSE`` consumes the same levels back to front

        Returns:
            ExecutionResults covering every node in ``levels``
        """
        direction = Direction(direction)
        ordered = list(levels) if direction == Direction.FORWARD else list(reversed(levels))
        results = ExecutionResults(direction=direction)
        start = time.time()
        halt_reason: Optional[str] = None

        logger.info(
            "Starting execution",
            levels=len(ordered),
            direction=direction.value,
            max_parallel=self.max_parallel,
            on_failure=self.on_failure.value,
        )

        for level_idx, level in enumerate(ordered):
            level_ids = sorted(level)

            if halt_reason is None and self.cancel_event.is_set():
                results.interrupted = True
                halt_reason = REASON_INTERRUPTED

            if halt_reason is not None:
                results.outcomes.extend(_skipped(node_id, halt_reason) for node_id in level_ids)
                continue

            logger.info(
                f"Executing level {level_idx + 1}/{len(ordered)}",
                nodes=[str(n) for n in level_ids],
            )
            level_outcomes, interrupted = self._run_level(level_ids, op)
            results.outcomes.extend(level_outcomes)

            if interrupted:
                results.interrupted = True
                results.halted_after_level = level_idx
                halt_reason = REASON_INTERRUPTED
                logger.warning("Execution interrupted, remaining nodes will not start")
                continue

            failures = sum(1 for o in level_outcomes if o.status == OutcomeStatus.FAILED)
            decision = should_continue_after_failures(self.on_failure, failures)

            if decision != ContinueDecision.CONTINUE:
                results.halted_after_level = level_idx
                halt_reason = REASON_STOPPED
                logger.error(
                    f"Stopping after level {level_idx + 1}",
                    failures=failures,
                    policy=self.on_failure.value,
                )
            elif failures:
                logger.warning(
                    f"Level {level_idx + 1} had failures, continuing",
                    failures=failures,
                    policy=self.on_failure.value,
                )

        results.duration = time.time() - start
        logger.info(
            "Execution finished",
            succeeded=len(results.succeeded),
            failed=len(results.failed),
            skipped=len(results.skipped),
            duration_s=round(results.duration, 2),
        )
        return results

    def _run_level(
        self, level_ids: List[NodeId], op: OperationFn
    ) -> Tuple[List[OperationOutcome], bool]:
        outcomes: Dict[NodeId, OperationOutcome] = {}
        pending = deque()

        for node_id in level_ids:
            node = self.nodes[node_id]
            if node.executor_kind == ExecutorKind.NONE:
                logger.info("Skipping node", node=str(node_id), reason=REASON_DEPENDENCY_ONLY)
                outcomes[node_id] = _skipped(node_id, REASON_DEPENDENCY_ONLY)
            else:
                pending.append(node)

        stop = False
        interrupted = False
        in_flight: Dict[Future, NodeId] = {}

        if pending:
            workers = min(self.max_parallel, len(pending))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pmp-worker") as pool:
                try:
                    while pending or in_flight:
                        while pending and len(in_flight) < self.max_parallel and not stop:
                            if self.cancel_event.is_set():
                                stop = interrupted = True
                                break
                            node = pending.popleft()
                            in_flight[pool.submit(self._run_node, node, op)] = node.id

                        if not in_flight:
                            break

                        done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                        for future in done:
                            node_id = in_flight.pop(future)
                            outcome = future.result()
                            outcomes[node_id] = outcome
                            if (
                                outcome.status == OutcomeStatus.FAILED
                                and self.on_failure == FailurePolicy.STOP
                            ):
                                stop = True
                except KeyboardInterrupt:
                    # In-flight operations finish; external processes are not killed here
                    self.cancel_event.set()
                    stop = interrupted = True
                    logger.warning(
                        "Interrupt received, waiting for running operations",
                        running=[str(n) for n in in_flight.values()],
                    )
                    for future, node_id in in_flight.items():
                        outcomes[node_id] = future.result()
                    in_flight.clear()

        reason = REASON_INTERRUPTED if interrupted else REASON_STOPPED
        for node in pending:
            outcomes[node.id] = _skipped(node.id, reason)

        return [outcomes[node_id] for node_id in level_ids], interrupted

    def _run_node(self, node: Node, op: OperationFn) -> OperationOutcome:
        start = time.time()
        try:
            op(node)
        except Exception as e:
            duration = time.time() - start
            message = getattr(e, "message", None) or str(e)
            logger.error(
                "Node failed",
                node=str(node.id),
                error=message,
                error_type=type(e).__name__,
                duration_s=round(duration, 2),
            )
            return OperationOutcome(
                node_id=node.id, status=OutcomeStatus.FAILED, error=message, duration=duration
            )

        duration = time.time() - start
        logger.info("Node completed", node=str(node.id), duration_s=round(duration, 2))
        return OperationOutcome(node_id=node.id, status=OutcomeStatus.SUCCESS, duration=duration)


def _skipped(node_id: NodeId, reason: str) -> OperationOutcome:
    return OperationOutcome(node_id=node_id, status=OutcomeStatus.SKIPPED, reason=reason)


def execute(
    nodes: Mapping[NodeId, Node],
    levels: Sequence[Sequence[NodeId]],
    op: OperationFn,
    direction: Direction = Direction.FORWARD,
    max_parallel: int = 1,
    on_failure: FailurePolicy = FailurePolicy.CONTINUE,
    cancel_event: Optional[threading.Event] = None,
) -> ExecutionResults:
    """Run ``op`` across ``levels``; see ExecutionScheduler."""
    scheduler = ExecutionScheduler(
        nodes, max_parallel=max_parallel, on_failure=on_failure, cancel_event=cancel_event
    )
    return scheduler.execute(levels, op, direction=direction)
