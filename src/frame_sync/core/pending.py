"""
Pending Operations - Wait-then-act requests against remote page state.

An operation polls a predicate until it holds, then runs an action and
resolves with its result. It fails when its deadline passes, when it is
cancelled, or when its target frame detaches. Each operation runs in its own
task with its own deadline timer, so operations never wait on one another and
never block event dispatch.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Set

from frame_sync.core.errors import (
    OperationCancelledError,
    OperationTimeoutError,
    TargetDetachedError,
)
from frame_sync.core.events import EventDispatcher, PageEvent

if TYPE_CHECKING:
    from frame_sync.core.frames import Frame, FrameTree

logger = logging.getLogger("frame_sync")

DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 0.1


class OperationState(Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    TARGET_DETACHED = "target_detached"
    FAILED = "failed"


Predicate = Callable[["PendingOperation"], Awaitable[Any]]
Action = Callable[[], Awaitable[Any]]


class PendingOperation:
    """
    Handle for one in-flight operation.

    Await it to get the result. Awaiting is shielded: cancelling one awaiter
    does not cancel the operation; call cancel() for that.
    """

    def __init__(self, registry: PendingOperationRegistry, kind: str, condition: str,
                 target: Optional[int], timeout: float, created_at: float,
                 future: asyncio.Future):
        self.kind = kind
        # Predicates update this to describe whatever is still unmet
        self.condition = condition
        self._registry = registry
        self._target = target
        self._timeout = timeout
        self._created_at = created_at
        self._future = future
        self._state = OperationState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def target(self) -> Optional[int]:
        """Token of the target frame, if any."""
        return self._target

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def deadline(self) -> Optional[float]:
        if not self._timeout:
            return None
        return self._created_at + self._timeout

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state is not OperationState.PENDING

    def cancel(self) -> bool:
        """Cancel the operation. Returns False if it already finished."""
        return self._registry._finish(
            self,
            OperationState.CANCELLED,
            error=OperationCancelledError(
                f"{self.kind} was cancelled",
                method="PendingOperation.cancel",
            ),
        )

    def result(self) -> Any:
        return self._future.result()

    def __await__(self):
        return asyncio.shield(self._future).__await__()

    def __repr__(self) -> str:
        return f"<PendingOperation {self.kind} state={self._state.value} condition={self.condition!r}>"


class PendingOperationRegistry:
    """Tracks pending operations for one page."""

    def __init__(self, tree: FrameTree, dispatcher: EventDispatcher,
                 default_timeout: float = DEFAULT_TIMEOUT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self._tree = tree
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self._operations: Set[PendingOperation] = set()
        self._wakeup: Optional[asyncio.Event] = None

        dispatcher.on(PageEvent.FRAME_DETACHED, self._on_frame_detached)
        dispatcher.on(PageEvent.FRAME_ATTACHED, self._on_frame_changed)
        dispatcher.on(PageEvent.FRAME_NAVIGATED, self._on_frame_changed)

    @property
    def pending(self) -> List[PendingOperation]:
        return [op for op in self._operations if not op.done]

    def start(
        self,
        kind: str,
        predicate: Predicate,
        action: Optional[Action] = None,
        *,
        condition: str,
        target: Optional[Frame] = None,
        timeout: Optional[float] = None,
    ) -> PendingOperation:
        """
        Create an operation and start driving it.

        Args:
            kind: Short name used in errors and logs, e.g. "screenshot".
            predicate: Awaited with the operation until it returns truthy.
                May raise TargetDetachedError.
            action: Awaited once the predicate holds; its result is the
                operation's result. Defaults to returning True.
            condition: Description of the unmet condition, e.g.
                "element is not visible".
            target: Frame the operation depends on.
            timeout: Seconds from creation; None uses the default, 0 waits forever.
        """
        loop = asyncio.get_running_loop()
        if timeout is None:
            timeout = self.default_timeout

        op = PendingOperation(
            self,
            kind,
            condition,
            target.token if target is not None else None,
            timeout,
            loop.time(),
            loop.create_future(),
        )
        self._operations.add(op)
        if timeout:
            op._timer = loop.call_at(op.created_at + timeout, self._expire, op)
        op._task = loop.create_task(self._drive(op, predicate, action))
        logger.debug(
            f"Started {kind}",
            extra={"operation": kind, "timeout": timeout, "target": op.target},
        )
        return op

    async def run(
        self,
        kind: str,
        predicate: Predicate,
        action: Optional[Action] = None,
        *,
        condition: str,
        target: Optional[Frame] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """start() and await the result. Cancelling the caller cancels the operation."""
        op = self.start(kind, predicate, action, condition=condition, target=target, timeout=timeout)
        try:
            return await op
        except asyncio.CancelledError:
            op.cancel()
            raise

    def recheck(self) -> None:
        """Wake every waiting predicate for an immediate re-evaluation."""
        if self._wakeup is not None:
            self._wakeup.set()
            self._wakeup = None

    def cancel_all(self, error: Exception) -> int:
        """Fail every pending operation with error. Returns how many were failed."""
        state = OperationState.TARGET_DETACHED if isinstance(error, TargetDetachedError) else OperationState.FAILED
        count = 0
        for op in list(self._operations):
            if self._finish(op, state, error=error):
                count += 1
        return count

    # =========================================================================
    # Internals
    # =========================================================================

    def _wakeup_event(self) -> asyncio.Event:
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        return self._wakeup

    def _check_target(self, op: PendingOperation) -> None:
        if op.target is not None and self._tree.resolve(op.target) is None:
            raise TargetDetachedError(
                f"Target frame of {op.kind} has been detached",
                method=op.kind,
            )

    async def _drive(self, op: PendingOperation, predicate: Predicate,
                     action: Optional[Action]) -> None:
        try:
            while True:
                self._check_target(op)
                if await predicate(op):
                    break
                wakeup = self._wakeup_event()
                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

            result = await action() if action is not None else True
            # No result for a target that went away while the action ran
            self._check_target(op)
            self._finish(op, OperationState.SATISFIED, result=result)
        except TargetDetachedError as e:
            self._finish(op, OperationState.TARGET_DETACHED, error=e)
        except asyncio.CancelledError:
            if not op.done:
                op.cancel()
            raise
        except Exception as e:
            logger.warning(
                f"{op.kind} failed: {e}",
                extra={"operation": op.kind, "error_type": type(e).__name__},
            )
            self._finish(op, OperationState.FAILED, error=e)

    def _expire(self, op: PendingOperation) -> None:
        self._finish(
            op,
            OperationState.TIMED_OUT,
            error=OperationTimeoutError(
                f"Timeout {round(op.timeout * 1000)}ms exceeded while waiting for {op.kind}: {op.condition}",
                timeout=op.timeout,
                condition=op.condition,
                method=op.kind,
            ),
        )

    def _finish(self, op: PendingOperation, state: OperationState,
                result: Any = None, error: Optional[BaseException] = None) -> bool:
        if op.done:
            return False
        op._state = state
        self._operations.discard(op)
        if op._timer is not None:
            op._timer.cancel()
        if not op._future.done():
            if error is not None:
                op._future.set_exception(error)
                # Mark retrieved so unawaited failures do not warn at GC
                op._future.exception()
            else:
                op._future.set_result(result)
        task = op._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        log = logger.debug if state is OperationState.SATISFIED else logger.info
        log(
            f"{op.kind} {state.value}",
            extra={"operation": op.kind, "state": state.value, "target": op.target},
        )
        return True

    def _on_frame_detached(self, frame: Frame) -> None:
        for op in list(self._operations):
            if op.target == frame.token:
                self._finish(
                    op,
                    OperationState.TARGET_DETACHED,
                    error=TargetDetachedError(
                        f"Target frame of {op.kind} has been detached",
                        method=op.kind,
                    ),
                )
        self.recheck()

    def _on_frame_changed(self, _: Frame) -> None:
        self.recheck()
