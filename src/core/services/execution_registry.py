import datetime
import logging
import threading
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from core.errors import AlreadyRunningError, ExecutionFinishedError
from core.models.test_execution import TestExecution
from core.models.test_state import TestStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _snapshot(execution: TestExecution) -> TestExecution:
    return replace(
        execution,
        config=dict(execution.config),
        metrics=dict(execution.metrics),
        summary=dict(execution.summary),
    )


class ExecutionRegistry:
    """
    Authoritative map from test id to its execution record and process handle.

    Every read and write goes through the methods below, under one lock.
    Callers only ever receive copies of the records. Lock order: the
    orchestrator's emit lock may be held when calling in; nothing else is
    acquired while this lock is held.
    """

    def __init__(self, history_limit: int = 1000):
        self._lock = threading.RLock()
        self._executions: Dict[str, TestExecution] = {}
        self._handles: Dict[str, Any] = {}
        # Finished ids in completion order, oldest first, for eviction
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self.history_limit = max(1, history_limit)

    # -- lifecycle ---------------------------------------------------------

    def start(self, test_id: str, name: str = "", config: Optional[Dict[str, Any]] = None) -> TestExecution:
        """Register a new execution as RUNNING."""
        with self._lock:
            existing = self._executions.get(test_id)
            if existing is not None:
                if existing.status is TestStatus.RUNNING:
                    raise AlreadyRunningError(test_id)
                raise ExecutionFinishedError(test_id)
            execution = TestExecution(
                id=test_id,
                name=name or f"Load Test {test_id}",
                status=TestStatus.RUNNING,
                started_at=_utcnow(),
                config=dict(config or {}),
            )
            self._executions[test_id] = execution
            logger.info(f"Execution registered: {test_id}")
            return _snapshot(execution)

    def attach_handle(self, test_id: str, handle: Any) -> bool:
        """Bind the live process handle. Returns True if a stop was already requested."""
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is None or execution.status is not TestStatus.RUNNING:
                raise RuntimeError(f"Cannot attach a process to {test_id}: not running")
            if test_id in self._handles:
                raise RuntimeError(f"A process is already attached to {test_id}")
            self._handles[test_id] = handle
            return execution.stop_requested

    def get_handle(self, test_id: str) -> Optional[Any]:
        with self._lock:
            return self._handles.get(test_id)

    def request_stop(self, test_id: str) -> Tuple[bool, Optional[Any]]:
        """
        Flag a running execution for stopping.

        Returns (accepted, handle). `accepted` is False when the test is not
        running; `handle` is None when the process is not spawned yet.
        """
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is None or execution.status is not TestStatus.RUNNING:
                return False, None
            execution.stop_requested = True
            return True, self._handles.get(test_id)

    def mark_forced(self, test_id: str):
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is not None and execution.status is TestStatus.RUNNING:
                execution.forced_termination = True

    def finish(self, test_id: str, exit_code: Optional[int] = None, cause: Optional[str] = None) -> TestExecution:
        """
        Move a running execution to its terminal state and release its handle.

        A requested stop always ends as STOPPED. Otherwise an explicit cause
        or a non-zero exit code means FAILED, exit code 0 means COMPLETED.
        Calling this on an already finished execution returns it unchanged.
        """
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is None:
                raise KeyError(test_id)
            if execution.status.is_terminal:
                return _snapshot(execution)

            if execution.stop_requested:
                execution.status = TestStatus.STOPPED
            elif cause is not None:
                execution.status = TestStatus.FAILED
                execution.last_error = cause
            elif exit_code == 0:
                execution.status = TestStatus.COMPLETED
            else:
                execution.status = TestStatus.FAILED
                execution.last_error = f"Load generator exited with code {exit_code}"

            execution.exit_code = exit_code
            execution.completed_at = _utcnow()
            execution.duration_seconds = (execution.completed_at - execution.started_at).total_seconds()
            self._handles.pop(test_id, None)

            self._finished[test_id] = None
            self._evict_finished()

            logger.info(f"Execution {test_id} finished: {execution.status.value} (exit code {exit_code})")
            return _snapshot(execution)

    def _evict_finished(self):
        while len(self._finished) > self.history_limit:
            old_id, _ = self._finished.popitem(last=False)
            self._executions.pop(old_id, None)
            logger.debug(f"Evicted finished execution {old_id} from registry")

    # -- per-run bookkeeping -----------------------------------------------

    def next_sequence(self, test_id: str) -> int:
        """Allocate the next event sequence number for a test (starts at 1)."""
        with self._lock:
            execution = self._executions[test_id]
            execution.last_sequence += 1
            return execution.last_sequence

    def record_metrics(self, test_id: str, values: Dict[str, float]):
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is not None:
                execution.metrics.update(values)

    def record_summary(self, test_id: str, summary: Dict[str, float]):
        with self._lock:
            execution = self._executions.get(test_id)
            if execution is not None:
                execution.summary = dict(summary)

    # -- queries -----------------------------------------------------------

    def get(self, test_id: str) -> Optional[TestExecution]:
        with self._lock:
            execution = self._executions.get(test_id)
            return _snapshot(execution) if execution is not None else None

    def status(self, test_id: str) -> TestStatus:
        """IDLE for identifiers the registry does not know."""
        with self._lock:
            execution = self._executions.get(test_id)
            return execution.status if execution is not None else TestStatus.IDLE

    def list_running(self) -> List[TestExecution]:
        with self._lock:
            return [
                _snapshot(execution)
                for execution in self._executions.values()
                if execution.status is TestStatus.RUNNING
            ]

    def __contains__(self, test_id: str) -> bool:
        with self._lock:
            return test_id in self._executions
