import threading

import pytest

from core.errors import AlreadyRunningError, ExecutionFinishedError
from core.models.test_state import TestStatus
from core.services.execution_registry import ExecutionRegistry


class TestExecutionLifecycle:

    def test_start_registers_running_execution(self):
        registry = ExecutionRegistry()
        execution = registry.start("t1", name="Smoke", config={"name": "Smoke"})
        assert execution.status is TestStatus.RUNNING
        assert execution.name == "Smoke"
        assert registry.status("t1") is TestStatus.RUNNING
        assert [e.id for e in registry.list_running()] == ["t1"]

    def test_returned_records_are_copies(self):
        registry = ExecutionRegistry()
        execution = registry.start("t1")
        execution.status = TestStatus.COMPLETED
        execution.metrics["x.y"] = 1.0
        assert registry.status("t1") is TestStatus.RUNNING
        assert registry.get("t1").metrics == {}

    def test_unknown_id_is_idle(self):
        registry = ExecutionRegistry()
        assert registry.status("missing") is TestStatus.IDLE
        assert registry.get("missing") is None
        assert "missing" not in registry

    def test_running_id_cannot_start_again(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        with pytest.raises(AlreadyRunningError):
            registry.start("t1")

    def test_finished_id_cannot_start_again(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.finish("t1", exit_code=0)
        with pytest.raises(ExecutionFinishedError):
            registry.start("t1")

    @pytest.mark.parametrize("exit_code, status, error", [
        (0, TestStatus.COMPLETED, None),
        (2, TestStatus.FAILED, "Load generator exited with code 2"),
        (-9, TestStatus.FAILED, "Load generator exited with code -9"),
    ])
    def test_finish_maps_exit_code(self, exit_code, status, error):
        registry = ExecutionRegistry()
        registry.start("t1")
        execution = registry.finish("t1", exit_code=exit_code)
        assert execution.status is status
        assert execution.last_error == error
        assert execution.exit_code == exit_code
        assert execution.completed_at is not None
        assert execution.duration_seconds >= 0

    def test_requested_stop_ends_stopped_whatever_the_exit_code(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        accepted, handle = registry.request_stop("t1")
        assert accepted is True
        assert handle is None
        execution = registry.finish("t1", exit_code=-15)
        assert execution.status is TestStatus.STOPPED
        assert execution.last_error is None

    def test_cause_marks_failure(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        execution = registry.finish("t1", exit_code=0, cause="Output interpreter failed: boom")
        assert execution.status is TestStatus.FAILED
        assert execution.last_error == "Output interpreter failed: boom"

    def test_finish_is_applied_once(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        first = registry.finish("t1", exit_code=0)
        second = registry.finish("t1", exit_code=1)
        assert second.status is TestStatus.COMPLETED
        assert second.completed_at == first.completed_at

    def test_stop_of_unknown_or_finished_test_is_rejected(self):
        registry = ExecutionRegistry()
        assert registry.request_stop("missing") == (False, None)
        registry.start("t1")
        registry.finish("t1", exit_code=0)
        assert registry.request_stop("t1") == (False, None)


class TestProcessHandles:

    def test_attach_reports_pending_stop(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.request_stop("t1")
        handle = object()
        assert registry.attach_handle("t1", handle) is True
        assert registry.get_handle("t1") is handle
        assert registry.request_stop("t1") == (True, handle)

    def test_attach_twice_is_rejected(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        assert registry.attach_handle("t1", object()) is False
        with pytest.raises(RuntimeError):
            registry.attach_handle("t1", object())

    def test_finish_releases_handle(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.attach_handle("t1", object())
        registry.finish("t1", exit_code=0)
        assert registry.get_handle("t1") is None
        with pytest.raises(RuntimeError):
            registry.attach_handle("t1", object())

    def test_forced_flag(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.mark_forced("t1")
        assert registry.get("t1").forced_termination is True


class TestBookkeeping:

    def test_sequences_start_at_one_and_increase(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.start("t2")
        assert [registry.next_sequence("t1") for _ in range(3)] == [1, 2, 3]
        assert registry.next_sequence("t2") == 1
        assert registry.get("t1").last_sequence == 3

    def test_metrics_are_merged(self):
        registry = ExecutionRegistry()
        registry.start("t1")
        registry.record_metrics("t1", {"http.requests": 10.0})
        registry.record_metrics("t1", {"http.requests": 20.0, "vusers.active": 3.0})
        assert registry.get("t1").metrics == {"http.requests": 20.0, "vusers.active": 3.0}

    def test_history_limit_evicts_oldest_finished(self):
        registry = ExecutionRegistry(history_limit=2)
        for test_id in ("a", "b", "c"):
            registry.start(test_id)
            registry.finish(test_id, exit_code=0)
        registry.start("running")

        assert registry.status("a") is TestStatus.IDLE
        assert registry.status("b") is TestStatus.COMPLETED
        assert registry.status("c") is TestStatus.COMPLETED
        assert registry.status("running") is TestStatus.RUNNING

    def test_concurrent_start_of_same_id(self):
        registry = ExecutionRegistry()
        barrier = threading.Barrier(16)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                registry.start("shared")
                result = "started"
            except AlreadyRunningError:
                result = "rejected"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("started") == 1
        assert outcomes.count("rejected") == 15
