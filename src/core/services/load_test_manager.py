import logging
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from core.config_loader import ConfigLoader, config_loader
from core.errors import ConfigIssue, InvalidConfigError, SpawnError
from core.event_hub import EventHub, Observer
from core.models.config_data import orchestratorConfig
from core.models.events import (
    CompleteEvent,
    Event,
    LogLevel,
    LogLineEvent,
    MetricsEvent,
    OutputChannel,
    StatusChangeEvent,
)
from core.models.load_test_config import LoadTestConfig
from core.models.test_execution import TestExecution
from core.models.test_state import TestStatus
from core.processing.artillery_config import build_artillery_config
from core.processing.config_validator import validate_load_profile
from core.processing.output_interpreter import MetricsReading, OutputInterpreter, load_report_summary
from core.services.execution_registry import ExecutionRegistry
from core.services.execution_store import ExecutionRepository, JsonExecutionRepository
from core.services.process_supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

TEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
# Credentials never leave the generator config file
SECRET_FIELDS = {"authentication": {"token", "password", "api_key"}}

STATUS_MESSAGES = {
    TestStatus.RUNNING: "Load test started",
    TestStatus.COMPLETED: "Load test completed",
    TestStatus.FAILED: "Load test failed",
    TestStatus.STOPPED: "Load test stopped by user",
}


class LoadTestManager:
    """
    Public operations of the load-test orchestrator: start, stop, status and
    list-running, plus the subscription entry points used by the transport.

    Lock order: `_emit_lock` -> registry lock -> subscription lock. The emit
    lock makes sequence allocation and publication one step, so every
    observer sees a test's events in sequence order.
    """

    def __init__(
        self,
        config: Optional[orchestratorConfig] = None,
        repository: Optional[ExecutionRepository] = None,
        event_hub: Optional[EventHub] = None,
    ):
        self.config = config or config_loader.get_config()
        self.registry = ExecutionRegistry(history_limit=self.config.history_limit)
        self.event_hub = event_hub or EventHub()
        self.supervisor = ProcessSupervisor(
            self.registry,
            grace_period=self.config.grace_period,
            max_line_bytes=self.config.generator.max_line_bytes,
        )
        if repository is None:
            repository = JsonExecutionRepository(ConfigLoader.resolve_path(self.config.storage_dir))
        self.repository = repository
        self.work_dir = ConfigLoader.resolve_path(self.config.work_dir)

        self._emit_lock = threading.Lock()
        self._interpreters: Dict[str, Dict[OutputChannel, OutputInterpreter]] = {}
        self._artifacts: Dict[str, Tuple[Path, Path]] = {}

    # -- control operations ------------------------------------------------

    async def start(self, config: LoadTestConfig, test_id: Optional[str] = None) -> TestExecution:
        """
        Validate, register and launch a load test.

        Raises InvalidConfigError before anything is spawned, or
        AlreadyRunningError / ExecutionFinishedError if the id is taken.
        A launch failure does not raise: the returned record is FAILED.
        """
        if test_id is not None and not TEST_ID_PATTERN.match(test_id):
            raise InvalidConfigError([ConfigIssue(
                field="test_id",
                message="Test id may only contain letters, digits, '-' and '_' (max 64)",
                code="invalid_test_id",
            )])
        validate_load_profile(config.load, self.config.duration_ceilings)

        test_id = test_id or str(uuid.uuid4())
        execution = self.registry.start(test_id, name=config.name, config=config.model_dump(mode="json", exclude=SECRET_FIELDS))
        self._interpreters[test_id] = {channel: OutputInterpreter(channel) for channel in OutputChannel}
        self._save(execution)
        self._emit_status(test_id, TestStatus.RUNNING)

        try:
            command = self._prepare_run(test_id, config)
            await self.supervisor.spawn(
                test_id,
                command,
                on_line=self._on_output,
                on_exit=self._on_exit,
                env={**os.environ, **self.config.generator.env},
                cwd=str(self.work_dir),
            )
        except SpawnError as e:
            failed = self.registry.finish(test_id, cause=str(e))
            await self._on_exit(failed)
            return self.registry.get(test_id) or failed

        logger.info(f"Load test started: {test_id} ({config.name})")
        return self.registry.get(test_id) or execution

    async def stop(self, test_id: str) -> bool:
        """Request a graceful stop. False (not an error) if the test is not running."""
        stopped = self.supervisor.stop(test_id)
        if stopped:
            logger.info(f"Load test stop requested: {test_id}")
            self._emit(test_id, lambda seq: LogLineEvent(
                test_id=test_id,
                sequence=seq,
                message=f"Stop requested, forcing termination if still running after {self.config.grace_period:g}s",
                level=LogLevel.WARN,
            ))
        return stopped

    def status(self, test_id: str) -> TestStatus:
        return self.registry.status(test_id)

    def get_execution(self, test_id: str) -> Optional[TestExecution]:
        return self.registry.get(test_id)

    def is_known(self, test_id: str) -> bool:
        return test_id in self.registry

    def list_running(self) -> List[TestExecution]:
        return self.registry.list_running()

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop every running test and wait for their processes to exit."""
        running = self.registry.list_running()
        for execution in running:
            await self.stop(execution.id)
        if timeout is None:
            timeout = self.config.grace_period + 5.0
        finished = await self.supervisor.wait_all(timeout)
        if not finished:
            logger.error("Some load generators did not exit during shutdown")
        self.event_hub.close_all()
        return finished

    # -- subscriptions -----------------------------------------------------

    def new_observer(self) -> Observer:
        observer = Observer(max_pending=self.config.max_pending_events)
        self.event_hub.connect(observer)
        return observer

    def subscribe(self, observer: Observer, test_id: str) -> bool:
        return self.event_hub.join(observer, test_id)

    def unsubscribe(self, observer: Observer, test_id: str) -> bool:
        return self.event_hub.leave(observer.observer_id, test_id)

    def disconnect(self, observer: Observer) -> List[str]:
        return self.event_hub.disconnect(observer.observer_id)

    # -- internals ---------------------------------------------------------

    def _prepare_run(self, test_id: str, config: LoadTestConfig) -> List[str]:
        """Write the generator config and build the command line."""
        config_path = self.work_dir / f"artillery-{test_id}.yml"
        report_path = self.work_dir / f"artillery-output-{test_id}.json"
        try:
            os.makedirs(self.work_dir, exist_ok=True)
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(build_artillery_config(config))
        except OSError as e:
            raise SpawnError(f"Could not write generator configuration: {e}") from e
        self._artifacts[test_id] = (config_path, report_path)

        placeholders = {
            "config_path": str(config_path),
            "report_path": str(report_path),
            "test_id": test_id,
        }
        try:
            return [part.format_map(placeholders) for part in self.config.generator.command]
        except (KeyError, ValueError, IndexError) as e:
            raise SpawnError(f"Invalid generator command template: {e}") from e

    def _emit(self, test_id: str, build: Callable[[int], Event]) -> Event:
        with self._emit_lock:
            event = build(self.registry.next_sequence(test_id))
            self.event_hub.publish(event)
        return event

    def _emit_status(self, test_id: str, status: TestStatus, error: Optional[str] = None):
        self._emit(test_id, lambda seq: StatusChangeEvent(
            test_id=test_id,
            sequence=seq,
            status=status,
            message=STATUS_MESSAGES.get(status),
            error=error,
        ))

    def _on_output(self, test_id: str, line: str, channel: OutputChannel):
        interpreters = self._interpreters.get(test_id)
        if interpreters is None:
            return
        if channel is OutputChannel.DIAGNOSTIC:
            logger.warning(f"Generator stderr [{test_id}]: {line.rstrip()}")
        else:
            logger.debug(f"Generator stdout [{test_id}]: {line.rstrip()}")

        reading = interpreters[channel].interpret(line)
        if reading is None:
            return
        if isinstance(reading, MetricsReading):
            self.registry.record_metrics(test_id, reading.values)
            self._emit(test_id, lambda seq: MetricsEvent(
                test_id=test_id,
                sequence=seq,
                values=reading.values,
                scope=reading.scope,
            ))
        else:
            self._emit(test_id, lambda seq: LogLineEvent(
                test_id=test_id,
                sequence=seq,
                message=reading.message,
                level=reading.level,
                channel=channel,
            ))

    async def _on_exit(self, execution: TestExecution):
        test_id = execution.id
        self._interpreters.pop(test_id, None)

        summary: Dict[str, float] = {}
        artifacts = self._artifacts.pop(test_id, None)
        if artifacts is not None:
            config_path, report_path = artifacts
            summary = load_report_summary(report_path)
            if not self.config.keep_artifacts:
                for path in (config_path, report_path):
                    try:
                        path.unlink(missing_ok=True)
                    except OSError:
                        logger.warning(f"Failed to clean up generator artifact: {path}")
        if summary:
            self.registry.record_summary(test_id, summary)

        self._emit_status(test_id, execution.status, error=execution.last_error)
        self._emit(test_id, lambda seq: CompleteEvent(
            test_id=test_id,
            sequence=seq,
            status=execution.status,
            exit_code=execution.exit_code,
            duration_seconds=execution.duration_seconds,
            summary=summary or dict(execution.metrics),
        ))
        self._save(self.registry.get(test_id) or execution)

        if execution.status is TestStatus.FAILED:
            logger.error(f"Load test {test_id} failed: {execution.last_error}")
        else:
            logger.info(f"Load test {test_id} {execution.status.value}")

    def _save(self, execution: TestExecution):
        try:
            self.repository.save_execution_record(execution)
        except Exception as e:
            logger.error(f"Failed to save execution record {execution.id}: {e}")


# Global instance
load_test_manager = LoadTestManager()
