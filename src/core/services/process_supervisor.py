import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Sequence

from core.errors import SpawnError
from core.models.events import OutputChannel
from core.models.test_execution import TestExecution
from core.services.execution_registry import ExecutionRegistry

logger = logging.getLogger(__name__)

LineHandler = Callable[[str, str, OutputChannel], None]
ExitHandler = Callable[[TestExecution], Awaitable[None]]


@dataclass
class ProcessHandle:
    """One running load-generator process, owned by exactly one execution."""
    test_id: str
    process: asyncio.subprocess.Process
    own_group: bool = False
    watcher: Optional[asyncio.Task] = None
    escalation: Optional[asyncio.Task] = None
    reader_error: Optional[str] = field(default=None)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None

    def send_signal(self, sig: int):
        """Signal the process (and its children when it leads its own group)."""
        if self.exited:
            return
        try:
            if self.own_group:
                os.killpg(self.process.pid, sig)
            else:
                self.process.send_signal(sig)
        except ProcessLookupError:
            # Exited between the check and the signal
            pass


class ProcessSupervisor:
    """
    Owns the lifecycle of load-generator processes.

    Each spawned process gets one watcher task that pumps both output
    channels, waits for the exit code and reports the transition to the
    ExecutionRegistry before handing the final record to `on_exit`.
    """

    def __init__(self, registry: ExecutionRegistry, grace_period: float = 5.0, max_line_bytes: int = 1024 * 1024):
        self.registry = registry
        self.grace_period = grace_period
        self.max_line_bytes = max_line_bytes
        self._watchers: Dict[str, asyncio.Task] = {}

    async def spawn(
        self,
        test_id: str,
        command: Sequence[str],
        on_line: LineHandler,
        on_exit: ExitHandler,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        """Launch the generator for a registered execution. Raises SpawnError."""
        own_group = hasattr(os, "killpg")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
                limit=self.max_line_bytes,
                start_new_session=own_group,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn load generator for {test_id}: {e}")
            raise SpawnError(f"Failed to start load generator: {e}") from e

        handle = ProcessHandle(test_id=test_id, process=process, own_group=own_group)
        try:
            stop_pending = self.registry.attach_handle(test_id, handle)
        except RuntimeError:
            handle.send_signal(signal.SIGKILL)
            await process.wait()
            raise

        logger.info(f"Load generator for {test_id} spawned with PID {process.pid}")
        handle.watcher = asyncio.create_task(self._supervise(handle, on_line, on_exit))
        self._watchers[test_id] = handle.watcher

        if stop_pending:
            # stop() arrived while the process was being launched
            self._request_termination(handle)
        return handle

    def stop(self, test_id: str) -> bool:
        """
        Ask a running generator to terminate.

        Sends the graceful signal and returns; a timer escalates to a forced
        kill after the grace period. Returns False if the test is not running.
        """
        accepted, handle = self.registry.request_stop(test_id)
        if not accepted:
            logger.info(f"Stop ignored for {test_id}: not running")
            return False
        if handle is not None:
            self._request_termination(handle)
        else:
            logger.info(f"Stop for {test_id} recorded before its process started")
        return True

    def _request_termination(self, handle: ProcessHandle):
        if handle.escalation is not None:
            return
        logger.info(f"Sending SIGTERM to load generator {handle.test_id} (PID {handle.pid})")
        handle.send_signal(signal.SIGTERM)
        handle.escalation = asyncio.create_task(self._escalate(handle))

    async def _escalate(self, handle: ProcessHandle):
        await asyncio.sleep(self.grace_period)
        if not handle.exited:
            logger.warning(
                f"Load generator {handle.test_id} still alive after {self.grace_period}s, sending SIGKILL"
            )
            self.registry.mark_forced(handle.test_id)
            handle.send_signal(signal.SIGKILL)

    async def _pump(self, handle: ProcessHandle, stream: asyncio.StreamReader, channel: OutputChannel, on_line: LineHandler):
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; the oversized chunk is discarded
                logger.warning(f"Dropped an output line over {self.max_line_bytes} bytes from {handle.test_id}")
                continue
            if not raw:
                break
            on_line(handle.test_id, raw.decode("utf-8", errors="replace"), channel)

    async def _supervise(self, handle: ProcessHandle, on_line: LineHandler, on_exit: ExitHandler):
        process = handle.process
        cause = None
        readers = [
            asyncio.create_task(self._pump(handle, process.stdout, OutputChannel.PRIMARY, on_line)),
            asyncio.create_task(self._pump(handle, process.stderr, OutputChannel.DIAGNOSTIC, on_line)),
        ]
        try:
            await asyncio.gather(*readers)
        except asyncio.CancelledError:
            for reader in readers:
                reader.cancel()
            handle.send_signal(signal.SIGKILL)
            await process.wait()
            raise
        except Exception as e:
            logger.exception(f"Output handling failed for {handle.test_id}")
            cause = f"Output interpreter failed: {e}"
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            handle.send_signal(signal.SIGKILL)

        exit_code = await process.wait()
        if handle.escalation is not None and not handle.escalation.done():
            handle.escalation.cancel()

        logger.info(f"Load generator {handle.test_id} exited with code {exit_code}")
        execution = self.registry.finish(handle.test_id, exit_code=exit_code, cause=cause)
        self._watchers.pop(handle.test_id, None)
        try:
            await on_exit(execution)
        except Exception:
            logger.exception(f"Exit handling failed for {handle.test_id}")

    async def wait(self, test_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for the watcher of a test to finish. Returns False on timeout."""
        watcher = self._watchers.get(test_id)
        if watcher is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(watcher), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_all(self, timeout: Optional[float] = None) -> bool:
        watchers = list(self._watchers.values())
        if not watchers:
            return True
        done, pending = await asyncio.wait(watchers, timeout=timeout)
        return not pending
