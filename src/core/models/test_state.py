"""Lifecycle states of a load-test execution."""
from enum import Enum


class TestStatus(Enum):
    """Enumeration of all possible execution states."""
    IDLE = "idle"  # Answer for unknown identifiers, never stored
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"  # Stopped on user request

    @property
    def is_terminal(self) -> bool:
        return self in (TestStatus.COMPLETED, TestStatus.FAILED, TestStatus.STOPPED)
