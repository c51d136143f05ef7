"""Domain errors raised by the load-test orchestrator."""
from dataclasses import dataclass, asdict
from typing import Dict, List


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


@dataclass
class ConfigIssue:
    field: str
    message: str
    code: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class InvalidConfigError(OrchestratorError, ValueError):
    """The configuration violates a domain constraint. Nothing was spawned."""

    def __init__(self, issues: List[ConfigIssue]):
        self.issues = issues
        super().__init__("; ".join(issue.message for issue in issues) or "Invalid configuration")


class AlreadyRunningError(OrchestratorError, RuntimeError):
    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"Load test {test_id} is already running.")


class ExecutionFinishedError(OrchestratorError, RuntimeError):
    """The identifier belongs to a finished execution; runs are never restarted in place."""

    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"Load test {test_id} has already finished. Start a new test instead.")


class SpawnError(OrchestratorError):
    """The load generator process could not be launched."""
