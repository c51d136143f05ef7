from dataclasses import dataclass, field
from typing import Dict, List


DEFAULT_GENERATOR_COMMAND = ["npx", "artillery", "run", "--output", "{report_path}", "{config_path}"]


@dataclass
class durationCeiling:
    """Longest allowed run duration for tests with up to `max_users` workers."""
    max_users: int
    max_duration: int


def default_duration_ceilings() -> List[durationCeiling]:
    return [
        durationCeiling(max_users=1000, max_duration=3600),   # 1 hour for up to 1k users
        durationCeiling(max_users=5000, max_duration=1800),   # 30 min for up to 5k users
        durationCeiling(max_users=10000, max_duration=900),   # 15 min for up to 10k users
    ]


@dataclass
class generatorConfig:
    command: List[str] = field(default_factory=lambda: list(DEFAULT_GENERATOR_COMMAND))
    env: Dict[str, str] = field(default_factory=lambda: {"NODE_ENV": "production"})
    max_line_bytes: int = 1024 * 1024


@dataclass
class orchestratorConfig:
    generator: generatorConfig = field(default_factory=generatorConfig)
    grace_period: float = 5.0
    work_dir: str = "storage/tmp"
    storage_dir: str = "storage/executions"
    keep_artifacts: bool = False
    max_pending_events: int = 1000
    history_limit: int = 1000
    duration_ceilings: List[durationCeiling] = field(default_factory=default_duration_ceilings)
