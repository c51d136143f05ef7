import json
import logging
import os
from pathlib import Path
from typing import List

from core.models.config_data import durationCeiling, generatorConfig, orchestratorConfig

logger = logging.getLogger(__name__)

# Project root (3 levels up from this file: config_loader.py -> core -> src -> project_root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class ConfigLoader:
    """Loads and manages orchestrator configuration from a JSON file."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
            cls._instance._config = orchestratorConfig()
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = self._get_default_config()
            self.load_config()
            self._initialized = True

    @staticmethod
    def get_config_path() -> Path:
        """Get the path to orchestrator_config.json (ORCHESTRATOR_CONFIG overrides it)."""
        override = os.getenv("ORCHESTRATOR_CONFIG")
        if override:
            return Path(override)
        return PROJECT_ROOT / "config" / "orchestrator_config.json"

    def load_config(self):
        """Load configuration from JSON file."""
        config_path = self.get_config_path()

        # Start from defaults so _config is always usable
        self._config = self._get_default_config()

        if not config_path.exists():
            logger.error(f"Configuration file not found: {config_path}")
            return

        try:
            with open(config_path, 'r') as f:
                json_data = json.load(f)
            self._config = self.parse_config(json_data)
            logger.info(f"Configuration loaded from {config_path}")

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse configuration file: {e}")
            self._config = self._get_default_config()

        except (TypeError, ValueError, KeyError) as e:
            logger.error(f"Invalid configuration in {config_path}: {e}")
            self._config = self._get_default_config()

    @staticmethod
    def parse_config(json_data: dict) -> orchestratorConfig:
        """Build an orchestratorConfig from decoded JSON, keeping defaults for missing keys."""
        config = orchestratorConfig()

        generator_cfg = json_data.get("generator", {})
        config.generator = generatorConfig(
            command=[str(part) for part in generator_cfg.get("command", config.generator.command)],
            env={str(k): str(v) for k, v in generator_cfg.get("env", config.generator.env).items()},
            max_line_bytes=int(generator_cfg.get("max_line_bytes", config.generator.max_line_bytes)),
        )
        if not config.generator.command:
            raise ValueError("generator.command must not be empty")

        config.grace_period = float(json_data.get("grace_period_seconds", config.grace_period))
        config.work_dir = str(json_data.get("work_dir", config.work_dir))
        config.storage_dir = str(json_data.get("storage_dir", config.storage_dir))
        config.keep_artifacts = bool(json_data.get("keep_artifacts", config.keep_artifacts))
        config.max_pending_events = int(json_data.get("max_pending_events", config.max_pending_events))
        config.history_limit = int(json_data.get("history_limit", config.history_limit))

        if "duration_ceilings" in json_data:
            ceilings: List[durationCeiling] = []
            for tier in json_data["duration_ceilings"]:
                ceilings.append(durationCeiling(
                    max_users=int(tier["max_users"]),
                    max_duration=int(tier["max_duration"]),
                ))
            config.duration_ceilings = sorted(ceilings, key=lambda c: c.max_users)

        return config

    @staticmethod
    def _get_default_config() -> orchestratorConfig:
        """Return default configuration."""
        return orchestratorConfig()

    @staticmethod
    def resolve_path(path: str) -> Path:
        """Resolve a configured directory relative to the project root."""
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return PROJECT_ROOT / candidate

    def get_config(self) -> orchestratorConfig:
        return self._config

    def reload_config(self):
        """Reload configuration from file."""
        self.load_config()
        logger.info("Configuration reloaded")


# Global singleton instance
config_loader = ConfigLoader()
