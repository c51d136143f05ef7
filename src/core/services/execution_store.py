import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from core.models.test_execution import TestExecution

logger = logging.getLogger(__name__)

RECORD_FILE = "execution.json"


class ExecutionRepository(Protocol):
    """Persistence boundary: the orchestrator only ever saves records."""

    def save_execution_record(self, execution: TestExecution) -> None: ...


class JsonExecutionRepository:
    """Stores one `execution.json` per test under `<storage_dir>/<test_id>/`."""

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        os.makedirs(self.storage_dir, exist_ok=True)

    def _record_path(self, test_id: str) -> Path:
        safe_id = "".join(c for c in test_id if c.isalnum() or c in ('-', '_'))
        if not safe_id:
            raise ValueError(f"Invalid test id: {test_id!r}")
        return self.storage_dir / safe_id / RECORD_FILE

    def save_execution_record(self, execution: TestExecution) -> None:
        path = self._record_path(execution.id)
        os.makedirs(path.parent, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(execution.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
        logger.debug(f"Saved execution record {execution.id} ({execution.status.value})")

    def get_record(self, test_id: str) -> Optional[Dict[str, Any]]:
        try:
            path = self._record_path(test_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def list_records(self) -> List[Dict[str, Any]]:
        """All stored records, newest first. Unreadable records are skipped."""
        records = []
        if not self.storage_dir.exists():
            return records
        for entry in self.storage_dir.iterdir():
            path = entry / RECORD_FILE
            if not path.is_file():
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    records.append(json.load(f))
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load execution record {entry.name}: {e}")
        records.sort(key=lambda r: r.get("started_at") or "", reverse=True)
        return records
