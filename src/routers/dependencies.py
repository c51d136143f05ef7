from fastapi import Depends

from core.services.execution_store import JsonExecutionRepository
from core.services.load_test_manager import LoadTestManager, load_test_manager


def get_load_test_manager() -> LoadTestManager:
    """Overridden in tests through `app.dependency_overrides`."""
    return load_test_manager


def get_execution_repository(manager: LoadTestManager = Depends(get_load_test_manager)) -> JsonExecutionRepository:
    return manager.repository
