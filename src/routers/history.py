import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from schemas import ExecutionRecord, HistoryList
from core.services.execution_store import JsonExecutionRepository
from routers.dependencies import get_execution_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=HistoryList)
async def list_histories(repository: JsonExecutionRepository = Depends(get_execution_repository)) -> HistoryList:
    """
    List all persisted executions (sorted by start date, newest first).
    """
    records = []
    for record in repository.list_records():
        try:
            records.append(ExecutionRecord(**record))
        except ValidationError as e:
            logger.warning(f"Skipping malformed execution record {record.get('id')}: {e}")
    return HistoryList(list=records)


@router.get("/{test_id}", response_model=ExecutionRecord, responses={
    404: {
        "description": "Execution record not found.",
        "content": {
            "application/json": {
                "example": {"detail": "Execution record 'smoke-1' not found"}
            }
        }
    }
})
async def get_history_record(
    test_id: str,
    repository: JsonExecutionRepository = Depends(get_execution_repository),
) -> ExecutionRecord:
    """
    Get the persisted record of one execution.
    """
    record = repository.get_record(test_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Execution record '{test_id}' not found")
    return ExecutionRecord(**record)
