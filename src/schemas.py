import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from core.models.test_execution import TestExecution
from core.models.test_state import TestStatus


class HealthOK(BaseModel):
    status: str


class AppHealthOK(BaseModel):
    status: str
    app: str


class ExecutionRecord(BaseModel):
    id: str
    name: str
    status: TestStatus
    started_at: datetime.datetime
    completed_at: Optional[datetime.datetime] = None
    duration_seconds: Optional[float] = None
    last_error: Optional[str] = None
    exit_code: Optional[int] = None
    stop_requested: bool = False
    forced_termination: bool = False
    last_sequence: int = 0
    config: Dict[str, Any] = {}
    metrics: Dict[str, float] = {}
    summary: Dict[str, float] = {}

    @classmethod
    def from_execution(cls, execution: TestExecution) -> "ExecutionRecord":
        return cls(**execution.to_dict())


class StartResponse(BaseModel):
    id: str
    execution: ExecutionRecord


class StopResponse(BaseModel):
    stopped: bool


class StatusResponse(BaseModel):
    status: TestStatus
    execution: Optional[ExecutionRecord] = None


class RunningTestItem(BaseModel):
    id: str
    status: TestStatus


class HistoryList(BaseModel):
    list: List[ExecutionRecord]


class ConfigIssueItem(BaseModel):
    field: str
    message: str
    code: str


class InvalidConfigDetail(BaseModel):
    message: str
    issues: List[ConfigIssueItem]


class SubscriptionStats(BaseModel):
    connectedClients: int
    activeTests: int
    totalSubscriptions: int
