"""
Events emitted for a running load test.

The set of event kinds is closed: every consumer dispatches over the four
classes below and raises on anything else.
"""
import datetime
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from core.models.test_state import TestStatus


class OutputChannel(Enum):
    PRIMARY = "stdout"
    DIAGNOSTIC = "stderr"


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Well-known metric keys and the names they are exposed under
METRIC_FIELDS: Dict[str, str] = {
    "http.request_rate": "requestsPerSecond",
    "http.requests": "totalRequests",
    "http.responses": "totalResponses",
    "http.response_time.min": "minResponseTime",
    "http.response_time.max": "maxResponseTime",
    "http.response_time.mean": "averageResponseTime",
    "http.response_time.median": "medianResponseTime",
    "http.response_time.p95": "p95ResponseTime",
    "http.response_time.p99": "p99ResponseTime",
    "vusers.created": "createdUsers",
    "vusers.completed": "completedUsers",
    "vusers.failed": "failedUsers",
    "vusers.active": "currentUsers",
    "errors.total": "totalErrors",
}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class MetricsEvent:
    test_id: str
    sequence: int
    values: Mapping[str, float]
    scope: str = "period"  # "period" or "summary"
    timestamp: datetime.datetime = field(default_factory=_now)

    def __post_init__(self):
        # Read-only copy: the event must not change after publication
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


@dataclass(frozen=True)
class LogLineEvent:
    test_id: str
    sequence: int
    message: str
    level: LogLevel = LogLevel.INFO
    channel: OutputChannel = OutputChannel.PRIMARY
    timestamp: datetime.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class StatusChangeEvent:
    test_id: str
    sequence: int
    status: TestStatus
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class CompleteEvent:
    test_id: str
    sequence: int
    status: TestStatus
    exit_code: Optional[int] = None
    duration_seconds: Optional[float] = None
    summary: Mapping[str, float] = field(default_factory=dict)
    timestamp: datetime.datetime = field(default_factory=_now)

    def __post_init__(self):
        object.__setattr__(self, "summary", MappingProxyType(dict(self.summary)))


Event = Union[MetricsEvent, LogLineEvent, StatusChangeEvent, CompleteEvent]


def event_name(event: Event) -> str:
    """Name of the server-pushed message carrying this event."""
    if isinstance(event, MetricsEvent):
        return "metrics"
    if isinstance(event, LogLineEvent):
        return "logEntry"
    if isinstance(event, StatusChangeEvent):
        return "statusUpdate"
    if isinstance(event, CompleteEvent):
        return "complete"
    raise TypeError(f"Unknown event type: {type(event).__name__}")


def event_to_message(event: Event) -> Dict[str, Any]:
    """Serialize an event into the `{"event": ..., "data": ...}` wire message."""
    kind = event_name(event)
    data: Dict[str, Any] = {
        "testId": event.test_id,
        "sequence": event.sequence,
        "timestamp": event.timestamp.isoformat(),
    }
    if isinstance(event, MetricsEvent):
        data["scope"] = event.scope
        data["values"] = dict(event.values)
        for key, field_name in METRIC_FIELDS.items():
            if key in event.values:
                data[field_name] = event.values[key]
    elif isinstance(event, LogLineEvent):
        data["level"] = event.level.value
        data["channel"] = event.channel.value
        data["message"] = event.message
    elif isinstance(event, StatusChangeEvent):
        data["status"] = event.status.value
        if event.message is not None:
            data["message"] = event.message
        if event.error is not None:
            data["error"] = event.error
    elif isinstance(event, CompleteEvent):
        data["status"] = event.status.value
        data["exitCode"] = event.exit_code
        data["durationSeconds"] = event.duration_seconds
        data["summary"] = dict(event.summary)
    else:
        raise TypeError(f"Unknown event type: {type(event).__name__}")
    return {"event": kind, "data": data}
