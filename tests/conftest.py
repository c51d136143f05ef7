"""Pytest configuration and fixtures for test suite."""

import asyncio
import sys
import time
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from core.event_hub import Observer
from core.models.config_data import generatorConfig, orchestratorConfig
from core.models.events import CompleteEvent, Event, LogLineEvent
from core.models.load_test_config import LoadTestConfig
from core.services.load_test_manager import LoadTestManager
from main import app
from routers.dependencies import get_load_test_manager

FAKE_GENERATOR = Path(__file__).parent / "fake_generator.py"


def make_orchestrator_config(tmp_path: Path, scenario: str = "metrics", command: Optional[List[str]] = None, **overrides) -> orchestratorConfig:
    """Orchestrator config running the fake generator with a short grace period."""
    config = orchestratorConfig(
        generator=generatorConfig(
            command=command or [sys.executable, str(FAKE_GENERATOR), "{report_path}", "{config_path}"],
            env={"FAKE_SCENARIO": scenario},
            max_line_bytes=64 * 1024,
        ),
        grace_period=0.3,
        work_dir=str(tmp_path / "work"),
        storage_dir=str(tmp_path / "storage"),
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_load_test_config(**load) -> LoadTestConfig:
    data = {
        "name": "Smoke test",
        "target": {"url": "http://localhost:8080/health", "method": "GET"},
        "load": {"virtualUsers": 10, "rampUpTime": 5, "duration": 60},
    }
    data["load"].update(load)
    return LoadTestConfig.model_validate(data)


async def next_event(observer: Observer, timeout: float = 10.0) -> Event:
    event = await asyncio.wait_for(observer.next_event(), timeout)
    assert event is not None, "observer closed unexpectedly"
    return event


async def collect_until_complete(observer: Observer, timeout: float = 10.0) -> List[Event]:
    """Read events until (and including) the Complete event."""
    events = []
    while True:
        event = await next_event(observer, timeout)
        events.append(event)
        if isinstance(event, CompleteEvent):
            return events


async def wait_for_log(observer: Observer, message: str, timeout: float = 10.0) -> List[Event]:
    events = []
    while True:
        event = await next_event(observer, timeout)
        events.append(event)
        if isinstance(event, LogLineEvent) and event.message == message:
            return events


@pytest.fixture
def load_test_config() -> LoadTestConfig:
    return make_load_test_config()


@pytest.fixture
def manager_factory(tmp_path):
    """Build a LoadTestManager on a temporary work/storage directory."""
    def factory(scenario: str = "metrics", **overrides) -> LoadTestManager:
        return LoadTestManager(make_orchestrator_config(tmp_path, scenario, **overrides))
    return factory


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    raise AssertionError("condition not met in time")


@pytest.fixture
def scenario() -> str:
    """Fake generator behaviour for the `manager` fixture. Override per module."""
    return "sleep"


@pytest.fixture
def manager(manager_factory, scenario) -> LoadTestManager:
    return manager_factory(scenario)


@pytest.fixture
def client(manager):
    """TestClient whose routes use `manager`; stops whatever is still running on teardown."""
    app.dependency_overrides[get_load_test_manager] = lambda: manager
    try:
        with TestClient(app) as test_client:
            yield test_client
            for execution in manager.list_running():
                test_client.post(f"/api/load-test/stop/{execution.id}")
            wait_until(lambda: not manager.list_running())
    finally:
        app.dependency_overrides.clear()
