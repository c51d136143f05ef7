"""WebSocket endpoint streaming load-test events to subscribed clients.

Client messages: `{"action": "subscribe" | "unsubscribe" | "status", "testId": "..."}`.
Server messages: `{"event": name, "data": {...}}`.
"""

import asyncio
import datetime
import json
import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from core.event_hub import Observer
from core.models.events import event_to_message
from core.services.load_test_manager import LoadTestManager
from routers.dependencies import get_load_test_manager
from schemas import SubscriptionStats

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

ACTIONS = ("subscribe", "unsubscribe", "status")


def _message(event: str, **data: Any) -> Dict[str, Any]:
    data["timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return {"event": event, "data": data}


class _Connection:
    """One socket plus the lock serializing writes from the reader and the event pump."""

    def __init__(self, websocket: WebSocket, observer: Observer):
        self.websocket = websocket
        self.observer = observer
        self._send_lock = asyncio.Lock()

    async def send(self, message: Dict[str, Any]):
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def send_after(self, step: Callable[[], Dict[str, Any]]):
        """Run `step` and send its reply before any event the step lets through."""
        async with self._send_lock:
            await self.websocket.send_json(step())

    async def forward_events(self):
        """Push queued events until the observer is closed."""
        while True:
            event = await self.observer.next_event()
            if event is None:
                break
            try:
                await self.send(event_to_message(event))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Stopped forwarding to {self.observer.observer_id}: {e}")
                return
        # Closed by the hub (slow consumer or shutdown)
        try:
            await self.websocket.close(code=1013)
        except RuntimeError:
            pass


@router.websocket("/ws")
async def load_test_updates(websocket: WebSocket, manager: LoadTestManager = Depends(get_load_test_manager)):
    """
    Real-time updates for load tests.

    A client may watch any number of tests and may subscribe before a test
    starts. Only events emitted after the subscription are delivered.
    """
    await websocket.accept()
    observer = manager.new_observer()
    connection = _Connection(websocket, observer)
    pump = asyncio.create_task(connection.forward_events())
    logger.info(f"Client connected: {observer.observer_id}")

    try:
        await connection.send(_message("connected", clientId=observer.observer_id))
        while True:
            raw = await websocket.receive_text()
            await handle_client_message(connection, manager, raw)
    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {observer.observer_id}")
    finally:
        tests = manager.disconnect(observer)
        if tests:
            logger.debug(f"Removed {observer.observer_id} from {len(tests)} test(s)")
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)


async def handle_client_message(connection: _Connection, manager: LoadTestManager, raw: str):
    try:
        message = json.loads(raw)
    except ValueError:
        await connection.send(_message("error", message="Invalid JSON format"))
        return
    if not isinstance(message, dict):
        await connection.send(_message("error", message="Message must be a JSON object"))
        return

    action = message.get("action")
    test_id = message.get("testId")
    if action not in ACTIONS:
        await connection.send(_message("error", message=f"Unknown action: {action}"))
        return
    if not isinstance(test_id, str) or not test_id:
        await connection.send(_message("error", message="testId is required"))
        return

    if action == "subscribe":
        def join():
            manager.subscribe(connection.observer, test_id)
            return _message("subscribed", testId=test_id, status=manager.status(test_id).value)
        await connection.send_after(join)
    elif action == "unsubscribe":
        manager.unsubscribe(connection.observer, test_id)
        await connection.send(_message("unsubscribed", testId=test_id))
    else:
        execution = manager.get_execution(test_id)
        await connection.send(_message(
            "testStatus",
            testId=test_id,
            status=manager.status(test_id).value,
            execution=execution.to_dict() if execution is not None else None,
        ))


@router.get("/ws/stats", response_model=SubscriptionStats)
async def websocket_stats(manager: LoadTestManager = Depends(get_load_test_manager)) -> SubscriptionStats:
    return SubscriptionStats(**manager.event_hub.stats())
