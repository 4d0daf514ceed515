import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import WebSocket

from signage.services.invalidation import InvalidationBus, InvalidationEvent, bus

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Bridges websocket players onto the invalidation bus, one subscription per target."""

    def __init__(self, event_bus: InvalidationBus) -> None:
        self._bus = event_bus
        self._clients: dict[WebSocket, dict[str, Callable[[], None]]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, targets: list[str] | None = None) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients[websocket] = {}
        await self.subscribe(websocket, targets or [])
        await websocket.send_text(
            json.dumps(
                {
                    "type": "hello",
                    "revision": self._bus.revision,
                    "targets": sorted(self._clients.get(websocket, {})),
                    "ts": datetime.now(timezone.utc).isoformat(),
                }
            )
        )

    async def subscribe(self, websocket: WebSocket, targets: list[str]) -> None:
        async with self._lock:
            subscriptions = self._clients.get(websocket)
            if subscriptions is None:
                return
            for target_id in targets:
                target_id = str(target_id).strip()
                if not target_id or target_id in subscriptions:
                    continue
                subscriptions[target_id] = self._bus.subscribe(target_id, self._sender(websocket))

    async def unsubscribe(self, websocket: WebSocket, targets: list[str]) -> None:
        # Players drop their old group after moving to another one.
        async with self._lock:
            subscriptions = self._clients.get(websocket)
            if subscriptions is None:
                return
            removed = [subscriptions.pop(str(t).strip(), None) for t in targets]
        for unsubscribe in removed:
            if unsubscribe is not None:
                unsubscribe()

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            subscriptions = self._clients.pop(websocket, {})
        for unsubscribe in subscriptions.values():
            unsubscribe()

    async def handle_message(self, websocket: WebSocket, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            return
        if not isinstance(message, dict):
            return
        targets = message.get("targets")
        if not isinstance(targets, list):
            return
        if message.get("type") == "subscribe":
            await self.subscribe(websocket, [str(item) for item in targets])
        elif message.get("type") == "unsubscribe":
            await self.unsubscribe(websocket, [str(item) for item in targets])

    def _sender(self, websocket: WebSocket):
        async def send(event: InvalidationEvent) -> None:
            try:
                await websocket.send_text(json.dumps(event.to_message(self._bus.revision)))
            except Exception:
                logger.info("dropping stale websocket after failed send")
                await self.disconnect(websocket)

        return send

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def revision(self) -> int:
        return self._bus.revision


hub = RealtimeHub(bus)
