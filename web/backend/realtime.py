#!/usr/bin/env python3
"""
Realtime push - observer events to the overlay / admin UIs over /ws

The hub writes each event to every connected socket under one lock, so
clients see events in publish order. The endpoint itself only reads,
which is how it notices the client going away.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.message_bus import MessageBus
from core.message_types import OBSERVER_TOPIC, ObserverEvent

logger = logging.getLogger(__name__)
router = APIRouter()

SEND_TIMEOUT = 5.0


class ConnectionHub:
    def __init__(self, bus: MessageBus, send_timeout: float = SEND_TIMEOUT):
        self.bus = bus
        self.send_timeout = send_timeout
        self._clients: set[WebSocket] = set()
        self._send_lock = asyncio.Lock()
        bus.subscribe(OBSERVER_TOPIC, self.on_event)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def register(self, websocket: WebSocket, greeting: dict):
        """Send the greeting and start delivering events, without interleaving either."""
        async with self._send_lock:
            self._clients.add(websocket)
            await websocket.send_json(greeting)
        logger.info(f"🔗 Realtime client connected ({len(self._clients)} total)")

    def unregister(self, websocket: WebSocket):
        if websocket in self._clients:
            self._clients.discard(websocket)
            logger.info(f"🔌 Realtime client disconnected ({len(self._clients)} total)")

    async def on_event(self, event: ObserverEvent):
        wire = event.to_wire()
        async with self._send_lock:
            stale = []
            for websocket in list(self._clients):
                try:
                    await asyncio.wait_for(websocket.send_json(wire), self.send_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"⚠️ Realtime client too slow, dropped on {event.name}")
                    stale.append(websocket)
                except Exception as e:
                    logger.debug(f"Realtime send failed: {e!r}")
                    stale.append(websocket)
            for websocket in stale:
                self.unregister(websocket)

    async def close(self):
        """Close every client socket (server shutdown)."""
        self.bus.unsubscribe(OBSERVER_TOPIC, self.on_event)
        for websocket in list(self._clients):
            self.unregister(websocket)
            try:
                await websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Realtime close failed: {e!r}")


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    services = websocket.app.state.services
    hub: ConnectionHub = services.hub

    await websocket.accept()
    try:
        await hub.register(websocket, services.registry.status_event().to_wire())
        # Clients do not send anything meaningful
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
