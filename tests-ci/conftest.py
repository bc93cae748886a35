"""
Pytest configuration for CI tests
Provides common fixtures, fakes and EventSub frame builders
"""
import asyncio
import json
import time
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from core.message_bus import MessageBus
from core.message_types import OBSERVER_TOPIC
from database.token_store import CredentialRecord, TokenStore
from twitchapi.auth_manager import CredentialManager
from twitchapi.oauth_client import OAuthClient, TokenResponse, ValidationResult

NOW = 1_700_000_000.0


# ============================================================
# Clock / credentials
# ============================================================

class FakeClock:
    """Injectable clock: manager.valid_credential() sees clock.now"""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(token_file=str(tmp_path / "tokens.json"), key_file=str(tmp_path / ".deskrat.key"))


@pytest.fixture
def oauth():
    """OAuthClient double: every endpoint is an AsyncMock"""
    client = MagicMock(spec=OAuthClient)
    client.exchange_code = AsyncMock(return_value=token_response("exchanged_access", "exchanged_refresh"))
    client.refresh = AsyncMock(return_value=token_response("refreshed_access", "refreshed_refresh"))
    client.validate = AsyncMock(return_value=ValidationResult(
        login="rexstreams", user_id="123", scopes=["user:read:chat", "channel:bot"], expires_in=10000,
    ))
    client.close = AsyncMock()
    return client


@pytest.fixture
def manager(token_store, oauth, clock):
    return CredentialManager(
        client_id="cid",
        redirect_uri="http://localhost:3000/auth/callback",
        store=token_store,
        oauth=oauth,
        clock=clock,
    )


def token_response(access: str, refresh: Optional[str] = "r", expires_in: int = 14400) -> TokenResponse:
    return TokenResponse(access_token=access, refresh_token=refresh, expires_in=expires_in, scopes=[])


def record(access="access_token", refresh="refresh_token", expires_at=NOW + 3600) -> CredentialRecord:
    return CredentialRecord(access_token=access, refresh_token=refresh, expires_at=expires_at)


# ============================================================
# Message bus
# ============================================================

class EventRecorder:
    """Collects observer events published on the bus"""

    def __init__(self, bus: MessageBus):
        self.bus = bus
        self.events = []
        bus.subscribe(OBSERVER_TOPIC, self.on_event)

    async def on_event(self, event):
        self.events.append(event)

    async def flush(self):
        await self.bus.wait_all()
        return self.events

    def names(self):
        return [e.name for e in self.events]


@pytest.fixture
def bus():
    return MessageBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


# ============================================================
# EventSub WebSocket fakes
# ============================================================

def _text(frame) -> aiohttp.WSMessage:
    data = frame if isinstance(frame, str) else json.dumps(frame)
    return aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, data, None)


class FakeWebSocket:
    """Minimal ClientWebSocketResponse: frames fed through a queue"""

    def __init__(self, frames=()):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_calls = []
        for frame in frames:
            self.feed(frame)

    def feed(self, frame):
        self.queue.put_nowait(_text(frame))

    def feed_close(self, code: int, reason: str = "bye"):
        self.queue.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.CLOSE, code, reason))

    async def receive(self, timeout=None):
        if self.closed and self.queue.empty():
            return aiohttp.WSMessage(aiohttp.WSMsgType.CLOSED, None, None)
        msg = await asyncio.wait_for(self.queue.get(), timeout)
        if msg.type is aiohttp.WSMsgType.CLOSE:
            self.closed = True
            self.close_code = msg.data
        return msg

    async def close(self, *, code: int = 1000, message: bytes = b""):
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self.close_calls.append(code)
        self.queue.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.CLOSED, None, None))
        return True

    def exception(self):
        return None


class FakeConnector:
    """ws_connect replacement: hands out prepared sockets (or raises) in order"""

    def __init__(self, *results):
        self.results = list(results)
        self.urls = []

    async def __call__(self, url: str):
        self.urls.append(url)
        if not self.results:
            raise aiohttp.ClientConnectionError("no more sockets")
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    @property
    def calls(self) -> int:
        return len(self.urls)


async def wait_until(predicate, timeout: float = 1.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ============================================================
# EventSub frames
# ============================================================

def _metadata(message_type: str, message_id: str, subscription_type: Optional[str] = None) -> dict:
    meta = {
        "message_id": message_id,
        "message_type": message_type,
        "message_timestamp": "2023-07-19T14:56:51.634234626Z",
    }
    if subscription_type:
        meta["subscription_type"] = subscription_type
        meta["subscription_version"] = "1"
    return meta


def welcome_frame(session_id="session-1", keepalive=10, message_id="w-1") -> dict:
    return {
        "metadata": _metadata("session_welcome", message_id),
        "payload": {"session": {
            "id": session_id,
            "status": "connected",
            "connected_at": "2023-07-19T14:56:51.616329898Z",
            "keepalive_timeout_seconds": keepalive,
            "reconnect_url": None,
        }},
    }


def keepalive_frame(message_id="k-1") -> dict:
    return {"metadata": _metadata("session_keepalive", message_id), "payload": {}}


def reconnect_frame(session_id="session-1", url="wss://eventsub.example/reconnect", message_id="r-1") -> dict:
    return {
        "metadata": _metadata("session_reconnect", message_id),
        "payload": {"session": {
            "id": session_id,
            "status": "reconnecting",
            "connected_at": "2023-07-19T14:56:51.616329898Z",
            "keepalive_timeout_seconds": None,
            "reconnect_url": url,
        }},
    }


def chat_frame(message_id="n-1", user_id="42", user_name="Rex", text="!register", color="#FF0000") -> dict:
    return {
        "metadata": _metadata("notification", message_id, "channel.chat.message"),
        "payload": {
            "subscription": {"id": "sub-chat", "type": "channel.chat.message", "version": "1", "status": "enabled"},
            "event": {
                "broadcaster_user_id": "123",
                "broadcaster_user_login": "rexstreams",
                "broadcaster_user_name": "RexStreams",
                "chatter_user_id": user_id,
                "chatter_user_login": user_name.lower(),
                "chatter_user_name": user_name,
                "message_id": f"chat-{message_id}",
                "message": {"text": text, "fragments": [{"type": "text", "text": text}]},
                "color": color,
                "badges": [],
                "message_type": "text",
            },
        },
    }


def redemption_frame(message_id="n-2", reward_id="R1", user_id="77", user_name="Bettor", user_input="Speedy") -> dict:
    sub_type = "channel.channel_points_custom_reward_redemption.add"
    return {
        "metadata": _metadata("notification", message_id, sub_type),
        "payload": {
            "subscription": {"id": "sub-bet", "type": sub_type, "version": "1", "status": "enabled"},
            "event": {
                "id": "redemption-1",
                "broadcaster_user_id": "123",
                "broadcaster_user_login": "rexstreams",
                "broadcaster_user_name": "RexStreams",
                "user_id": user_id,
                "user_login": user_name.lower(),
                "user_name": user_name,
                "user_input": user_input,
                "status": "unfulfilled",
                "reward": {"id": reward_id, "title": "Bet on a rat", "cost": 100, "prompt": "Name the rat"},
                "redeemed_at": "2023-07-19T15:00:00.123456789Z",
            },
        },
    }


def revocation_frame(message_id="v-1") -> dict:
    return {
        "metadata": _metadata("revocation", message_id, "channel.chat.message"),
        "payload": {"subscription": {
            "id": "sub-chat", "type": "channel.chat.message", "version": "1", "status": "authorization_revoked",
        }},
    }
