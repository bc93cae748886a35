"""
EventSub WebSocket session - one live connection to wss://eventsub.wss.twitch.tv/ws

State machine:

    DISCONNECTED --connect()--> CONNECTING --welcome--> ESTABLISHED
         ^                          |                        |
         |                          +------ close/error -----+
         |                                      |
         +-- timer fires -- RECONNECT_PENDING <-+  (not an intentional shutdown)

    close(): any state --> CLOSING --> DISCONNECTED (no reconnect)

One reader task consumes the socket (await ws.receive()), so frames are
handled strictly in delivery order: a welcome is always processed before
the notifications of that session.

Reconnect delay: reconnect_delay doubling per consecutive failure, capped at
reconnect_delay_max, reset on every welcome.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

import aiohttp

from twitchapi.eventsub_protocol import (
    FrameError,
    KeepaliveMessage,
    NotificationMessage,
    ReconnectMessage,
    RevocationMessage,
    SessionDescriptor,
    WelcomeMessage,
    decode_frame,
)
from twitchapi.subscriptions import SubscriptionIntent, SubscriptionRegistrar

LOGGER = logging.getLogger(__name__)

EVENTSUB_URL = "wss://eventsub.wss.twitch.tv/ws"

CLOSE_NORMAL = 1000
CLOSE_KEEPALIVE_TIMEOUT = 4000

NotificationHandler = Callable[[NotificationMessage], Awaitable[None]]
WebSocketConnector = Callable[[str], Awaitable[aiohttp.ClientWebSocketResponse]]


def reconnect_backoff(attempt: int, base: float, cap: float) -> float:
    """Delay before reconnect attempt n (1-based): base, 2*base, 4*base ... <= cap"""
    exponent = min(max(attempt, 1) - 1, 16)
    return min(base * (2 ** exponent), max(cap, base))


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CLOSING = "closing"
    RECONNECT_PENDING = "reconnect_pending"


class EventSubSession:
    """
    Owns the socket, the Session Descriptor and the reconnect timer.

    Invariants:
        - at most one reader task (hence one live socket)
        - at most one pending reconnect timer
        - connect() while CONNECTING/ESTABLISHED is a no-op
    """

    def __init__(
        self,
        registrar: SubscriptionRegistrar,
        intents: Iterable[SubscriptionIntent],
        on_notification: NotificationHandler,
        url: str = EVENTSUB_URL,
        reconnect_delay: float = 5.0,
        reconnect_delay_max: float = 60.0,
        keepalive_grace: float = 5.0,
        welcome_timeout: float = 10.0,
        history_size: int = 1000,
        alert_after: int = 10,
        ws_connect: Optional[WebSocketConnector] = None,
    ):
        self.registrar = registrar
        self.intents = list(intents)
        self.on_notification = on_notification
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = max(reconnect_delay_max, reconnect_delay)
        self.keepalive_grace = keepalive_grace
        self.welcome_timeout = welcome_timeout
        self.alert_after = alert_after

        self._ws_connect = ws_connect or self._default_ws_connect
        self._http: Optional[aiohttp.ClientSession] = None

        self._state = SessionState.DISCONNECTED
        self._descriptor: Optional[SessionDescriptor] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._closing = False

        # Session id we were asked to migrate away from (session_reconnect)
        self._migrating_from: Optional[str] = None
        # Intents not yet accepted by Twitch for the current session
        self._pending: list[SubscriptionIntent] = []
        self._subscribe_lock = asyncio.Lock()

        self._failures = 0
        self._alerted = False

        self._seen_order: deque = deque(maxlen=history_size)
        self._seen: set[str] = set()

        LOGGER.info(f"🔌 EventSubSession initialized ({len(self.intents)} subscription intents)")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def descriptor(self) -> Optional[SessionDescriptor]:
        return self._descriptor

    @property
    def session_id(self) -> Optional[str]:
        return self._descriptor.session_id if self._descriptor else None

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.ESTABLISHED

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def pending_intents(self) -> list[SubscriptionIntent]:
        return list(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Start a connection if none is live. Safe to call from anywhere
        (startup, after authorization, reconnect timer).

        Returns:
            True if a connection attempt was started
        """
        if self._state in (SessionState.CONNECTING, SessionState.ESTABLISHED):
            LOGGER.debug(f"EventSub already {self._state.value}, connect() ignored")
            return False
        if self._state is SessionState.CLOSING:
            LOGGER.warning("⚠️ EventSub is shutting down, connect() ignored")
            return False

        if self._state is SessionState.RECONNECT_PENDING:
            LOGGER.info("🔄 Reconnect pending, connecting now")
            self._cancel_reconnect()

        self._closing = False
        self._start(self.url)
        return True

    async def close(self, timeout: float = 5.0) -> None:
        """Intentional shutdown: no reconnect afterwards."""
        self._closing = True
        self._cancel_reconnect()

        task = self._task
        if task is None or task.done():
            self._state = SessionState.DISCONNECTED
            await self._close_http()
            return

        LOGGER.info("🛑 Closing EventSub session...")
        self._state = SessionState.CLOSING

        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.close(code=CLOSE_NORMAL, message=b"shutdown")
            except (aiohttp.ClientError, OSError) as e:
                LOGGER.debug(f"EventSub close error: {e!r}")

        try:
            await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            LOGGER.warning(f"⚠️ EventSub reader did not stop within {timeout}s, cancelled")

        self._state = SessionState.DISCONNECTED
        await self._close_http()
        LOGGER.info("✅ EventSub session closed")

    def _start(self, url: str) -> None:
        self._state = SessionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run(url), name="eventsub-reader")

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _default_ws_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, connect=10, sock_connect=10)
            )
        return await self._http.ws_connect(url, autoping=True)

    async def _close_http(self) -> None:
        if self._http and not self._http.closed:
            await self._http.close()
        self._http = None

    async def _run(self, url: Optional[str]) -> None:
        try:
            while url and not self._closing:
                if self._state is not SessionState.CLOSING:
                    self._state = SessionState.CONNECTING
                LOGGER.info(f"🚀 Connecting to EventSub WebSocket ({url})")
                ws = await self._ws_connect(url)
                self._ws = ws
                if self._closing:
                    break
                LOGGER.info("✅ EventSub socket open, waiting for session_welcome")
                url = await self._consume(ws)
                await self._drop_socket(CLOSE_NORMAL)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            LOGGER.error(f"❌ EventSub connection error: {e!r}")
        finally:
            await self._drop_socket(CLOSE_NORMAL)
            self._after_disconnect()

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse) -> Optional[str]:
        """
        Read until the socket ends.

        Returns:
            Replacement URL when Twitch asked us to move, else None
        """
        while True:
            try:
                msg = await ws.receive(timeout=self._receive_timeout())
            except asyncio.TimeoutError:
                phase = "keepalive" if self._descriptor else "session_welcome"
                LOGGER.warning(f"⚠️ No {phase} from EventSub in time, dropping connection")
                await self._drop_socket(CLOSE_KEEPALIVE_TIMEOUT)
                return None

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                try:
                    reconnect_url = await self._handle_frame(msg.data)
                except Exception as e:
                    LOGGER.error(f"❌ EventSub frame dispatch failed, frame dropped: {e!r}", exc_info=True)
                    continue
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                LOGGER.info(f"🔌 EventSub socket closed (code={ws.close_code}, reason={msg.extra!r})")
                return None
            elif msg.type is aiohttp.WSMsgType.ERROR:
                LOGGER.error(f"❌ EventSub socket error: {ws.exception()!r}")
                return None
            else:
                continue

            if reconnect_url:
                return reconnect_url

    def _receive_timeout(self) -> float:
        if self._descriptor is None:
            return self.welcome_timeout
        return self._descriptor.keepalive_timeout_seconds + self.keepalive_grace

    async def _handle_frame(self, raw) -> Optional[str]:
        try:
            message = decode_frame(raw)
        except FrameError as e:
            LOGGER.warning(f"⚠️ Dropping malformed EventSub frame: {e}")
            return None
        if message is None:
            return None

        if isinstance(message, WelcomeMessage):
            await self._on_welcome(message)
        elif isinstance(message, KeepaliveMessage):
            LOGGER.debug("💓 EventSub keepalive")
        elif isinstance(message, NotificationMessage):
            await self._on_notification(message)
        elif isinstance(message, ReconnectMessage):
            return self._on_reconnect(message)
        elif isinstance(message, RevocationMessage):
            LOGGER.error(
                f"❌ Subscription revoked: {message.subscription_type} "
                f"(status={message.status}, id={message.subscription.get('id', '?')})"
            )
        return None

    async def _on_welcome(self, message: WelcomeMessage) -> None:
        session = message.session
        self._descriptor = session
        self._state = SessionState.ESTABLISHED
        self._failures = 0
        self._alerted = False

        LOGGER.info(
            f"✅ EventSub session established: {session.session_id} "
            f"(keepalive {session.keepalive_timeout_seconds}s)"
        )

        migrated = self._migrating_from is not None and self._migrating_from == session.session_id
        self._migrating_from = None
        if migrated:
            LOGGER.info("🔄 Session migrated, subscriptions carried over by Twitch")
            return

        self._pending = list(self.intents)
        await self._subscribe_pending(session.session_id)

    async def ensure_subscribed(self) -> int:
        """
        Retry the intents that failed on the current session (e.g. the
        welcome arrived before the broadcaster authorized).

        Returns:
            Number of intents still not subscribed
        """
        session_id = self.session_id
        if self._state is not SessionState.ESTABLISHED or not session_id:
            return len(self._pending)
        await self._subscribe_pending(session_id)
        return len(self._pending)

    async def _subscribe_pending(self, session_id: str) -> None:
        async with self._subscribe_lock:
            if session_id != self.session_id or not self._pending:
                return
            still_pending = []
            for intent in self._pending:
                if not await self.registrar.subscribe(session_id, intent):
                    still_pending.append(intent)
            self._pending = still_pending
        if still_pending:
            LOGGER.warning(f"⚠️ {len(still_pending)}/{len(self.intents)} subscriptions failed")

    async def _on_notification(self, message: NotificationMessage) -> None:
        if not self._remember(message.metadata.message_id):
            LOGGER.debug(f"Duplicate EventSub message {message.metadata.message_id}, skipped")
            return

        LOGGER.debug(f"📨 EventSub notification: {message.subscription_type}")
        try:
            await self.on_notification(message)
        except Exception as e:
            LOGGER.error(f"❌ Notification handler failed for {message.subscription_type}: {e}", exc_info=True)

    def _on_reconnect(self, message: ReconnectMessage) -> str:
        url = message.reconnect_url or self.url
        LOGGER.info(f"🔄 EventSub asked to reconnect, moving to {url}")
        self._migrating_from = self.session_id
        return url

    def _remember(self, message_id: str) -> bool:
        """False when message_id was already handled."""
        if not message_id:
            return True
        if message_id in self._seen:
            return False
        if len(self._seen_order) == self._seen_order.maxlen:
            self._seen.discard(self._seen_order[0])
        self._seen_order.append(message_id)
        self._seen.add(message_id)
        return True

    async def _drop_socket(self, code: int) -> None:
        ws, self._ws = self._ws, None
        if ws is None or ws.closed:
            return
        try:
            await ws.close(code=code)
        except (aiohttp.ClientError, OSError) as e:
            LOGGER.debug(f"EventSub socket close error: {e!r}")

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _after_disconnect(self) -> None:
        self._descriptor = None
        self._task = None
        self._state = SessionState.DISCONNECTED

        if self._closing:
            LOGGER.info("🔌 EventSub disconnected (shutdown)")
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._failures += 1
        delay = reconnect_backoff(self._failures, self.reconnect_delay, self.reconnect_delay_max)

        if self._failures >= self.alert_after and not self._alerted:
            LOGGER.error(f"❌ EventSub has failed {self._failures} times in a row, still retrying every {delay:.0f}s")
            self._alerted = True

        LOGGER.info(f"🔄 EventSub reconnect in {delay:.1f}s (attempt {self._failures})")
        self._state = SessionState.RECONNECT_PENDING
        self._reconnect_handle = asyncio.get_running_loop().call_later(delay, self._reconnect_now)

    def _reconnect_now(self) -> None:
        self._reconnect_handle = None
        if self._state is not SessionState.RECONNECT_PENDING or self._closing:
            return
        self._start(self.url)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._state is SessionState.RECONNECT_PENDING:
            self._state = SessionState.DISCONNECTED
