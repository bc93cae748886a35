#!/usr/bin/env python3
"""
Shared FastAPI dependencies: the service container and the rate limiter.

Everything is built once in build_services() and stored on
app.state.services; handlers never construct their own collaborators.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.betting_state import BettingBook
from core.config import Settings
from core.event_router import EventRouter
from core.message_bus import MessageBus
from core.race_state import RaceRegistry
from database.token_store import TokenStore
from twitchapi.api_service import TwitchApiService
from twitchapi.auth_manager import CredentialManager
from twitchapi.helix_client import HelixClient
from twitchapi.oauth_client import OAuthClient
from twitchapi.subscriptions import SubscriptionRegistrar, default_subscription_intents
from twitchapi.transports.eventsub_client import EventSubSession
from web.backend.realtime import ConnectionHub

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

STATE_TTL_SECONDS = 600


class OAuthStates:
    """One-time OAuth state values -> issue time (single process, in memory)"""

    def __init__(self, ttl: float = STATE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._issued: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._issued)

    def issue(self) -> str:
        now = self.clock()
        for stale in [s for s, issued in self._issued.items() if now - issued > self.ttl]:
            del self._issued[stale]
        state = secrets.token_urlsafe(32)
        self._issued[state] = now
        return state

    def consume(self, state: Optional[str]) -> bool:
        if not state:
            return False
        issued = self._issued.pop(state, None)
        return issued is not None and self.clock() - issued <= self.ttl


@dataclass
class Services:
    settings: Settings
    bus: MessageBus
    credentials: CredentialManager
    helix: HelixClient
    api: TwitchApiService
    registry: RaceRegistry
    betting: BettingBook
    router: EventRouter
    session: EventSubSession
    hub: ConnectionHub
    oauth_states: OAuthStates = field(default_factory=OAuthStates)

    @property
    def auth_url(self) -> str:
        return f"{self.settings.server_base_url}/auth/twitch"

    async def start(self):
        token = await self.credentials.initialize()
        if not token:
            logger.warning("-" * 70)
            logger.warning("Twitch access token not available or invalid after initial check.")
            logger.warning(f"Please authorize by visiting: {self.auth_url}")
            logger.warning("-" * 70)
        else:
            logger.info("✅ Twitch access token is available")
        self.session.connect()

    async def stop(self):
        await self.session.close()

        reward_id = self.settings.twitch_reward_id
        if reward_id and self.credentials.record.access_token:
            logger.info("Shutting down: disabling betting reward")
            await self.api.disable_custom_reward(reward_id)

        await self.hub.close()
        await self.bus.wait_all()
        await self.helix.close()
        await self.credentials.close()


def build_services(settings: Settings) -> Services:
    bus = MessageBus()

    oauth = OAuthClient(
        client_id=settings.twitch_client_id,
        client_secret=settings.twitch_client_secret,
        redirect_uri=settings.twitch_redirect_uri,
    )
    credentials = CredentialManager(
        client_id=settings.twitch_client_id,
        redirect_uri=settings.twitch_redirect_uri,
        store=TokenStore(settings.token_file, settings.encryption_key_file),
        oauth=oauth,
        scopes=settings.scope_list,
        refresh_margin=settings.refresh_margin,
        validate_interval=settings.validate_interval,
    )
    helix = HelixClient(settings.twitch_client_id)
    api = TwitchApiService(credentials, helix, settings.twitch_broadcaster_id)

    registry = RaceRegistry(bus, settings.register_command)
    betting = BettingBook(bus, settings.twitch_reward_id)
    router = EventRouter(registry, betting, settings.twitch_broadcaster_id)

    session = EventSubSession(
        registrar=SubscriptionRegistrar(credentials, helix),
        intents=default_subscription_intents(settings.twitch_broadcaster_id, settings.twitch_reward_id),
        on_notification=router.handle_notification,
        url=settings.eventsub_url,
        reconnect_delay=settings.reconnect_delay,
        reconnect_delay_max=settings.reconnect_delay_max,
        keepalive_grace=settings.keepalive_grace,
    )
    hub = ConnectionHub(bus)

    logger.info("📦 Services built")
    return Services(
        settings=settings,
        bus=bus,
        credentials=credentials,
        helix=helix,
        api=api,
        registry=registry,
        betting=betting,
        router=router,
        session=session,
        hub=hub,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
