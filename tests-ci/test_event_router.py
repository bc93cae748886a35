"""
Tests for EventRouter: notifications reach the right owner, full
frame -> overlay event path through the bus
"""
import json

import pytest

from conftest import chat_frame, redemption_frame
from core.betting_state import BettingBook
from core.event_router import EventRouter
from core.message_types import NEW_BET_PLACED, NEW_PARTICIPANT
from core.race_state import RaceRegistry
from twitchapi.eventsub_protocol import MessageMetadata, NotificationMessage, decode_frame


@pytest.fixture
def registry(bus):
    return RaceRegistry(bus)


@pytest.fixture
def betting(bus):
    return BettingBook(bus, "R1")


@pytest.fixture
def router(registry, betting):
    return EventRouter(registry, betting, "123")


@pytest.mark.unit
class TestEventRouter:
    """Dispatch by notification type"""

    @pytest.mark.asyncio
    async def test_chat_notification_registers(self, router, registry, recorder):
        await registry.open_registration()
        await router.handle_notification(decode_frame(json.dumps(chat_frame(user_name="Rex"))))

        assert registry.snapshot().names == ["Rex"]
        await recorder.flush()
        assert NEW_PARTICIPANT in recorder.names()

    @pytest.mark.asyncio
    async def test_redemption_notification_bets(self, router, betting, recorder):
        await betting.open_betting()
        await router.handle_notification(decode_frame(json.dumps(redemption_frame(reward_id="R1"))))

        assert len(betting.snapshot().bets) == 1
        await recorder.flush()
        assert NEW_BET_PLACED in recorder.names()

    @pytest.mark.asyncio
    async def test_unknown_notification_ignored(self, router, registry, betting, recorder):
        message = NotificationMessage(
            MessageMetadata("m-1", "notification", subscription_type="channel.follow"),
            "channel.follow",
            {"user_id": "1"},
        )
        await router.handle_notification(message)
        assert registry.snapshot().participants == ()
        assert betting.snapshot().bets == ()
        assert await recorder.flush() == []

    @pytest.mark.asyncio
    async def test_simulated_chat_message(self, router, registry):
        await registry.open_registration()
        assert await router.simulate_chat_message("TestRat", "!register")
        participant = registry.snapshot().participants[0]
        assert participant.user_name == "TestRat"
        assert participant.user_login == "testrat"
        assert participant.user_id.startswith("user_")
        assert participant.color.startswith("#")

    @pytest.mark.asyncio
    async def test_simulated_non_command(self, router, registry):
        await registry.open_registration()
        assert not await router.simulate_chat_message("TestRat", "hello")
        assert registry.snapshot().participants == ()
