"""
🔀 EventRouter - EventSub notifications -> projector owners

    channel.chat.message                                -> RaceRegistry
    channel.channel_points_custom_reward_redemption.add -> BettingBook
    anything else                                       -> logged, ignored
"""
import logging
import random
import time
from typing import Optional

from core.betting_state import BettingBook
from core.race_state import RaceRegistry
from twitchapi.eventsub_protocol import ChatMessageEvent, NotificationMessage, RedemptionEvent

LOGGER = logging.getLogger(__name__)


class EventRouter:
    def __init__(self, registry: RaceRegistry, betting: BettingBook, broadcaster_id: Optional[str] = None):
        self.registry = registry
        self.betting = betting
        self.broadcaster_id = broadcaster_id

    async def handle_notification(self, message: NotificationMessage) -> None:
        """Notification handler plugged into the EventSubSession"""
        event = message.event
        if isinstance(event, ChatMessageEvent):
            await self.route_chat_message(event)
        elif isinstance(event, RedemptionEvent):
            await self.betting.handle_redemption(event)
        else:
            LOGGER.info(f"Unhandled EventSub notification: {message.subscription_type}")

    async def route_chat_message(self, event: ChatMessageEvent) -> bool:
        return await self.registry.handle_chat_message(event)

    async def simulate_chat_message(
        self,
        user_name: str,
        text: str,
        user_id: Optional[str] = None,
        color: Optional[str] = None,
    ) -> bool:
        """Inject a chat message without Twitch (test console)"""
        stamp = int(time.time() * 1000)
        event = ChatMessageEvent(
            broadcaster_user_id=self.broadcaster_id or "12345",
            chatter_user_id=user_id or f"user_{stamp}",
            chatter_user_login=user_name.lower(),
            chatter_user_name=user_name,
            text=text,
            color=color or f"#{random.randint(0, 0xFFFFFF):06x}",
            message_id=f"msg_{stamp}",
        )
        LOGGER.info(f"🧪 Simulated chat message from {user_name}: {text!r}")
        return await self.route_chat_message(event)
