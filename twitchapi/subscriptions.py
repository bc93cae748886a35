"""
EventSub subscription intents + registrar.

Intents are declarative; the EventSubSession hands them to the registrar
exactly once per new session id. Failures are logged, never retried:
Twitch rate-limits subscription creation and a blind retry loop only burns
the budget.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from twitchapi.auth_manager import CredentialManager
from twitchapi.errors import HelixError
from twitchapi.helix_client import HelixClient

LOGGER = logging.getLogger(__name__)

CHAT_MESSAGE = "channel.chat.message"
REWARD_REDEMPTION_ADD = "channel.channel_points_custom_reward_redemption.add"


@dataclass(frozen=True)
class SubscriptionIntent:
    event_type: str
    version: str = "1"
    condition: dict = field(default_factory=dict, hash=False)


def default_subscription_intents(
    broadcaster_id: Optional[str],
    reward_id: Optional[str] = None,
) -> list[SubscriptionIntent]:
    """Chat messages always, redemptions of the betting reward when one is configured."""
    if not broadcaster_id:
        LOGGER.warning("⚠️ No broadcaster id configured, not subscribing to any EventSub topic")
        return []

    intents = [
        # user_id is the account whose chat view we read: the broadcaster itself
        SubscriptionIntent(CHAT_MESSAGE, "1", {
            "broadcaster_user_id": broadcaster_id,
            "user_id": broadcaster_id,
        }),
    ]
    if reward_id:
        intents.append(SubscriptionIntent(REWARD_REDEMPTION_ADD, "1", {
            "broadcaster_user_id": broadcaster_id,
            "reward_id": reward_id,
        }))
    else:
        LOGGER.info("No betting reward configured, redemptions will not be subscribed")
    return intents


class SubscriptionRegistrar:
    def __init__(self, credentials: CredentialManager, helix: HelixClient):
        self.credentials = credentials
        self.helix = helix

    async def subscribe(self, session_id: str, intent: SubscriptionIntent) -> bool:
        """Create one subscription targeting session_id. True when Twitch accepted it."""
        if not session_id:
            LOGGER.error(f"❌ Cannot subscribe to {intent.event_type}: missing session id")
            return False

        token = await self.credentials.valid_credential()
        if not token:
            LOGGER.error(f"❌ Cannot subscribe to {intent.event_type}: no valid access token (re-authorization required)")
            return False

        LOGGER.info(f"📡 Subscribing to {intent.event_type} v{intent.version} {intent.condition}")
        try:
            created = await self.helix.create_eventsub_subscription(
                token, session_id, intent.event_type, intent.version, intent.condition
            )
        except HelixError as e:
            LOGGER.error(f"❌ Subscription {intent.event_type} failed: {e}")
            return False

        LOGGER.info(f"✅ Subscribed to {intent.event_type} (id={created.get('id', '?')}, status={created.get('status', '?')})")
        return True

    async def subscribe_all(self, session_id: str, intents: Iterable[SubscriptionIntent]) -> int:
        """Sequential; returns how many were created."""
        created = 0
        for intent in intents:
            if await self.subscribe(session_id, intent):
                created += 1
        return created
