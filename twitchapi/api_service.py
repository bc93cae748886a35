"""
TwitchApiService - credentialed Helix operations for the broadcaster account.

Each call asks the CredentialManager for a token first; no token means the
operation is skipped (False / None) and the caller surfaces re-authorization.
"""

import logging
from typing import Optional

from twitchapi.auth_manager import CredentialManager
from twitchapi.errors import HelixError
from twitchapi.helix_client import HelixClient

LOGGER = logging.getLogger(__name__)


class TwitchApiService:
    def __init__(self, credentials: CredentialManager, helix: HelixClient, broadcaster_id: Optional[str]):
        self.credentials = credentials
        self.helix = helix
        self.broadcaster_id = broadcaster_id
        if not broadcaster_id:
            LOGGER.error("TwitchApiService: broadcaster id is not configured, reward and subscriber calls will fail")

    async def _token(self, operation: str) -> Optional[str]:
        if not self.broadcaster_id:
            LOGGER.error(f"❌ {operation}: broadcaster id is not configured")
            return None
        token = await self.credentials.valid_credential()
        if not token:
            LOGGER.error(f"❌ {operation}: no valid access token available")
        return token

    async def update_custom_reward(self, reward_id: str, updates: dict) -> bool:
        if not reward_id:
            LOGGER.error("❌ update_custom_reward: reward id is required")
            return False
        token = await self._token("update_custom_reward")
        if not token:
            return False

        LOGGER.info(f"Updating reward {reward_id} with {updates}")
        try:
            await self.helix.update_custom_reward(token, self.broadcaster_id, reward_id, updates)
        except HelixError as e:
            LOGGER.error(f"❌ Error updating custom reward {reward_id}: {e}")
            return False

        LOGGER.info(f"✅ Custom reward {reward_id} updated")
        return True

    async def enable_custom_reward(self, reward_id: str) -> bool:
        return await self.update_custom_reward(reward_id, {"is_enabled": True})

    async def disable_custom_reward(self, reward_id: str) -> bool:
        return await self.update_custom_reward(reward_id, {"is_enabled": False})

    async def get_custom_rewards(self) -> Optional[list[dict]]:
        token = await self._token("get_custom_rewards")
        if not token:
            return None
        try:
            rewards = await self.helix.get_custom_rewards(token, self.broadcaster_id)
        except HelixError as e:
            LOGGER.error(f"❌ Error fetching custom rewards: {e}")
            return None
        LOGGER.info(f"Found {len(rewards)} custom rewards")
        return rewards

    async def get_subscribers(self) -> Optional[dict]:
        """
        Returns:
            {"total", "points", "subscribers": [{userId, userName, userLogin, tier, isGift}]}
            or None without a credential

        Raises:
            HelixError: the upstream call failed (route turns it into a 502)
        """
        token = await self._token("get_subscribers")
        if not token:
            return None

        LOGGER.info(f"Fetching subscribers for {self.broadcaster_id}")
        page = await self.helix.get_subscribers(token, self.broadcaster_id)
        subscribers = [
            {
                "userId": sub.get("user_id"),
                "userName": sub.get("user_name"),
                "userLogin": sub.get("user_login"),
                "tier": sub.get("tier"),
                "isGift": sub.get("is_gift", False),
            }
            for sub in page.get("data") or []
        ]
        return {"total": page.get("total", 0), "points": page.get("points", 0), "subscribers": subscribers}
