#!/usr/bin/env python3
"""
Helix client (api.twitch.tv/helix) - user token calls

- POST  /eventsub/subscriptions          : websocket transport subscription
- GET   /channel_points/custom_rewards   : list manageable rewards
- PATCH /channel_points/custom_rewards   : enable/disable the betting reward
- GET   /subscriptions                   : broadcaster subscribers

Every call takes the access token explicitly; the client holds no credential.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from twitchapi.errors import HelixError

LOGGER = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"


class HelixClient:
    """Thin aiohttp wrapper; raises HelixError on any non-2xx or transport error."""

    def __init__(self, client_id: str, timeout: float = 10.0, base_url: str = HELIX_BASE):
        self.client_id = client_id
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, token: str) -> dict:
        return {
            "Client-ID": self.client_id,
            "Authorization": f"Bearer {token}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, headers=self._headers(token), params=params, json=body
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HelixError(None, f"{method} {path} failed: {e!r}") from e

        if status < 200 or status >= 300:
            raise HelixError(status, text)

        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise HelixError(status, f"invalid JSON body: {e}") from e
        return data if isinstance(data, dict) else {}

    async def create_eventsub_subscription(
        self,
        token: str,
        session_id: str,
        sub_type: str,
        version: str,
        condition: dict,
    ) -> dict:
        """
        Register a websocket-transport subscription.

        Returns:
            The created subscription object (first element of "data")
        """
        body = {
            "type": sub_type,
            "version": version,
            "condition": condition,
            "transport": {"method": "websocket", "session_id": session_id},
        }
        data = await self._request("POST", "/eventsub/subscriptions", token, body=body)
        items = data.get("data") or [{}]
        return items[0]

    async def get_custom_rewards(
        self,
        token: str,
        broadcaster_id: str,
        reward_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        params = {"broadcaster_id": broadcaster_id, "only_manageable_rewards": "true"}
        if reward_id:
            params["id"] = reward_id
        data = await self._request("GET", "/channel_points/custom_rewards", token, params=params)
        return list(data.get("data") or [])

    async def update_custom_reward(
        self,
        token: str,
        broadcaster_id: str,
        reward_id: str,
        updates: dict,
    ) -> dict:
        params = {"broadcaster_id": broadcaster_id, "id": reward_id}
        data = await self._request(
            "PATCH", "/channel_points/custom_rewards", token, params=params, body=updates
        )
        items = data.get("data") or [{}]
        return items[0]

    async def get_subscribers(self, token: str, broadcaster_id: str, first: int = 100) -> dict:
        """Raw page: {"data": [...], "total": n, "points": n, "pagination": {...}}"""
        params = {"broadcaster_id": broadcaster_id, "first": str(first)}
        return await self._request("GET", "/subscriptions", token, params=params)
