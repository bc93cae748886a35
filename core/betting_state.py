"""
🎲 Betting - same projector shape as race registration

project_redemption() is pure; BettingBook owns the state and publishes.
A user may bet several times: bets are appended, never deduplicated.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.message_bus import MessageBus
from core.message_types import OBSERVER_TOPIC, betting_status, new_bet_placed
from twitchapi.eventsub_protocol import RedemptionEvent, parse_twitch_timestamp

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bet:
    user_id: str
    user_name: str
    user_login: str
    reward_id: str
    user_input: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "userLogin": self.user_login,
            "rewardId": self.reward_id,
            "userInput": self.user_input,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class BettingState:
    is_open: bool = False
    bets: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"isBettingOpen": self.is_open, "bets": [b.to_dict() for b in self.bets]}


def project_redemption(state: BettingState, event: RedemptionEvent, reward_id: Optional[str]) -> tuple:
    """Returns (new_state, events)"""
    if not reward_id:
        LOGGER.debug("Redemption ignored: no betting reward configured")
        return state, []
    if event.reward_id != reward_id:
        LOGGER.debug(f"Redemption of reward {event.reward_id} ignored (not the betting reward)")
        return state, []
    if not state.is_open:
        LOGGER.info(f"Bet from {event.user_name} ignored: betting is closed")
        return state, []

    timestamp = parse_twitch_timestamp(event.redeemed_at) if event.redeemed_at else datetime.now(timezone.utc)
    bet = Bet(
        user_id=event.user_id,
        user_name=event.user_name,
        user_login=event.user_login,
        reward_id=event.reward_id,
        user_input=event.user_input,
        timestamp=timestamp,
    )
    LOGGER.info(f"🎲 Bet from {bet.user_name}: {bet.user_input!r}")
    return replace(state, bets=state.bets + (bet,)), [new_bet_placed(bet.user_name, bet.user_input)]


class BettingBook:
    def __init__(self, bus: MessageBus, reward_id: Optional[str] = None):
        self.bus = bus
        self.reward_id = reward_id
        self._state = BettingState()
        self._lock = asyncio.Lock()
        if not reward_id:
            LOGGER.warning("⚠️ No betting reward configured, redemptions will be ignored")

    def snapshot(self) -> BettingState:
        return self._state

    async def _emit(self, events: list):
        for event in events:
            await self.bus.publish(OBSERVER_TOPIC, event)

    async def handle_redemption(self, event: RedemptionEvent) -> bool:
        async with self._lock:
            self._state, events = project_redemption(self._state, event, self.reward_id)
        await self._emit(events)
        return bool(events)

    async def open_betting(self) -> BettingState:
        async with self._lock:
            self._state = BettingState(is_open=True, bets=())
        LOGGER.info("🎲 Betting opened")
        await self._emit([betting_status(True, "Betting is now OPEN!")])
        return self._state

    async def close_betting(self) -> int:
        """Returns the number of bets placed"""
        async with self._lock:
            self._state = replace(self._state, is_open=False)
            count = len(self._state.bets)
        LOGGER.info(f"🎲 Betting closed ({count} bets)")
        await self._emit([betting_status(False, "Betting is now CLOSED!")])
        return count

    async def settle(self, winner: str) -> list:
        """Close betting and clear bets; returns the bets that named the winner."""
        async with self._lock:
            before = self._state
            self._state = BettingState(is_open=False, bets=())
        lowered = winner.strip().lower()
        winning = [b for b in before.bets if b.user_input.strip().lower() == lowered]
        LOGGER.info(f"🎲 Betting settled on {winner}: {len(winning)}/{len(before.bets)} winning bets")
        if before.is_open:
            await self._emit([betting_status(False, "Betting is now CLOSED!")])
        return winning
