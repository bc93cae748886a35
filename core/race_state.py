"""
🏁 Race registration - projector + owner

project_chat_message() is pure: (RaceState, ChatMessageEvent) -> (RaceState, events).
RaceRegistry is the only writer of the current RaceState; it swaps the whole
state under its lock and publishes the resulting observer events.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.message_bus import MessageBus
from core.message_types import (
    OBSERVER_TOPIC,
    ObserverEvent,
    new_participant,
    race_winner_determined,
    registration_status,
)
from twitchapi.eventsub_protocol import ChatMessageEvent

LOGGER = logging.getLogger(__name__)

REGISTER_COMMAND = "!register"


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def color_for_name(name: str) -> str:
    """Deterministic "#RRGGBB" per display name (same hash the overlay uses)."""
    h = 0
    # over UTF-16 code units
    units = name.encode("utf-16-le")
    for i in range(0, len(units), 2):
        code_unit = int.from_bytes(units[i:i + 2], "little")
        h = _int32(code_unit + (_int32(h << 5) - h))
    return f"#{h & 0xFFFFFF:06X}"


@dataclass(frozen=True)
class Participant:
    user_id: str
    user_name: str
    user_login: str
    registered_at: datetime
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "userLogin": self.user_login,
            "registeredAt": self.registered_at.isoformat(),
            "color": self.color,
        }


@dataclass(frozen=True)
class RaceState:
    is_open: bool = False
    participants: tuple = ()

    def has_user(self, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self.participants)

    @property
    def names(self) -> list:
        return [p.user_name for p in self.participants]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isRegistrationOpen": self.is_open,
            "participants": [p.to_dict() for p in self.participants],
        }


def is_register_command(text: str, command: str = REGISTER_COMMAND) -> bool:
    return text.strip().lower().startswith(command.lower())


def project_chat_message(
    state: RaceState,
    event: ChatMessageEvent,
    command: str = REGISTER_COMMAND,
    now: Optional[datetime] = None,
) -> tuple:
    """
    Apply one chat message.

    Returns:
        (new_state, events) - new_state is `state` itself when nothing changed
    """
    if not is_register_command(event.text, command):
        return state, []

    if not state.is_open:
        LOGGER.info(f"Registration attempt from {event.chatter_user_name} but registration is closed")
        return state, []

    if state.has_user(event.chatter_user_id):
        LOGGER.info(f"{event.chatter_user_name} already registered for the race")
        return state, []

    participant = Participant(
        user_id=event.chatter_user_id,
        user_name=event.chatter_user_name,
        user_login=event.chatter_user_login,
        registered_at=now or datetime.now(timezone.utc),
        color=event.color or color_for_name(event.chatter_user_name),
    )
    new_state = replace(state, participants=state.participants + (participant,))
    LOGGER.info(f"🏁 {participant.user_name} registered for the race ({len(new_state.participants)} participants)")
    return new_state, [new_participant(participant.user_name)]


class RaceRegistry:
    """Owner of the race state: participants + registration window"""

    def __init__(self, bus: MessageBus, command: str = REGISTER_COMMAND):
        self.bus = bus
        self.command = command
        self._state = RaceState()
        self._lock = asyncio.Lock()

    def snapshot(self) -> RaceState:
        return self._state

    async def _emit(self, events: list):
        for event in events:
            await self.bus.publish(OBSERVER_TOPIC, event)

    async def handle_chat_message(self, event: ChatMessageEvent) -> bool:
        """True when a participant was added"""
        async with self._lock:
            new_state, events = project_chat_message(self._state, event, self.command)
            self._state = new_state
        await self._emit(events)
        return bool(events)

    async def add_participant(self, user_name: str, user_id: Optional[str] = None) -> tuple:
        """
        Direct registration bypassing chat (test console).

        Returns:
            (added, reason) - reason is "closed", "duplicate" or ""
        """
        async with self._lock:
            state = self._state
            if not state.is_open:
                return False, "closed"
            lowered = user_name.lower()
            if any(p.user_login.lower() == lowered or p.user_name.lower() == lowered for p in state.participants):
                return False, "duplicate"
            event = ChatMessageEvent(
                broadcaster_user_id="",
                chatter_user_id=user_id or f"test_{int(datetime.now().timestamp() * 1000)}",
                chatter_user_login=lowered,
                chatter_user_name=user_name,
                text=self.command,
            )
            self._state, events = project_chat_message(state, event, self.command)
        await self._emit(events)
        return bool(events), "" if events else "duplicate"

    async def open_registration(self) -> RaceState:
        async with self._lock:
            self._state = RaceState(is_open=True, participants=())
        LOGGER.info("🏁 Race registration opened")
        await self._emit([registration_status(True, "Registration is now OPEN!")])
        return self._state

    async def close_registration(self) -> int:
        """Returns the participant count"""
        async with self._lock:
            self._state = replace(self._state, is_open=False)
            count = len(self._state.participants)
        LOGGER.info(f"🏁 Race registration closed ({count} participants)")
        await self._emit([registration_status(False, "Registration is now CLOSED!")])
        return count

    async def declare_winner(self, winner: str) -> tuple:
        """
        Close registration, announce the winner, clear participants.

        Returns:
            (winner_found, participant_names) from the pre-clear snapshot
        """
        async with self._lock:
            before = self._state
            self._state = RaceState(is_open=False, participants=())
        names = before.names
        found = any(name.lower() == winner.lower() for name in names)
        LOGGER.info(f"🏆 Race winner declared: {winner} (participant: {found})")
        await self._emit([race_winner_determined(winner, names)])
        return found, names

    def status_event(self) -> ObserverEvent:
        state = self._state
        return registration_status(state.is_open, "Registration is open" if state.is_open else "Registration is closed")
