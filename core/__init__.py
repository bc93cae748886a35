"""
Core - race/betting state, routing, pub/sub, configuration
"""

from core.betting_state import BettingBook, BettingState, Bet
from core.event_router import EventRouter
from core.message_bus import MessageBus
from core.race_state import Participant, RaceRegistry, RaceState

__all__ = [
    "Bet",
    "BettingBook",
    "BettingState",
    "EventRouter",
    "MessageBus",
    "Participant",
    "RaceRegistry",
    "RaceState",
]
