"""
📦 Message Types - observer events pushed to the UIs

Wire form on the realtime websocket: {"event": <name>, "data": <payload>}
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict

OBSERVER_TOPIC = "observer.event"

REGISTRATION_STATUS = "registration_status"
NEW_PARTICIPANT = "new_participant"
RACE_WINNER_DETERMINED = "race_winner_determined"
NEW_BET_PLACED = "new_bet_placed"
BETTING_STATUS = "betting_status"


@dataclass(frozen=True)
class ObserverEvent:
    """Named payload for connected UIs"""
    name: str                                           # registration_status, new_participant, ...
    data: Dict[str, Any] = field(default_factory=dict, hash=False)
    timestamp: float = field(default_factory=time.time, compare=False)

    def to_wire(self) -> Dict[str, Any]:
        return {"event": self.name, "data": self.data}


def registration_status(is_open: bool, message: str) -> ObserverEvent:
    return ObserverEvent(REGISTRATION_STATUS, {"isOpen": is_open, "message": message})


def new_participant(user_name: str) -> ObserverEvent:
    return ObserverEvent(NEW_PARTICIPANT, {"userName": user_name})


def race_winner_determined(winner: str, participant_names: list) -> ObserverEvent:
    return ObserverEvent(RACE_WINNER_DETERMINED, {"winner": winner, "participantNames": list(participant_names)})


def new_bet_placed(user_name: str, user_input: str) -> ObserverEvent:
    return ObserverEvent(NEW_BET_PLACED, {"userName": user_name, "input": user_input})


def betting_status(is_open: bool, message: str) -> ObserverEvent:
    return ObserverEvent(BETTING_STATUS, {"isOpen": is_open, "message": message})
