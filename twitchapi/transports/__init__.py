"""
twitchapi/transports/
=====================

- eventsub_client : EventSub WebSocket session (state machine, reconnect)
"""

from twitchapi.transports.eventsub_client import EventSubSession, SessionState

__all__ = ["EventSubSession", "SessionState"]
