"""
twitchapi/
==========

Everything that talks to Twitch.

Layout:
- auth_manager.py : CredentialManager (broadcaster token lifecycle)
- oauth_client.py : id.twitch.tv token + validate endpoints
- helix_client.py : Helix calls (EventSub subscriptions, rewards, subscribers)
- api_service.py  : credentialed Helix operations
- subscriptions.py : EventSub subscription intents + registrar
- eventsub_protocol.py : EventSub frame decoding
- transports/ : EventSub WebSocket session
"""

from twitchapi.auth_manager import CredentialManager, TokenInfo

__all__ = ["CredentialManager", "TokenInfo"]
