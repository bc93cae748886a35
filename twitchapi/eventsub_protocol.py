"""
EventSub WebSocket protocol - frames decoded once into tagged variants.

Every frame is a JSON object:

    {
        "metadata": {
            "message_id": "96a3f3b5-...",
            "message_type": "session_welcome",
            "message_timestamp": "2023-07-19T14:56:51.634234626Z",
            "subscription_type": "channel.chat.message",   # notification/revocation only
            "subscription_version": "1"
        },
        "payload": {...}
    }

message_type -> variant:
    session_welcome   -> WelcomeMessage      (payload.session)
    session_keepalive -> KeepaliveMessage    (empty payload)
    notification      -> NotificationMessage (payload.subscription + payload.event)
    session_reconnect -> ReconnectMessage    (payload.session.reconnect_url)
    revocation        -> RevocationMessage   (payload.subscription)

Notification events are typed further for the two topics we consume:
    channel.chat.message                                 -> ChatMessageEvent
    channel.channel_points_custom_reward_redemption.add  -> RedemptionEvent
anything else keeps its raw dict.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

LOGGER = logging.getLogger(__name__)

_FRACTION = re.compile(r"\.(\d+)")


def parse_twitch_timestamp(value: Any) -> datetime:
    """
    RFC3339 with nanoseconds ("...51.634234626Z") -> aware datetime.

    fromisoformat() only takes microseconds; unparseable input yields now().
    """
    if not isinstance(value, str) or not value.strip():
        if value:
            LOGGER.debug(f"Non-string timestamp {value!r}, using now")
        return datetime.now(timezone.utc)
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip(), count=1)
    text = text.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        LOGGER.debug(f"Unparseable timestamp {value!r}, using now")
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# Envelope
# ============================================================================

@dataclass(frozen=True)
class MessageMetadata:
    message_id: str
    message_type: str
    message_timestamp: str = ""
    subscription_type: Optional[str] = None
    subscription_version: Optional[str] = None


@dataclass(frozen=True)
class SessionDescriptor:
    """One live EventSub session. Superseded on reconnect, never mutated."""
    session_id: str
    connected_at: datetime
    keepalive_timeout_seconds: int = 10
    reconnect_url: Optional[str] = None
    status: str = "connected"


# ============================================================================
# Typed notification events
# ============================================================================

@dataclass(frozen=True)
class ChatMessageEvent:
    broadcaster_user_id: str
    chatter_user_id: str
    chatter_user_login: str
    chatter_user_name: str
    text: str
    color: Optional[str] = None
    message_id: str = ""


@dataclass(frozen=True)
class RedemptionEvent:
    redemption_id: str
    broadcaster_user_id: str
    user_id: str
    user_login: str
    user_name: str
    reward_id: str
    user_input: str = ""
    reward_title: str = ""
    reward_cost: int = 0
    status: str = "unfulfilled"
    redeemed_at: Optional[str] = None


NotificationEvent = Union[ChatMessageEvent, RedemptionEvent, dict]


# ============================================================================
# Message variants
# ============================================================================

@dataclass(frozen=True)
class WelcomeMessage:
    metadata: MessageMetadata
    session: SessionDescriptor


@dataclass(frozen=True)
class KeepaliveMessage:
    metadata: MessageMetadata


@dataclass(frozen=True)
class NotificationMessage:
    metadata: MessageMetadata
    subscription_type: str
    event: Any
    subscription: dict = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class ReconnectMessage:
    metadata: MessageMetadata
    session: SessionDescriptor

    @property
    def reconnect_url(self) -> Optional[str]:
        return self.session.reconnect_url


@dataclass(frozen=True)
class RevocationMessage:
    metadata: MessageMetadata
    subscription: dict = field(default_factory=dict, hash=False)

    @property
    def subscription_type(self) -> str:
        return self.subscription.get("type") or self.metadata.subscription_type or "?"

    @property
    def status(self) -> str:
        return self.subscription.get("status", "?")


EventSubMessage = Union[WelcomeMessage, KeepaliveMessage, NotificationMessage, ReconnectMessage, RevocationMessage]


class FrameError(ValueError):
    """Frame is not valid JSON or misses a required field."""


# ============================================================================
# Decoding
# ============================================================================

def _object(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _session(payload: dict) -> SessionDescriptor:
    session = payload.get("session")
    if not isinstance(session, dict) or not session.get("id"):
        raise FrameError("payload.session.id missing")
    return SessionDescriptor(
        session_id=str(session["id"]),
        connected_at=parse_twitch_timestamp(session.get("connected_at")),
        keepalive_timeout_seconds=int(session.get("keepalive_timeout_seconds") or 10),
        reconnect_url=session.get("reconnect_url") if isinstance(session.get("reconnect_url"), str) else None,
        status=_text(session.get("status")) or "connected",
    )


def _chat_event(event: dict) -> ChatMessageEvent:
    message = event.get("message") or {}
    color = event.get("color")
    return ChatMessageEvent(
        broadcaster_user_id=str(event.get("broadcaster_user_id", "")),
        chatter_user_id=str(event["chatter_user_id"]),
        chatter_user_login=_text(event.get("chatter_user_login")),
        chatter_user_name=_text(event.get("chatter_user_name")) or _text(event.get("chatter_user_login")),
        text=_text(message.get("text")) if isinstance(message, dict) else str(message),
        color=color if isinstance(color, str) and color else None,
        message_id=_text(event.get("message_id")),
    )


def _redemption_event(event: dict) -> RedemptionEvent:
    reward = event.get("reward") or {}
    if not isinstance(reward, dict):
        raise FrameError("redemption reward is not an object")
    return RedemptionEvent(
        redemption_id=str(event.get("id", "")),
        broadcaster_user_id=str(event.get("broadcaster_user_id", "")),
        user_id=str(event["user_id"]),
        user_login=_text(event.get("user_login")),
        user_name=_text(event.get("user_name")) or _text(event.get("user_login")),
        reward_id=str(reward.get("id", "")),
        user_input=_text(event.get("user_input")),
        reward_title=_text(reward.get("title")),
        reward_cost=int(reward.get("cost") or 0),
        status=_text(event.get("status")) or "unfulfilled",
        redeemed_at=event.get("redeemed_at") if isinstance(event.get("redeemed_at"), str) else None,
    )


EVENT_DECODERS = {
    "channel.chat.message": _chat_event,
    "channel.channel_points_custom_reward_redemption.add": _redemption_event,
}


def _notification(metadata: MessageMetadata, payload: dict) -> NotificationMessage:
    subscription = _object(payload.get("subscription"))
    sub_type = metadata.subscription_type or _text(subscription.get("type"))
    event = payload.get("event")
    if not isinstance(event, dict):
        raise FrameError("notification without payload.event")

    decoder = EVENT_DECODERS.get(sub_type)
    if decoder:
        try:
            event = decoder(event)
        except KeyError as e:
            raise FrameError(f"{sub_type} event missing {e}") from e
    return NotificationMessage(metadata, sub_type, event, subscription)


def decode_frame(raw: Union[str, bytes]) -> Optional[EventSubMessage]:
    """
    Decode one frame.

    Returns:
        Tagged message, or None for an unknown message_type

    Raises:
        FrameError: invalid JSON or a malformed known message
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FrameError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("metadata"), dict):
        raise FrameError("frame without metadata")

    meta = data["metadata"]
    metadata = MessageMetadata(
        message_id=str(meta.get("message_id", "")),
        message_type=str(meta.get("message_type", "")),
        message_timestamp=_text(meta.get("message_timestamp")),
        subscription_type=_text(meta.get("subscription_type")) or None,
        subscription_version=_text(meta.get("subscription_version")) or None,
    )
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        raise FrameError("payload is not an object")

    type_map = {
        "session_welcome": lambda: WelcomeMessage(metadata, _session(payload)),
        "session_keepalive": lambda: KeepaliveMessage(metadata),
        "notification": lambda: _notification(metadata, payload),
        "session_reconnect": lambda: ReconnectMessage(metadata, _session(payload)),
        "revocation": lambda: RevocationMessage(metadata, _object(payload.get("subscription"))),
    }

    build = type_map.get(metadata.message_type)
    if not build:
        LOGGER.warning(f"Unknown EventSub message type: {metadata.message_type!r}")
        return None

    try:
        return build()
    except (TypeError, ValueError, AttributeError) as e:
        if isinstance(e, FrameError):
            raise
        raise FrameError(f"malformed {metadata.message_type}: {e}") from e
