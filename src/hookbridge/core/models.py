"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class MessageContent:
    """Text-bearing variants of a transport message."""

    conversation: Optional[str] = None
    extended_text: Optional[str] = None
    image_caption: Optional[str] = None
    video_caption: Optional[str] = None
    document_caption: Optional[str] = None


def extract_text(content: Optional[MessageContent]) -> Optional[str]:
    """Return the first non-empty variant in priority order, or None."""

    if content is None:
        return None
    for candidate in (
        content.conversation,
        content.extended_text,
        content.image_caption,
        content.video_caption,
        content.document_caption,
    ):
        if candidate:
            return candidate
    return None


@dataclass(frozen=True)
class InboundMessage:
    """Minimal message context used by the core processing pipeline."""

    chat_id: str
    is_group: bool
    sender_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    text: Optional[str] = None
    mentioned_ids: tuple[str, ...] = ()
    from_self: bool = False


@dataclass(frozen=True)
class WebhookRequest:
    """Normalized payload sent to the automation webhook."""

    request_id: str
    received_at: datetime
    chat_id: str
    is_group: bool
    sender_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    text: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "requestId": self.request_id,
            "receivedAt": self.received_at.isoformat(),
            "chatJid": self.chat_id,
            "isGroup": self.is_group,
        }
        optional = {
            "senderJid": self.sender_id,
            "messageId": self.message_id,
            "messageTimestamp": self.timestamp,
            "text": self.text,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass(frozen=True)
class WebhookResult:
    """Parsed webhook response plus the HTTP status observed by the dispatcher."""

    status_code: int
    reply_text: Optional[str] = None
    send_to: Optional[str] = None
    skip_reply: bool = False


@dataclass(frozen=True)
class LogEntry:
    """Append-only audit record."""

    direction: str
    chat_id: str
    automated: bool
    sender_id: Optional[str] = None
    message_id: Optional[str] = None
    text: Optional[str] = None
    request_id: Optional[str] = None
    response_status: Optional[int] = None
    error_detail: Optional[str] = None


@dataclass(frozen=True)
class DisconnectReason:
    """Why a transport session ended."""

    logged_out: bool
    detail: str = ""


@dataclass(frozen=True)
class UpdateState:
    """Typed value of the ``update-state`` key category."""

    pts: int
    qts: int
    date: datetime
    seq: int
    unread_count: int = 0


@dataclass
class SessionStats:
    """Counters exposed by the supervisor for logging and tests."""

    sessions_started: int = 0
    restarts: int = 0
    pairing_requests: int = 0
    reasons: list[DisconnectReason] = field(default_factory=list)
