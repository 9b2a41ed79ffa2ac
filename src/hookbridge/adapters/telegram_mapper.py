"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from typing import Optional

from telethon.tl.custom import Message
from telethon.tl.types import MessageEntityMention, MessageEntityMentionName, MessageMediaWebPage

from hookbridge.core.identifiers import normalize_id
from hookbridge.core.models import InboundMessage, MessageContent, extract_text


def is_broadcast_channel(message: Message) -> bool:
    """Broadcast channels have no conversation to reply into."""

    return bool(getattr(message, "is_channel", False)) and not getattr(message, "is_group", False)


def content_from_message(message: Message) -> MessageContent:
    """Sort the message text into the variant it came from."""

    text = message.raw_text or None
    media = getattr(message, "media", None)

    # Link previews attach media to what is still a plain text message.
    if media is None or isinstance(media, MessageMediaWebPage):
        if getattr(message, "entities", None) or getattr(message, "reply_to", None):
            return MessageContent(extended_text=text)
        return MessageContent(conversation=text)

    if getattr(message, "photo", None):
        return MessageContent(image_caption=text)
    if getattr(message, "video", None):
        return MessageContent(video_caption=text)
    if getattr(message, "document", None):
        return MessageContent(document_caption=text)
    # Polls, locations, contacts, etc. carry no text we forward.
    return MessageContent()


def mentioned_ids(
    message: Message,
    self_id: Optional[str],
    self_username: Optional[str] = None,
) -> tuple[str, ...]:
    """Collect mention targets as identifiers.

    Mentions by user id are kept as ids. ``@username`` mentions are kept as
    normalized usernames, except our own username which is mapped to our id
    so the rules engine only has to compare ids.
    """

    if not getattr(message, "entities", None):
        return ()

    own_username = normalize_id(self_username)
    found: list[str] = []
    for entity, text in message.get_entities_text((MessageEntityMention, MessageEntityMentionName)):
        if isinstance(entity, MessageEntityMentionName):
            found.append(str(entity.user_id))
            continue
        username = normalize_id(text)
        if not username:
            continue
        if own_username and username == own_username and self_id:
            found.append(self_id)
        else:
            found.append(username)
    return tuple(found)


def build_inbound(
    message: Message,
    self_id: Optional[str],
    self_username: Optional[str] = None,
) -> Optional[InboundMessage]:
    """Build a core InboundMessage from a Telethon Message.

    Returns None for messages the bridge never handles (broadcast channels).
    """

    if message.chat_id is None or is_broadcast_channel(message):
        return None

    is_group = bool(getattr(message, "is_group", False))
    sender_id = message.sender_id if is_group else None
    date = getattr(message, "date", None)

    return InboundMessage(
        chat_id=str(message.chat_id),
        is_group=is_group,
        sender_id=str(sender_id) if sender_id is not None else None,
        message_id=str(message.id) if message.id is not None else None,
        timestamp=int(date.timestamp()) if date else None,
        text=extract_text(content_from_message(message)),
        mentioned_ids=mentioned_ids(message, self_id, self_username),
        from_self=bool(getattr(message, "out", False)),
    )
