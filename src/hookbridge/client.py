"""Telegram client factory for hookbridge.

The client's lifecycle (connect, listen, disconnect) is managed explicitly
by the connection supervisor, so this module only builds the client around
a store-backed session.
"""

from __future__ import annotations

import logging

from telethon import TelegramClient

from hookbridge.adapters.telegram_session import StoredSession
from hookbridge.settings import BridgeSettings


def build_client(settings: BridgeSettings, session: StoredSession) -> TelegramClient:
    """Create a Telethon client whose session lives in the credential store."""

    logging.getLogger(__name__).info("Initializing Telegram client for instance %s", session.instance)

    # Startup never replays missed history; only live messages are bridged.
    return TelegramClient(session, settings.api_id, settings.api_hash, catch_up=False)
