"""Telethon implementation of the TransportSession port.

One TelegramTransport wraps one TelegramClient for the lifetime of one
connection. New-message events are mapped to InboundMessage and queued; a
single worker task drains the queue so messages are handled one at a time in
arrival order. Closing the transport cancels the worker and drops the queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from telethon import TelegramClient, errors, events

from hookbridge.adapters.telegram_mapper import build_inbound
from hookbridge.adapters.telegram_session import StoredSession
from hookbridge.core.errors import CredentialStoreError
from hookbridge.core.models import DisconnectReason, InboundMessage
from hookbridge.core.ports import MessageHandler
from hookbridge.login import authorize_with_phone, authorize_with_qr

LOGGER = logging.getLogger(__name__)

# The 401 family and AuthKeyError mean the stored authorization is gone for good.
LOGGED_OUT_ERRORS = (errors.UnauthorizedError, errors.AuthKeyError)


def _peer(chat_id: str):
    try:
        return int(chat_id)
    except ValueError:
        return chat_id


class TelegramTransport:
    """Drive a TelegramClient through connect, login, listen and close."""

    def __init__(self, client: TelegramClient, session: StoredSession) -> None:
        self._client = client
        self._session = session
        self._me = None
        self._pending_phone: Optional[str] = None
        self._handler: Optional[MessageHandler] = None
        self._queue: Optional[asyncio.Queue[InboundMessage]] = None
        self._worker: Optional[asyncio.Task] = None
        self._fatal: Optional[CredentialStoreError] = None

    @property
    def self_id(self) -> Optional[str]:
        return str(self._me.id) if self._me is not None else None

    async def connect(self) -> None:
        await self._client.connect()
        await self._session.flush()

    async def is_registered(self) -> bool:
        return await self._client.is_user_authorized()

    async def request_pairing_code(self, phone_number: str) -> Optional[str]:
        """Ask Telegram to deliver a login code; returns how it was delivered."""

        sent = await self._client.send_code_request(phone_number)
        self._pending_phone = phone_number
        await self._session.flush()
        return type(sent.type).__name__

    async def wait_for_registration(self) -> None:
        if self._pending_phone:
            await authorize_with_phone(self._client, self._pending_phone)
        else:
            await authorize_with_qr(self._client)
        await self._session.flush()

    async def start(self, handler: MessageHandler) -> None:
        self._me = await self._client.get_me()
        self._handler = handler
        self._queue = asyncio.Queue()
        # Own messages are delivered too; the pipeline filters them by setting.
        self._client.add_event_handler(self._on_new_message, events.NewMessage())
        self._worker = asyncio.create_task(self._drain(self._queue))
        await self._session.flush()

    async def _on_new_message(self, event) -> None:
        if self._queue is None:
            return
        inbound = build_inbound(event.message, self.self_id, getattr(self._me, "username", None))
        if inbound is not None:
            self._queue.put_nowait(inbound)

    async def _drain(self, queue: "asyncio.Queue[InboundMessage]") -> None:
        while True:
            message = await queue.get()
            try:
                await self._handler(message)
                await self._session.flush()
            except CredentialStoreError as exc:
                # Losing session state is worse than stopping: end the session.
                LOGGER.error("Failed to persist session state: %s", exc)
                self._fatal = exc
                await self._client.disconnect()
                return
            finally:
                queue.task_done()

    async def send_text(self, chat_id: str, text: str) -> None:
        await self._client.send_message(_peer(chat_id), text)

    async def run_until_disconnected(self) -> DisconnectReason:
        try:
            await self._client.run_until_disconnected()
        except LOGGED_OUT_ERRORS as exc:
            return DisconnectReason(logged_out=True, detail=type(exc).__name__)
        except Exception as exc:
            if self._fatal is not None:
                raise self._fatal from exc
            return DisconnectReason(logged_out=False, detail=f"{type(exc).__name__}: {exc}")

        if self._fatal is not None:
            raise self._fatal
        return DisconnectReason(logged_out=False, detail="connection closed")

    async def close(self) -> None:
        self._client.remove_event_handler(self._on_new_message)
        self._queue = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._client.is_connected():
            await self._client.disconnect()
        await self._session.flush()
