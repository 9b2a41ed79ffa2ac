from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest
from telethon import errors
from telethon.tl import types

from hookbridge.adapters.telegram_transport import TelegramTransport
from hookbridge.core.errors import CredentialStoreError
from hookbridge.core.models import InboundMessage


class DummyMe:
    id = 999
    username = "bridge_bot"


class DummySentCode:
    def __init__(self) -> None:
        self.type = types.auth.SentCodeTypeApp(length=5)


class DummyMessage:
    def __init__(self, text: str, message_id: int, chat_id: int = 100) -> None:
        self.chat_id = chat_id
        self.id = message_id
        self.raw_text = text
        self.date = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DummyEvent:
    def __init__(self, message: DummyMessage) -> None:
        self.message = message


class DummyClient:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.connected = False
        self.handlers: list = []
        self.sent: list[tuple] = []
        self.code_requests: list[str] = []
        self._disconnected = asyncio.Event()

    async def connect(self) -> None:
        self.connected = True

    def is_connected(self) -> bool:
        return self.connected

    async def disconnect(self) -> None:
        self.connected = False
        self._disconnected.set()

    async def is_user_authorized(self) -> bool:
        return True

    async def send_code_request(self, phone: str) -> DummySentCode:
        self.code_requests.append(phone)
        return DummySentCode()

    async def get_me(self) -> DummyMe:
        return DummyMe()

    def add_event_handler(self, callback, event) -> None:
        self.handlers.append(callback)

    def remove_event_handler(self, callback) -> None:
        if callback in self.handlers:
            self.handlers.remove(callback)

    async def send_message(self, peer, text: str) -> None:
        self.sent.append((peer, text))

    async def run_until_disconnected(self) -> None:
        if self.error is not None:
            raise self.error
        await self._disconnected.wait()


class DummySession:
    def __init__(self) -> None:
        self.flushes = 0
        self.fail = False

    async def flush(self) -> None:
        if self.fail:
            raise CredentialStoreError("datastore down")
        self.flushes += 1


def _classify(error: BaseException):
    async def scenario():
        transport = TelegramTransport(DummyClient(error), DummySession())
        return await transport.run_until_disconnected()

    return asyncio.run(scenario())


def test_unauthorized_family_is_logged_out() -> None:
    for error in (
        errors.UnauthorizedError(request=None, message="AUTH_KEY_INVALID"),
        errors.AuthKeyUnregisteredError(request=None),
        errors.AuthKeyError(request=None, message="AUTH_KEY_DUPLICATED"),
    ):
        reason = _classify(error)
        assert reason.logged_out, error
        assert reason.detail == type(error).__name__


def test_other_failures_are_transient() -> None:
    reason = _classify(ConnectionError("connection reset"))
    assert not reason.logged_out
    assert "connection reset" in reason.detail


def test_plain_disconnect_is_transient() -> None:
    async def scenario():
        client = DummyClient()
        transport = TelegramTransport(client, DummySession())
        await transport.connect()
        await client.disconnect()
        return await transport.run_until_disconnected()

    reason = asyncio.run(scenario())
    assert not reason.logged_out


def test_messages_are_handled_one_at_a_time_in_arrival_order() -> None:
    handled: list[str] = []
    active: list[int] = []

    async def scenario() -> None:
        client = DummyClient()
        transport = TelegramTransport(client, DummySession())
        done = asyncio.Event()
        running = 0

        async def handler(message: InboundMessage) -> None:
            nonlocal running
            running += 1
            active.append(running)
            # The first message is the slowest; later ones must still wait.
            await asyncio.sleep(0.02 if message.text == "one" else 0)
            handled.append(message.text)
            running -= 1
            if len(handled) == 3:
                done.set()

        await transport.start(handler)
        callback = client.handlers[0]
        for index, text in enumerate(["one", "two", "three"], start=1):
            await callback(DummyEvent(DummyMessage(text, index)))
        await asyncio.wait_for(done.wait(), timeout=2)
        await transport.close()

    asyncio.run(scenario())

    assert handled == ["one", "two", "three"]
    assert max(active) == 1


def test_close_cancels_worker_and_drops_queued_messages() -> None:
    handled: list[str] = []
    cancelled: list[str] = []

    async def scenario() -> tuple[DummyClient, DummySession]:
        client = DummyClient()
        session = DummySession()
        transport = TelegramTransport(client, session)
        started = asyncio.Event()

        async def handler(message: InboundMessage) -> None:
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(message.text)
                raise
            handled.append(message.text)

        await transport.connect()
        await transport.start(handler)
        callback = client.handlers[0]
        await callback(DummyEvent(DummyMessage("one", 1)))
        await callback(DummyEvent(DummyMessage("two", 2)))
        await asyncio.wait_for(started.wait(), timeout=2)

        flushes_before = session.flushes
        await transport.close()
        assert session.flushes == flushes_before + 1

        await callback(DummyEvent(DummyMessage("late", 3)))
        await asyncio.sleep(0)
        return client, session

    client, _ = asyncio.run(scenario())

    assert cancelled == ["one"]
    assert handled == []
    assert client.handlers == []
    assert not client.connected


def test_flush_failure_ends_session_with_credential_error() -> None:
    handled: list[str] = []

    async def scenario() -> None:
        client = DummyClient()
        session = DummySession()
        transport = TelegramTransport(client, session)

        async def handler(message: InboundMessage) -> None:
            handled.append(message.text)

        await transport.connect()
        await transport.start(handler)
        session.fail = True
        await client.handlers[0](DummyEvent(DummyMessage("one", 1)))

        with pytest.raises(CredentialStoreError, match="datastore down"):
            await asyncio.wait_for(transport.run_until_disconnected(), timeout=2)
        assert not client.connected

    asyncio.run(scenario())
    assert handled == ["one"]


def test_pairing_code_and_send_text() -> None:
    async def scenario() -> tuple[DummyClient, Optional[str], DummySession]:
        client = DummyClient()
        session = DummySession()
        transport = TelegramTransport(client, session)
        delivery = await transport.request_pairing_code("15551234567")
        await transport.send_text("-100123", "hello")
        await transport.send_text("@someone", "hi")
        return client, delivery, session

    client, delivery, session = asyncio.run(scenario())

    assert delivery == "SentCodeTypeApp"
    assert client.code_requests == ["15551234567"]
    assert session.flushes == 1
    assert client.sent == [(-100123, "hello"), ("@someone", "hi")]
