from __future__ import annotations

import asyncio
from typing import Optional

from hookbridge.core.audit import AuditLogger
from hookbridge.core.config import EntityRule, RuntimeConfig, Settings
from hookbridge.core.config_cache import ConfigCache
from hookbridge.core.errors import ConfigLoadError, WebhookError
from hookbridge.core.models import InboundMessage, LogEntry, WebhookRequest, WebhookResult
from hookbridge.core.processor import SKIP_REPLY_MARKER, MessageProcessor

SELF_ID = "999"


class FakeSource:
    def __init__(self, config: Optional[RuntimeConfig] = None) -> None:
        self.config = config

    async def load_runtime_config(self) -> RuntimeConfig:
        if self.config is None:
            raise ConfigLoadError("Failed to load app_settings: missing row")
        return self.config


class FakeSink:
    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    async def insert_log(self, entry: LogEntry) -> None:
        self.entries.append(entry)


class FakeWebhook:
    def __init__(self, result: Optional[WebhookResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or WebhookResult(status_code=200)
        self.error = error
        self.requests: list[WebhookRequest] = []

    async def dispatch(self, request: WebhookRequest) -> WebhookResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


class FakeSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    @property
    def self_id(self) -> Optional[str]:
        return SELF_ID

    async def send_text(self, chat_id: str, text: str) -> None:
        if self.fail:
            raise ConnectionError("transport closed")
        self.sent.append((chat_id, text))


def _config(
    *,
    contacts_mode: str = "denylist",
    groups_default_rule: str = "disabled",
    reply_destination: str = "sameChat",
    reply_prefix: str = "",
    ignore_from_self: bool = True,
    rules: Optional[list[EntityRule]] = None,
) -> RuntimeConfig:
    settings = Settings(
        ignore_from_self=ignore_from_self,
        contacts_mode=contacts_mode,
        groups_default_rule=groups_default_rule,
        reply_destination=reply_destination,
        reply_prefix=reply_prefix,
    )
    return RuntimeConfig.build(settings, rules or [])


def _processor(config, webhook: FakeWebhook, sender: Optional[FakeSender] = None):
    sink = FakeSink()
    sender = sender or FakeSender()
    processor = MessageProcessor(ConfigCache(FakeSource(config)), webhook, AuditLogger(sink), sender)
    return processor, sink, sender


def _direct(text: Optional[str] = "hello", **kwargs) -> InboundMessage:
    return InboundMessage(chat_id="100", is_group=False, message_id="7", timestamp=1704067200, text=text, **kwargs)


def _group(mentions: tuple[str, ...] = ()) -> InboundMessage:
    return InboundMessage(
        chat_id="-500",
        is_group=True,
        sender_id="42",
        message_id="8",
        text="@bridge_bot what's up?",
        mentioned_ids=mentions,
    )


def _outbound(sink: FakeSink) -> list[LogEntry]:
    return [entry for entry in sink.entries if entry.direction == "outbound"]


def test_direct_message_in_denylist_mode_gets_prefixed_reply() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="hi"))
    processor, sink, sender = _processor(_config(reply_prefix="[bot] "), webhook)

    asyncio.run(processor.handle(_direct()))

    assert sender.sent == [("100", "[bot] hi")]
    request = webhook.requests[0]
    assert request.chat_id == "100"
    assert request.text == "hello"
    assert request.sender_id is None

    inbound, outbound = sink.entries
    assert inbound.direction == "inbound"
    assert inbound.automated is True
    assert inbound.text == "hello"
    assert outbound.direction == "outbound"
    assert outbound.text == "[bot] hi"
    assert outbound.response_status == 200
    assert outbound.request_id == request.request_id
    assert outbound.error_detail is None


def test_group_mention_only_dispatches_only_when_mentioned() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="yo"))
    processor, sink, sender = _processor(_config(groups_default_rule="mentionOnly"), webhook)

    asyncio.run(processor.handle(_group(mentions=(SELF_ID,))))

    assert len(webhook.requests) == 1
    assert webhook.requests[0].sender_id == "42"
    assert sender.sent == [("-500", "yo")]


def test_group_without_mention_is_logged_but_not_dispatched() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="yo"))
    processor, sink, sender = _processor(_config(groups_default_rule="mentionOnly"), webhook)

    asyncio.run(processor.handle(_group(mentions=("123",))))

    assert webhook.requests == []
    assert sender.sent == []
    assert [entry.direction for entry in sink.entries] == ["inbound"]
    assert sink.entries[0].automated is False


def test_skip_reply_records_marker_and_status() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=202, reply_text="ignored", skip_reply=True))
    processor, sink, sender = _processor(_config(), webhook)

    asyncio.run(processor.handle(_direct()))

    assert sender.sent == []
    (outbound,) = _outbound(sink)
    assert outbound.error_detail == SKIP_REPLY_MARKER
    assert outbound.response_status == 202


def test_webhook_timeout_records_error_without_status() -> None:
    webhook = FakeWebhook(error=WebhookError(None, "webhook timed out after 15000 ms"))
    processor, sink, sender = _processor(_config(), webhook)

    asyncio.run(processor.handle(_direct()))

    assert sender.sent == []
    (outbound,) = _outbound(sink)
    assert outbound.response_status is None
    assert outbound.error_detail == "webhook timed out after 15000 ms"


def test_non_success_status_is_recorded() -> None:
    webhook = FakeWebhook(error=WebhookError(502, "webhook responded 502: bad gateway"))
    processor, sink, _ = _processor(_config(), webhook)

    asyncio.run(processor.handle(_direct()))

    (outbound,) = _outbound(sink)
    assert outbound.response_status == 502
    assert "bad gateway" in outbound.error_detail


def test_empty_reply_records_outbound_without_send() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="   "))
    processor, sink, sender = _processor(_config(), webhook)

    asyncio.run(processor.handle(_direct()))

    assert sender.sent == []
    (outbound,) = _outbound(sink)
    assert outbound.response_status == 200
    assert outbound.text is None
    assert outbound.error_detail is None


def test_send_failure_records_single_outbound_error() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="hi"))
    processor, sink, _ = _processor(_config(), webhook, FakeSender(fail=True))

    asyncio.run(processor.handle(_direct()))

    (outbound,) = _outbound(sink)
    assert outbound.response_status == 200
    assert outbound.error_detail == "transport closed"


def test_direct_to_sender_reply_goes_to_group_sender() -> None:
    webhook = FakeWebhook(WebhookResult(status_code=200, reply_text="psst", send_to="directToSender"))
    processor, _, sender = _processor(_config(groups_default_rule="enabled"), webhook)

    asyncio.run(processor.handle(_group()))

    assert sender.sent == [("42", "psst")]


def test_own_messages_are_ignored_when_configured() -> None:
    webhook = FakeWebhook()
    processor, sink, _ = _processor(_config(ignore_from_self=True), webhook)

    asyncio.run(processor.handle(_direct(from_self=True)))

    assert sink.entries == []
    assert webhook.requests == []


def test_message_without_text_is_not_logged_or_dispatched() -> None:
    webhook = FakeWebhook()
    processor, sink, _ = _processor(_config(), webhook)

    asyncio.run(processor.handle(_direct(text=None)))

    assert sink.entries == []
    assert webhook.requests == []


def test_config_load_failure_skips_message() -> None:
    webhook = FakeWebhook()
    processor, sink, sender = _processor(None, webhook)

    asyncio.run(processor.handle(_direct()))

    assert sink.entries == []
    assert webhook.requests == []
    assert sender.sent == []
