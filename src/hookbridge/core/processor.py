"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for config,
webhook dispatch, audit and outbound sends, so it can be driven by any
transport adapter.

The pipeline enforces a strict order:
1) Load the cached runtime config (skip the message if it cannot be loaded)
2) Drop our own messages when configured to
3) Decide automation and audit the inbound message
4) Dispatch to the webhook
5) Send the reply (if any) and audit exactly one outbound outcome
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from hookbridge.core.audit import AuditLogger
from hookbridge.core.config import ReplyDestination, RuntimeConfig
from hookbridge.core.config_cache import ConfigCache
from hookbridge.core.errors import ConfigLoadError, WebhookError
from hookbridge.core.models import Direction, InboundMessage, LogEntry, WebhookRequest
from hookbridge.core.ports import MessageSender, WebhookPort
from hookbridge.core.rules_engine import decide

LOGGER = logging.getLogger(__name__)

SKIP_REPLY_MARKER = "skipReply"
ERROR_DETAIL_CHARS = 900


def resolve_destination(message: InboundMessage, send_to: str) -> str:
    """Return where a reply goes: the sender for directToSender, else the chat."""

    if send_to == ReplyDestination.DIRECT_TO_SENDER and message.sender_id:
        return message.sender_id
    return message.chat_id


class MessageProcessor:
    """Orchestrates decision, dispatch, reply and audit for one message at a time."""

    def __init__(
        self,
        config_cache: ConfigCache,
        webhook: WebhookPort,
        audit: AuditLogger,
        sender: MessageSender,
    ) -> None:
        self._config_cache = config_cache
        self._webhook = webhook
        self._audit = audit
        self._sender = sender

    async def handle(self, message: InboundMessage) -> None:
        """Process one message; failures never escape to the next message."""

        try:
            await self._process(message)
        except Exception:
            LOGGER.exception(
                "Error while processing message (chat=%s sender=%s)",
                message.chat_id,
                message.sender_id,
            )

    async def _process(self, message: InboundMessage) -> None:
        try:
            config = await self._config_cache.get()
        except ConfigLoadError as exc:
            LOGGER.error("Failed to load runtime config: %s", exc)
            return

        if config.settings.ignore_from_self and message.from_self:
            return

        automated = decide(config, message.chat_id, message.is_group, message, self._sender.self_id)

        # Inbound traffic is logged whenever it carries text, automated or not.
        if message.text:
            LOGGER.info(
                "Incoming message (chat=%s sender=%s group=%s automated=%s)",
                message.chat_id,
                message.sender_id,
                message.is_group,
                automated,
            )
            await self._audit.record(
                LogEntry(
                    direction=Direction.INBOUND.value,
                    chat_id=message.chat_id,
                    sender_id=message.sender_id,
                    message_id=message.message_id,
                    text=message.text,
                    automated=automated,
                )
            )

        if not automated or not message.text:
            return

        request = WebhookRequest(
            request_id=str(uuid.uuid4()),
            received_at=datetime.now(timezone.utc),
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            is_group=message.is_group,
            message_id=message.message_id,
            timestamp=message.timestamp,
            text=message.text,
        )
        await self._dispatch(config, message, request)

    async def _dispatch(self, config: RuntimeConfig, message: InboundMessage, request: WebhookRequest) -> None:
        status: Optional[int] = None
        try:
            LOGGER.info(
                "Forwarding message to webhook (chat=%s sender=%s request=%s)",
                message.chat_id,
                message.sender_id,
                request.request_id,
            )
            result = await self._webhook.dispatch(request)
            status = result.status_code

            if result.skip_reply:
                await self._record_outbound(
                    message, request, chat_id=message.chat_id, status=status, error=SKIP_REPLY_MARKER
                )
                return

            reply_text = (result.reply_text or "").strip()
            if not reply_text:
                await self._record_outbound(message, request, chat_id=message.chat_id, status=status)
                return

            send_to = result.send_to or config.settings.reply_destination
            final_text = f"{config.settings.reply_prefix or ''}{reply_text}"
            destination = resolve_destination(message, send_to)

            await self._sender.send_text(destination, final_text)
            await self._record_outbound(message, request, chat_id=destination, status=status, text=final_text)
            LOGGER.info("Replied (destination=%s request=%s)", destination, request.request_id)
        except Exception as exc:
            if isinstance(exc, WebhookError):
                status = exc.status_code
            await self._record_outbound(
                message,
                request,
                chat_id=message.chat_id,
                status=status,
                error=str(exc)[:ERROR_DETAIL_CHARS] or type(exc).__name__,
            )
            LOGGER.error(
                "Failed to process message (chat=%s sender=%s request=%s): %s",
                message.chat_id,
                message.sender_id,
                request.request_id,
                exc,
            )

    async def _record_outbound(
        self,
        message: InboundMessage,
        request: WebhookRequest,
        *,
        chat_id: str,
        status: Optional[int],
        text: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        await self._audit.record(
            LogEntry(
                direction=Direction.OUTBOUND.value,
                chat_id=chat_id,
                sender_id=message.sender_id,
                text=text,
                automated=True,
                request_id=request.request_id,
                response_status=status,
                error_detail=error,
            )
        )
