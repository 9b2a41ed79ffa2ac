"""Best-effort audit trail for inbound and outbound events."""

from __future__ import annotations

import logging

from hookbridge.core.models import LogEntry
from hookbridge.core.ports import AuditSink

LOGGER = logging.getLogger(__name__)


class AuditLogger:
    """Record log entries without ever failing the caller's flow."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def record(self, entry: LogEntry) -> None:
        try:
            await self._sink.insert_log(entry)
        except Exception as exc:
            LOGGER.warning(
                "Failed to insert message log (%s %s): %s",
                entry.direction,
                entry.chat_id,
                exc,
            )
