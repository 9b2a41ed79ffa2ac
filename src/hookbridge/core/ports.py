"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, webhook and transport
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Sequence

from hookbridge.core.config import RuntimeConfig
from hookbridge.core.models import DisconnectReason, InboundMessage, LogEntry, WebhookRequest, WebhookResult

MessageHandler = Callable[[InboundMessage], Awaitable[None]]


class SettingsSource(Protocol):
    """Loads settings and entity rules from the datastore in one pass."""

    async def load_runtime_config(self) -> RuntimeConfig:
        ...


class AuditSink(Protocol):
    """Append-only message log storage."""

    async def insert_log(self, entry: LogEntry) -> None:
        ...


class KeyValueBackend(Protocol):
    """Raw row access for credentials and keys.

    Values are JSON-compatible objects; (de)serialization happens in the
    CredentialStore. Implementations raise DatastoreError on failure.
    """

    async def fetch_credentials(self, instance: str) -> Optional[Any]:
        ...

    async def upsert_credentials(self, instance: str, data: Any) -> None:
        ...

    async def fetch_keys(self, instance: str, category: str, ids: Sequence[str]) -> dict[str, Any]:
        ...

    async def fetch_all_keys(self, instance: str, category: str) -> dict[str, Any]:
        ...

    async def upsert_keys(self, instance: str, rows: Iterable[tuple[str, str, Any]]) -> None:
        ...

    async def delete_key(self, instance: str, category: str, key_id: str) -> None:
        ...


class WebhookPort(Protocol):
    """Dispatches a request to the automation webhook."""

    async def dispatch(self, request: WebhookRequest) -> WebhookResult:
        ...


class MessageSender(Protocol):
    """Outbound message operations required by the pipeline."""

    @property
    def self_id(self) -> Optional[str]:
        ...

    async def send_text(self, chat_id: str, text: str) -> None:
        ...


class TransportSession(MessageSender, Protocol):
    """Lifecycle operations the connection supervisor drives."""

    async def connect(self) -> None:
        ...

    async def is_registered(self) -> bool:
        ...

    async def request_pairing_code(self, phone_number: str) -> Optional[str]:
        ...

    async def wait_for_registration(self) -> None:
        ...

    async def start(self, handler: MessageHandler) -> None:
        ...

    async def run_until_disconnected(self) -> DisconnectReason:
        ...

    async def close(self) -> None:
        ...
