"""Credential and key storage for transport sessions.

The transport keeps a working copy of its secrets in memory; this store owns
the only durable copy. Values are persisted as JSON through a KeyValueBackend:

- credentials: one record per instance
- keys: one value per (instance, category, id)

Binary values (auth keys) are wrapped as ``{"type": "Buffer", "data": b64}``
so they survive JSON columns.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from hookbridge.core.errors import CredentialStoreError, DatastoreError
from hookbridge.core.models import UpdateState
from hookbridge.core.ports import KeyValueBackend

LOGGER = logging.getLogger(__name__)

BUFFER_TAG = "Buffer"


class KeyCategory(str, Enum):
    """Closed set of key categories the transport may persist."""

    ENTITY = "entity"
    UPDATE_STATE = "update-state"


def encode_value(value: Any) -> Any:
    """Convert a value into JSON-compatible data, tagging bytes."""

    if isinstance(value, (bytes, bytearray)):
        return {"type": BUFFER_TAG, "data": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Mapping):
        return {str(key): encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    """Reverse encode_value, reviving tagged bytes."""

    if isinstance(value, Mapping):
        if value.get("type") == BUFFER_TAG and isinstance(value.get("data"), str):
            return base64.b64decode(value["data"])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _passthrough(value: Any) -> Any:
    return value


def _encode_update_state(state: UpdateState) -> dict:
    return {
        "pts": state.pts,
        "qts": state.qts,
        "date": state.date.timestamp(),
        "seq": state.seq,
        "unread_count": state.unread_count,
    }


def _decode_update_state(data: Mapping) -> UpdateState:
    return UpdateState(
        pts=int(data["pts"]),
        qts=int(data["qts"]),
        date=datetime.fromtimestamp(float(data["date"]), tz=timezone.utc),
        seq=int(data["seq"]),
        unread_count=int(data.get("unread_count", 0)),
    )


@dataclass(frozen=True)
class KeyCodec:
    """Per-category conversion applied on top of raw JSON (de)serialization."""

    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


# update-state is the only category whose stored payload needs a second,
# structured decode step after the raw JSON decode.
KEY_CODECS: dict[KeyCategory, KeyCodec] = {
    KeyCategory.ENTITY: KeyCodec(encode=_passthrough, decode=_passthrough),
    KeyCategory.UPDATE_STATE: KeyCodec(encode=_encode_update_state, decode=_decode_update_state),
}


def _category(value: Any) -> KeyCategory:
    try:
        return KeyCategory(value)
    except ValueError as exc:
        raise CredentialStoreError(f"Unknown key category: {value}") from exc


class CredentialStore:
    """Load and persist session credentials and keys for named instances."""

    def __init__(
        self,
        backend: KeyValueBackend,
        initial_credentials: Callable[[], dict] = dict,
    ) -> None:
        self._backend = backend
        self._initial_credentials = initial_credentials

    async def load_credentials(self, instance: str) -> dict:
        """Return the stored record, creating and persisting one if absent.

        Concurrent first loads may both create a record; the last write wins,
        which is acceptable because this only happens during first setup.
        """

        try:
            data = await self._backend.fetch_credentials(instance)
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to load credentials for {instance}: {exc}") from exc

        if data is not None:
            return decode_value(data)

        record = self._initial_credentials()
        LOGGER.info("No stored credentials for instance %s; initialising", instance)
        try:
            await self._backend.upsert_credentials(instance, encode_value(record))
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to init credentials for {instance}: {exc}") from exc
        return record

    async def save_credentials(self, instance: str, record: Mapping) -> None:
        try:
            await self._backend.upsert_credentials(instance, encode_value(record))
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to save credentials for {instance}: {exc}") from exc

    async def get_keys(
        self,
        instance: str,
        category: KeyCategory,
        ids: Sequence[str],
    ) -> dict[str, Optional[Any]]:
        """Batched lookup; every requested id is present, missing ones map to None."""

        result: dict[str, Optional[Any]] = {}
        if not ids:
            return result

        category = _category(category)
        try:
            rows = await self._backend.fetch_keys(instance, category.value, list(ids))
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to load {category.value} keys: {exc}") from exc

        codec = KEY_CODECS[category]
        for key_id in ids:
            raw = rows.get(key_id)
            result[key_id] = codec.decode(decode_value(raw)) if raw is not None else None
        return result

    async def all_keys(self, instance: str, category: KeyCategory) -> dict[str, Any]:
        """Return every stored value for a category (used to warm caches)."""

        category = _category(category)
        try:
            rows = await self._backend.fetch_all_keys(instance, category.value)
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to load {category.value} keys: {exc}") from exc

        codec = KEY_CODECS[category]
        return {key_id: codec.decode(decode_value(raw)) for key_id, raw in rows.items() if raw is not None}

    async def set_keys(
        self,
        instance: str,
        updates: Mapping[KeyCategory, Mapping[str, Optional[Any]]],
    ) -> None:
        """Upsert present values in one batch, then delete absent ones in order."""

        upserts: list[tuple[str, str, Any]] = []
        deletes: list[tuple[str, str]] = []
        for raw_category, values in updates.items():
            category = _category(raw_category)
            codec = KEY_CODECS[category]
            for key_id, value in values.items():
                if value is None:
                    deletes.append((category.value, key_id))
                else:
                    upserts.append((category.value, key_id, encode_value(codec.encode(value))))

        try:
            if upserts:
                await self._backend.upsert_keys(instance, upserts)
            # Deletes are committed one at a time, in the order they were emitted.
            for category_value, key_id in deletes:
                await self._backend.delete_key(instance, category_value, key_id)
        except DatastoreError as exc:
            raise CredentialStoreError(f"Failed to write keys for {instance}: {exc}") from exc
