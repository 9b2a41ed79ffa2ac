"""Telethon session backed by the CredentialStore.

Telethon keeps its session (DC address, auth key, entity cache, update
state) in a Session object. StoredSession keeps the working copy in memory
like MemorySession, records every mutation, and writes them back to the
CredentialStore when ``flush()`` is awaited:

- DC address and auth key -> the instance's credential record
- entity cache rows       -> ``entity`` keys
- update states           -> ``update-state`` keys
"""

from __future__ import annotations

import logging
from typing import Any

from telethon.crypto import AuthKey
from telethon.sessions import MemorySession
from telethon.tl import types

from hookbridge.core.credentials import CredentialStore, KeyCategory
from hookbridge.core.models import UpdateState

LOGGER = logging.getLogger(__name__)


def new_credentials() -> dict:
    """Credential record for a session that has never connected."""

    return {
        "dc_id": 0,
        "server_address": None,
        "port": None,
        "auth_key": None,
        "takeout_id": None,
    }


class StoredSession(MemorySession):
    """MemorySession whose state is persisted through a CredentialStore."""

    def __init__(self, store: CredentialStore, instance: str) -> None:
        super().__init__()
        self._store = store
        self._instance = instance
        self._credentials_dirty = False
        self._pending: dict[KeyCategory, dict[str, Any]] = {}

    @classmethod
    async def restore(cls, store: CredentialStore, instance: str) -> "StoredSession":
        """Load credentials, update state and cached entities for an instance."""

        session = cls(store, instance)
        record = await store.load_credentials(instance)
        session._apply_credentials(record)

        # Id 0 holds the account-wide state; other ids are per-channel states.
        states = await store.all_keys(instance, KeyCategory.UPDATE_STATE)
        for key_id, state in states.items():
            session._update_states[int(key_id)] = _to_telethon_state(state)

        entities = await store.all_keys(instance, KeyCategory.ENTITY)
        for key_id, row in entities.items():
            session._entities.add(
                (int(key_id), row.get("hash"), row.get("username"), row.get("phone"), row.get("name"))
            )

        LOGGER.info(
            "Restored session for instance %s (dc=%s, entities=%s)",
            instance,
            session.dc_id,
            len(entities),
        )
        return session

    @property
    def instance(self) -> str:
        return self._instance

    @property
    def is_dirty(self) -> bool:
        return self._credentials_dirty or any(self._pending.values())

    def _apply_credentials(self, record: dict) -> None:
        self._dc_id = record.get("dc_id") or 0
        self._server_address = record.get("server_address")
        self._port = record.get("port")
        self._takeout_id = record.get("takeout_id")
        auth_key = record.get("auth_key")
        self._auth_key = AuthKey(data=auth_key) if auth_key else None

    def credentials_record(self) -> dict:
        return {
            "dc_id": self._dc_id,
            "server_address": self._server_address,
            "port": self._port,
            "auth_key": self._auth_key.key if self._auth_key else None,
            "takeout_id": self._takeout_id,
        }

    def set_dc(self, dc_id, server_address, port):
        super().set_dc(dc_id, server_address, port)
        self._credentials_dirty = True

    @property
    def auth_key(self):
        return self._auth_key

    @auth_key.setter
    def auth_key(self, value):
        self._auth_key = value
        self._credentials_dirty = True

    @property
    def takeout_id(self):
        return self._takeout_id

    @takeout_id.setter
    def takeout_id(self, value):
        self._takeout_id = value
        self._credentials_dirty = True

    def set_update_state(self, entity_id, state):
        super().set_update_state(entity_id, state)
        self._pending.setdefault(KeyCategory.UPDATE_STATE, {})[str(entity_id)] = UpdateState(
            pts=state.pts,
            qts=state.qts,
            date=state.date,
            seq=state.seq,
            unread_count=state.unread_count,
        )

    def process_entities(self, tlo):
        rows = self._entities_to_rows(tlo)
        if not rows:
            return
        self._entities |= set(rows)
        pending = self._pending.setdefault(KeyCategory.ENTITY, {})
        for entity_id, entity_hash, username, phone, name in rows:
            pending[str(entity_id)] = {
                "hash": entity_hash,
                "username": username,
                "phone": phone,
                "name": name,
            }

    def delete(self):
        """Drop the auth key; the next flush persists the empty credentials."""

        super().delete()
        self._auth_key = None
        self._credentials_dirty = True

    async def flush(self) -> None:
        """Persist pending mutations. Store errors propagate to the caller."""

        if self._credentials_dirty:
            await self._store.save_credentials(self._instance, self.credentials_record())
            self._credentials_dirty = False

        if not any(self._pending.values()):
            return

        pending, self._pending = self._pending, {}
        try:
            await self._store.set_keys(self._instance, pending)
        except Exception:
            # Keep anything newer that arrived while the write was in flight.
            for category, values in pending.items():
                merged = dict(values)
                merged.update(self._pending.get(category, {}))
                self._pending[category] = merged
            raise


def _to_telethon_state(state: UpdateState) -> types.updates.State:
    return types.updates.State(
        pts=state.pts,
        qts=state.qts,
        date=state.date,
        seq=state.seq,
        unread_count=state.unread_count,
    )
