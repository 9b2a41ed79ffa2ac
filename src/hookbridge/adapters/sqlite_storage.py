"""SQLite storage adapter.

Implements the SettingsSource, AuditSink and KeyValueBackend ports using a
local SQLite database. Useful for single-host deployments and for running the
bridge without a managed datastore. Every call opens its own connection and
runs in a worker thread (``asyncio.to_thread``), off the event loop.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from typing import Any, Iterable, Optional, Sequence

from hookbridge.core.config import EntityRule, RuntimeConfig, Settings
from hookbridge.core.errors import ConfigLoadError, DatastoreError
from hookbridge.core.models import LogEntry


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist and seed the settings row.

        Tables:
        - app_settings: single row (id=1) of global settings
        - entities / entity_automation: known chats and their override rule
        - entity_rules: view joining both, defaulting the rule to 'default'
        - message_logs: append-only audit trail
        - bridge_auth_creds / bridge_auth_keys: transport session secrets
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    ignore_from_me INTEGER NOT NULL DEFAULT 1,
                    contacts_mode TEXT NOT NULL DEFAULT 'denylist',
                    groups_default_rule TEXT NOT NULL DEFAULT 'disabled',
                    reply_send_to TEXT NOT NULL DEFAULT 'sameChat',
                    reply_prefix TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.execute("INSERT OR IGNORE INTO app_settings (id) VALUES (1)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL CHECK (type IN ('contact', 'group')),
                    jid TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entity_automation (
                    entity_id INTEGER PRIMARY KEY REFERENCES entities(id) ON DELETE CASCADE,
                    rule TEXT NOT NULL DEFAULT 'default'
                )
                """
            )
            conn.execute(
                """
                CREATE VIEW IF NOT EXISTS entity_rules AS
                SELECT e.jid, e.type, e.name, COALESCE(a.rule, 'default') AS rule
                FROM entities e
                LEFT JOIN entity_automation a ON a.entity_id = e.id
                """
            )
            # message_logs is append-only; the core never updates or deletes rows.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS message_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    direction TEXT NOT NULL,
                    chat_jid TEXT NOT NULL,
                    sender_jid TEXT,
                    message_id TEXT,
                    text TEXT,
                    automated INTEGER NOT NULL DEFAULT 0,
                    request_id TEXT,
                    response_status INTEGER,
                    error_detail TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bridge_auth_creds (
                    instance_id TEXT PRIMARY KEY,
                    creds TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bridge_auth_keys (
                    instance_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT,
                    PRIMARY KEY (instance_id, type, id)
                )
                """
            )

    async def load_runtime_config(self) -> RuntimeConfig:
        return await asyncio.to_thread(self._load_runtime_config)

    def _load_runtime_config(self) -> RuntimeConfig:
        """Read settings and all entity rules from the same connection."""

        try:
            with self._connect() as conn:
                settings_row = conn.execute(
                    """
                    SELECT ignore_from_me, contacts_mode, groups_default_rule,
                           reply_send_to, reply_prefix
                    FROM app_settings WHERE id = 1
                    """
                ).fetchone()
                rule_rows = conn.execute("SELECT jid, type, name, rule FROM entity_rules").fetchall()
        except sqlite3.Error as exc:
            raise ConfigLoadError(f"Failed to load runtime config: {exc}") from exc

        if settings_row is None:
            raise ConfigLoadError("Failed to load app_settings: missing row")

        settings = Settings.from_row(dict(settings_row))
        rules = [
            EntityRule(identifier=row["jid"], kind=row["type"], display_name=row["name"], rule=row["rule"])
            for row in rule_rows
        ]
        return RuntimeConfig.build(settings, rules)

    async def insert_log(self, entry: LogEntry) -> None:
        await asyncio.to_thread(self._insert_log, entry)

    def _insert_log(self, entry: LogEntry) -> None:
        """Append one row to message_logs."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO message_logs (
                        direction,
                        chat_jid,
                        sender_jid,
                        message_id,
                        text,
                        automated,
                        request_id,
                        response_status,
                        error_detail
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.direction,
                        entry.chat_id,
                        entry.sender_id,
                        entry.message_id,
                        entry.text,
                        int(entry.automated),
                        entry.request_id,
                        entry.response_status,
                        entry.error_detail,
                    ),
                )
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to insert message log: {exc}") from exc

    async def fetch_credentials(self, instance: str) -> Optional[Any]:
        return await asyncio.to_thread(self._fetch_credentials, instance)

    def _fetch_credentials(self, instance: str) -> Optional[Any]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT creds FROM bridge_auth_creds WHERE instance_id = ?",
                    (instance,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to load bridge_auth_creds: {exc}") from exc
        return json.loads(row["creds"]) if row else None

    async def upsert_credentials(self, instance: str, data: Any) -> None:
        await asyncio.to_thread(self._upsert_credentials, instance, data)

    def _upsert_credentials(self, instance: str, data: Any) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO bridge_auth_creds (instance_id, creds)
                    VALUES (?, ?)
                    ON CONFLICT(instance_id) DO UPDATE SET creds = excluded.creds
                    """,
                    (instance, json.dumps(data)),
                )
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to save bridge_auth_creds: {exc}") from exc

    async def fetch_keys(self, instance: str, category: str, ids: Sequence[str]) -> dict[str, Any]:
        if not ids:
            return {}
        return await asyncio.to_thread(self._fetch_keys, instance, category, list(ids))

    def _fetch_keys(self, instance: str, category: str, ids: list[str]) -> dict[str, Any]:
        placeholders = ", ".join("?" for _ in ids)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT id, data FROM bridge_auth_keys
                    WHERE instance_id = ? AND type = ? AND id IN ({placeholders})
                    """,
                    (instance, category, *ids),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to load bridge_auth_keys: {exc}") from exc
        return {row["id"]: json.loads(row["data"]) for row in rows if row["data"] is not None}

    async def fetch_all_keys(self, instance: str, category: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._fetch_all_keys, instance, category)

    def _fetch_all_keys(self, instance: str, category: str) -> dict[str, Any]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT id, data FROM bridge_auth_keys WHERE instance_id = ? AND type = ?",
                    (instance, category),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to load bridge_auth_keys: {exc}") from exc
        return {row["id"]: json.loads(row["data"]) for row in rows if row["data"] is not None}

    async def upsert_keys(self, instance: str, rows: Iterable[tuple[str, str, Any]]) -> None:
        params = [(instance, category, key_id, json.dumps(data)) for category, key_id, data in rows]
        await asyncio.to_thread(self._upsert_keys, params)

    def _upsert_keys(self, params: list[tuple[str, str, str, str]]) -> None:
        try:
            with self._connect() as conn:
                conn.executemany(
                    """
                    INSERT INTO bridge_auth_keys (instance_id, type, id, data)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(instance_id, type, id) DO UPDATE SET data = excluded.data
                    """,
                    params,
                )
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to upsert bridge_auth_keys: {exc}") from exc

    async def delete_key(self, instance: str, category: str, key_id: str) -> None:
        await asyncio.to_thread(self._delete_key, instance, category, key_id)

    def _delete_key(self, instance: str, category: str, key_id: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM bridge_auth_keys WHERE instance_id = ? AND type = ? AND id = ?",
                    (instance, category, key_id),
                )
        except sqlite3.Error as exc:
            raise DatastoreError(f"Failed to delete bridge_auth_keys: {exc}") from exc
