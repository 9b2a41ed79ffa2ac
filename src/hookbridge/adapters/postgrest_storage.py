"""Supabase (PostgREST) storage adapter.

Implements the SettingsSource, AuditSink and KeyValueBackend ports against a
Supabase project's REST endpoint using the service-role key, which bypasses
row-level security. Table layout matches ``schema.sql``.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import httpx

from hookbridge.core.config import EntityRule, RuntimeConfig, Settings
from hookbridge.core.errors import ConfigLoadError, DatastoreError
from hookbridge.core.models import LogEntry

SETTINGS_COLUMNS = "id,ignore_from_me,contacts_mode,groups_default_rule,reply_send_to,reply_prefix"
RULE_COLUMNS = "jid,type,name,rule"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def in_filter(values: Sequence[str]) -> str:
    """Build a PostgREST ``in.(...)`` filter with quoted values."""

    return f"in.({','.join(_quote(value) for value in values)})"


class PostgrestStorage:
    """Async PostgREST client that satisfies the storage ports."""

    def __init__(
        self,
        url: str,
        service_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = f"{url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise DatastoreError(f"{method} {table} failed: {exc}") from exc

        if response.is_error:
            raise DatastoreError(f"{method} {table} responded {response.status_code}: {response.text}")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise DatastoreError(f"Malformed datastore response: {exc}") from exc
        return rows if isinstance(rows, list) else []

    async def load_runtime_config(self) -> RuntimeConfig:
        try:
            settings_response = await self._request(
                "GET", "app_settings", params={"select": SETTINGS_COLUMNS, "id": "eq.1"}
            )
            rules_response = await self._request("GET", "entity_rules", params={"select": RULE_COLUMNS})
        except DatastoreError as exc:
            raise ConfigLoadError(str(exc)) from exc

        rows = self._rows(settings_response)
        if not rows:
            raise ConfigLoadError("Failed to load app_settings: missing row")

        settings = Settings.from_row(rows[0])
        rules = [
            EntityRule(identifier=row["jid"], kind=row["type"], display_name=row["name"], rule=row["rule"])
            for row in self._rows(rules_response)
        ]
        return RuntimeConfig.build(settings, rules)

    async def insert_log(self, entry: LogEntry) -> None:
        row = {
            "direction": entry.direction,
            "chat_jid": entry.chat_id,
            "sender_jid": entry.sender_id,
            "message_id": entry.message_id,
            "text": entry.text,
            "automated": entry.automated,
            "request_id": entry.request_id,
            "response_status": entry.response_status,
            "error_detail": entry.error_detail,
        }
        await self._request("POST", "message_logs", json=row, prefer="return=minimal")

    async def fetch_credentials(self, instance: str) -> Optional[Any]:
        response = await self._request(
            "GET",
            "bridge_auth_creds",
            params={"select": "instance_id,creds", "instance_id": f"eq.{instance}"},
        )
        rows = self._rows(response)
        return rows[0].get("creds") if rows else None

    async def upsert_credentials(self, instance: str, data: Any) -> None:
        await self._request(
            "POST",
            "bridge_auth_creds",
            params={"on_conflict": "instance_id"},
            json={"instance_id": instance, "creds": data},
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def fetch_keys(self, instance: str, category: str, ids: Sequence[str]) -> dict[str, Any]:
        if not ids:
            return {}
        response = await self._request(
            "GET",
            "bridge_auth_keys",
            params={
                "select": "id,data",
                "instance_id": f"eq.{instance}",
                "type": f"eq.{category}",
                "id": in_filter(ids),
            },
        )
        return {row["id"]: row["data"] for row in self._rows(response) if row.get("data") is not None}

    async def fetch_all_keys(self, instance: str, category: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            "bridge_auth_keys",
            params={"select": "id,data", "instance_id": f"eq.{instance}", "type": f"eq.{category}"},
        )
        return {row["id"]: row["data"] for row in self._rows(response) if row.get("data") is not None}

    async def upsert_keys(self, instance: str, rows: Iterable[tuple[str, str, Any]]) -> None:
        payload = [
            {"instance_id": instance, "type": category, "id": key_id, "data": data}
            for category, key_id, data in rows
        ]
        if not payload:
            return
        await self._request(
            "POST",
            "bridge_auth_keys",
            params={"on_conflict": "instance_id,type,id"},
            json=payload,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def delete_key(self, instance: str, category: str, key_id: str) -> None:
        await self._request(
            "DELETE",
            "bridge_auth_keys",
            params={"instance_id": f"eq.{instance}", "type": f"eq.{category}", "id": f"eq.{key_id}"},
        )
