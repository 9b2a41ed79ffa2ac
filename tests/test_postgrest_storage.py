from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from hookbridge.adapters.postgrest_storage import PostgrestStorage, in_filter
from hookbridge.core.errors import ConfigLoadError, DatastoreError
from hookbridge.core.models import LogEntry

SETTINGS_ROW = {
    "id": 1,
    "ignore_from_me": True,
    "contacts_mode": "allowlist",
    "groups_default_rule": "mentionOnly",
    "reply_send_to": "directToSender",
    "reply_prefix": "[bot] ",
}


def _storage(handler) -> PostgrestStorage:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PostgrestStorage("https://example.supabase.co/", "service-key", client=client)


def test_in_filter_quotes_values() -> None:
    assert in_filter(["1", 'a"b']) == 'in.("1","a\\"b")'


def test_load_runtime_config_reads_settings_and_rules() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/app_settings"):
            return httpx.Response(200, json=[SETTINGS_ROW])
        return httpx.Response(
            200,
            json=[
                {"jid": "100", "type": "contact", "name": "Ann", "rule": "enabled"},
                {"jid": "-5", "type": "group", "name": "Team", "rule": "default"},
            ],
        )

    config = asyncio.run(_storage(handler).load_runtime_config())

    assert config.settings.contacts_mode == "allowlist"
    assert config.settings.reply_destination == "directToSender"
    assert config.contact_rule("100") == "enabled"
    assert config.group_rule("-5") == "default"
    assert seen[0].url.path == "/rest/v1/app_settings"
    assert seen[0].url.params["id"] == "eq.1"
    assert seen[0].headers["apikey"] == "service-key"
    assert seen[0].headers["authorization"] == "Bearer service-key"


def test_missing_settings_row_is_config_load_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    with pytest.raises(ConfigLoadError, match="missing row"):
        asyncio.run(_storage(handler).load_runtime_config())


def test_http_failure_during_config_load_is_config_load_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(ConfigLoadError):
        asyncio.run(_storage(handler).load_runtime_config())


def test_insert_log_posts_row() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["prefer"] == "return=minimal"
        return httpx.Response(201)

    entry = LogEntry(direction="outbound", chat_id="100", automated=True, request_id="r1", response_status=200)
    asyncio.run(_storage(handler).insert_log(entry))

    assert bodies[0]["direction"] == "outbound"
    assert bodies[0]["chat_jid"] == "100"
    assert bodies[0]["request_id"] == "r1"
    assert bodies[0]["response_status"] == 200


def test_rejected_insert_raises_datastore_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "permission denied"})

    entry = LogEntry(direction="inbound", chat_id="100", automated=False)
    with pytest.raises(DatastoreError, match="403"):
        asyncio.run(_storage(handler).insert_log(entry))


def test_key_operations_use_upsert_and_filters() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[{"id": "1", "data": {"hash": 1}}, {"id": "2", "data": None}])
        return httpx.Response(204)

    storage = _storage(handler)

    async def scenario() -> dict:
        await storage.upsert_keys("main", [("entity", "1", {"hash": 1})])
        await storage.delete_key("main", "entity", "2")
        return await storage.fetch_keys("main", "entity", ["1", "2"])

    fetched = asyncio.run(scenario())

    upsert, delete, fetch = requests
    assert upsert.method == "POST"
    assert upsert.url.params["on_conflict"] == "instance_id,type,id"
    assert "resolution=merge-duplicates" in upsert.headers["prefer"]
    assert json.loads(upsert.content) == [{"instance_id": "main", "type": "entity", "id": "1", "data": {"hash": 1}}]
    assert delete.method == "DELETE"
    assert delete.url.params["id"] == "eq.2"
    assert fetch.url.params["id"] == 'in.("1","2")'
    assert fetched == {"1": {"hash": 1}}
