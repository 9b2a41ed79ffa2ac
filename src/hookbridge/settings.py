"""Runtime settings for hookbridge.

Everything deployment-specific comes from environment variables (a local
``.env`` file is honoured through python-dotenv) so secrets stay out of the
repo. Automation rules themselves live in the datastore, not here.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_INSTANCE_ID = "default"
DEFAULT_WEBHOOK_TIMEOUT_MS = 15000
STORAGE_BACKENDS = {"supabase", "sqlite"}


@dataclass(frozen=True)
class BridgeSettings:
    storage_backend: str
    supabase_url: str
    supabase_service_role_key: str
    sqlite_path: str
    webhook_url: str
    webhook_timeout_ms: int
    webhook_shared_secret: str
    pairing_phone_number: str
    instance_id: str
    api_id: int
    api_hash: str
    config_ttl_seconds: float
    reconnect_delay_seconds: float
    log_level: str
    log_file: str

    def secrets(self) -> list[str]:
        """Values that must never appear in log output."""

        return [
            value
            for value in (self.supabase_service_role_key, self.webhook_shared_secret, self.api_hash)
            if value
        ]


def normalize_phone_number(raw: str) -> str:
    """Keep digits only (E.164 without symbols)."""

    return re.sub(r"\D", "", raw or "")


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    return (env.get(key) or default).strip()


def _require(env: Mapping[str, str], key: str) -> str:
    value = _get(env, key)
    if not value:
        raise RuntimeError(f"Missing env {key}")
    return value


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number for {key}: {raw}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> BridgeSettings:
    """Build settings from the environment, failing fast on missing values."""

    if environ is None:
        load_dotenv()
        environ = os.environ

    backend = _get(environ, "STORAGE_BACKEND", "supabase").lower()
    if backend not in STORAGE_BACKENDS:
        raise RuntimeError(f"STORAGE_BACKEND must be one of {sorted(STORAGE_BACKENDS)}")

    if backend == "supabase":
        supabase_url = _require(environ, "SUPABASE_URL")
        supabase_key = _require(environ, "SUPABASE_SERVICE_ROLE_KEY")
    else:
        supabase_url = _get(environ, "SUPABASE_URL")
        supabase_key = _get(environ, "SUPABASE_SERVICE_ROLE_KEY")

    api_id = _require(environ, "API_ID")
    if not api_id.isdigit():
        raise RuntimeError("API_ID must be numeric")

    return BridgeSettings(
        storage_backend=backend,
        supabase_url=supabase_url,
        supabase_service_role_key=supabase_key,
        sqlite_path=_get(environ, "SQLITE_PATH", "hookbridge.db"),
        webhook_url=_require(environ, "WEBHOOK_URL"),
        webhook_timeout_ms=int(_number(environ, "WEBHOOK_TIMEOUT_MS", DEFAULT_WEBHOOK_TIMEOUT_MS)),
        webhook_shared_secret=_get(environ, "WEBHOOK_SHARED_SECRET"),
        pairing_phone_number=normalize_phone_number(_get(environ, "PAIRING_PHONE_NUMBER")),
        instance_id=_get(environ, "INSTANCE_ID", DEFAULT_INSTANCE_ID),
        api_id=int(api_id),
        api_hash=_require(environ, "API_HASH"),
        config_ttl_seconds=_number(environ, "CONFIG_TTL_SECONDS", 4.0),
        reconnect_delay_seconds=_number(environ, "RECONNECT_DELAY_SECONDS", 1.5),
        log_level=_get(environ, "LOG_LEVEL", "INFO").upper(),
        log_file=_get(environ, "LOG_FILE"),
    )
