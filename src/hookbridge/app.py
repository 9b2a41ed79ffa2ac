"""Application entry point for the hookbridge service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from art import tprint

from hookbridge import settings as settings_module
from hookbridge.adapters.postgrest_storage import PostgrestStorage
from hookbridge.adapters.sqlite_storage import SQLiteStorage
from hookbridge.adapters.telegram_session import StoredSession, new_credentials
from hookbridge.adapters.telegram_transport import TelegramTransport
from hookbridge.adapters.webhook import WebhookDispatcher
from hookbridge.client import build_client
from hookbridge.core.audit import AuditLogger
from hookbridge.core.config_cache import ConfigCache
from hookbridge.core.credentials import CredentialStore
from hookbridge.core.ports import MessageHandler, TransportSession
from hookbridge.core.processor import MessageProcessor
from hookbridge.core.supervisor import ConnectionSupervisor
from hookbridge.login import authorize
from hookbridge.settings import BridgeSettings

NAME = "HOOKBRIDGE"
FONT = "tarty-1"

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

Storage = Union[PostgrestStorage, SQLiteStorage]


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _configure_logging(config: BridgeSettings) -> None:
    level = getattr(logging, config.log_level, logging.INFO)
    formatter = _RedactingFormatter(
        config.secrets(),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if config.log_file:
        directory = os.path.dirname(config.log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # Telethon is chatty at INFO about reconnects we already report.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


def _build_storage(config: BridgeSettings) -> Storage:
    if config.storage_backend == "sqlite":
        storage = SQLiteStorage(config.sqlite_path)
        storage.init_db()
        return storage
    return PostgrestStorage(config.supabase_url, config.supabase_service_role_key)


async def _close_storage(storage: Storage) -> None:
    if isinstance(storage, PostgrestStorage):
        await storage.aclose()


async def _serve(config: BridgeSettings) -> None:
    logger = logging.getLogger(__name__)
    storage = _build_storage(config)
    store = CredentialStore(storage, initial_credentials=new_credentials)
    config_cache = ConfigCache(storage, ttl_seconds=config.config_ttl_seconds)
    audit = AuditLogger(storage)
    webhook = WebhookDispatcher(
        config.webhook_url,
        timeout_ms=config.webhook_timeout_ms,
        shared_secret=config.webhook_shared_secret,
    )

    async def session_factory() -> TransportSession:
        session = await StoredSession.restore(store, config.instance_id)
        return TelegramTransport(build_client(config, session), session)

    def pipeline_factory(transport: TransportSession) -> MessageHandler:
        return MessageProcessor(config_cache, webhook, audit, transport).handle

    supervisor = ConnectionSupervisor(
        session_factory,
        pipeline_factory,
        pairing_phone_number=config.pairing_phone_number,
        restart_delay=config.reconnect_delay_seconds,
    )

    try:
        reason = await supervisor.run()
        logger.info(
            "Supervisor stopped: %s (sessions=%s, restarts=%s)",
            reason.detail,
            supervisor.stats.sessions_started,
            supervisor.stats.restarts,
        )
    finally:
        await webhook.aclose()
        await _close_storage(storage)


async def _login(config: BridgeSettings) -> None:
    logger = logging.getLogger(__name__)
    storage = _build_storage(config)
    try:
        store = CredentialStore(storage, initial_credentials=new_credentials)
        session = await StoredSession.restore(store, config.instance_id)
        client = build_client(config, session)
        await client.connect()
        try:
            await authorize(client, config.pairing_phone_number)
            me = await client.get_me()
            logger.info("Logged in as %s (id=%s)", getattr(me, "username", None) or "-", me.id)
        finally:
            await client.disconnect()
            await session.flush()
    finally:
        await _close_storage(storage)


def _run() -> None:
    _print_banner()
    config = settings_module.load_settings()
    _configure_logging(config)
    logging.getLogger(__name__).info(
        "Starting hookbridge (instance=%s, storage=%s)",
        config.instance_id,
        config.storage_backend,
    )
    asyncio.run(_serve(config))


def _run_login() -> None:
    _print_banner()
    config = settings_module.load_settings()
    _configure_logging(config)
    asyncio.run(_login(config))


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="hookbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("login", help="Link the account interactively and store the session")

    args = parser.parse_args(argv)
    if args.command == "login":
        _run_login()
        return
    _run()


if __name__ == "__main__":
    main()
