"""Interactive Telegram login helpers.

Used when the stored session is not registered yet: either a QR code is
printed for the Telegram app to scan, or a login code sent to the
configured phone number is read from the operator.
"""

from __future__ import annotations

import asyncio
import logging
import os
from getpass import getpass

import qrcode
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

QR_TIMEOUT_SECONDS = 120


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


async def _resolve_2fa_password() -> str:
    password = os.getenv("TWO_FA_PASSWORD")
    if password:
        return password
    return await asyncio.to_thread(getpass, "2FA password: ")


async def authorize_with_qr(client: TelegramClient) -> None:
    """Print QR codes until one is scanned from an already logged-in device."""

    qr = await client.qr_login()
    while True:
        _print_qr(qr.url)
        LOGGER.info("Scan the QR code from Telegram > Settings > Devices > Link Desktop Device")
        try:
            await qr.wait(timeout=QR_TIMEOUT_SECONDS)
            return
        except asyncio.TimeoutError:
            await qr.recreate()
        except errors.SessionPasswordNeededError:
            await client.sign_in(password=await _resolve_2fa_password())
            return


async def authorize_with_phone(client: TelegramClient, phone: str, code_requested: bool = True) -> None:
    """Sign in with the login code Telegram delivered out of band."""

    if not code_requested:
        await client.send_code_request(phone)
    code = os.getenv("LOGIN_CODE") or await asyncio.to_thread(input, "Login code: ")
    try:
        await client.sign_in(phone=phone, code=code.strip())
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=await _resolve_2fa_password())


async def authorize(client: TelegramClient, phone: str = "") -> None:
    """Authorize the client unless it already is; phone login when a number is given."""

    if await client.is_user_authorized():
        return
    if phone:
        await authorize_with_phone(client, phone, code_requested=False)
    else:
        await authorize_with_qr(client)
