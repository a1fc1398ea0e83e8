"""Interactive login for the Telethon user session used for delivery."""

import logging
import os
from getpass import getpass

import qrcode
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

LOGIN_METHODS = ("qr", "phone")
QR_TIMEOUT_SECONDS = 120


def default_login_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "qr").strip().lower()
    return method if method in LOGIN_METHODS else "qr"


async def _scan_qr(client: TelegramClient) -> None:
    login = await client.qr_login()
    code = qrcode.QRCode(border=1)
    code.add_data(login.url)
    code.make(fit=True)
    code.print_ascii(invert=True)
    print(f"Scan with Telegram > Settings > Devices within {QR_TIMEOUT_SECONDS}s")
    await login.wait(timeout=QR_TIMEOUT_SECONDS)


async def _enter_code(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    await client.sign_in(phone=phone, code=input("Login code: ").strip())


async def authorize(client: TelegramClient, method: str = "qr") -> None:
    """Log the client in unless the stored session is already authorized.

    An account with two-step verification is finished with TELEGRAM_2FA,
    or a password prompt when that is unset.
    """

    if await client.is_user_authorized():
        LOGGER.info("Session already authorized")
        return

    login = _enter_code if method == "phone" else _scan_qr
    try:
        await login(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=os.getenv("TELEGRAM_2FA") or getpass("2FA password: "))

    me = await client.get_me()
    LOGGER.info("Logged in as %s", getattr(me, "first_name", None) or getattr(me, "id", "unknown"))
