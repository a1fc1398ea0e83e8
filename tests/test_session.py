from __future__ import annotations

import asyncio
from types import SimpleNamespace

from telethon import errors

from newsrelay import session


class FakeTelegramClient:
    def __init__(self, authorized: bool = False, needs_password: bool = False) -> None:
        self.authorized = authorized
        self.needs_password = needs_password
        self.code_requests: list[str] = []
        self.sign_ins: list[dict] = []

    async def is_user_authorized(self) -> bool:
        return self.authorized

    async def send_code_request(self, phone: str) -> None:
        self.code_requests.append(phone)

    async def sign_in(self, **kwargs) -> None:
        self.sign_ins.append(kwargs)
        if "code" in kwargs and self.needs_password:
            raise errors.SessionPasswordNeededError(request=None)
        self.authorized = True

    async def get_me(self):
        return SimpleNamespace(first_name="Relay", id=1)


def test_authorized_session_is_left_alone() -> None:
    client = FakeTelegramClient(authorized=True)
    asyncio.run(session.authorize(client, "phone"))
    assert client.code_requests == []
    assert client.sign_ins == []


def test_phone_login_with_two_step_password(monkeypatch) -> None:
    monkeypatch.setenv("PHONE", "+15550100")
    monkeypatch.setenv("TELEGRAM_2FA", "hunter2")
    monkeypatch.setattr("builtins.input", lambda prompt="": "12345")
    client = FakeTelegramClient(needs_password=True)

    asyncio.run(session.authorize(client, "phone"))

    assert client.code_requests == ["+15550100"]
    assert client.sign_ins == [
        {"phone": "+15550100", "code": "12345"},
        {"password": "hunter2"},
    ]
    assert client.authorized


def test_default_login_method(monkeypatch) -> None:
    monkeypatch.setenv("LOGIN_METHOD", " Phone ")
    assert session.default_login_method() == "phone"
    monkeypatch.setenv("LOGIN_METHOD", "sms")
    assert session.default_login_method() == "qr"
    monkeypatch.delenv("LOGIN_METHOD")
    assert session.default_login_method() == "qr"
