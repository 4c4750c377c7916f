"""
Unit tests for the email / SMS notifier and the failure-absorbing wrapper.
"""
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from app.config import Settings
from app.services.notifications import Notifier, notify_safely

BOOKING = SimpleNamespace(
    id=42,
    start_latitude=-1.2921, start_longitude=36.8219,
    end_latitude=-1.3183, end_longitude=36.8169,
    pickup_time=datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc),
    fare=140.0,
)
DRIVER = SimpleNamespace(id=7, license_number="DL-0007")


def configured_settings(**overrides) -> Settings:
    fields = dict(
        email_api_url="https://mail.example.com/send",
        email_api_key="mail-key",
        twilio_account_sid="AC123",
        twilio_auth_token="secret",
        twilio_phone_number="+15550001111",
    )
    fields.update(overrides)
    return Settings(**fields)


@pytest.mark.asyncio
class TestNotifier:
    async def test_booking_created_email(self):
        sent = []

        def handler(request: httpx.Request):
            sent.append(request)
            return httpx.Response(202, json={"id": "msg-1"})

        notifier = Notifier(configured_settings(), transport=httpx.MockTransport(handler))
        assert await notifier.send_booking_created("rider@example.com", BOOKING) is True
        await notifier.aclose()

        assert sent[0].url == "https://mail.example.com/send"
        assert sent[0].headers["Authorization"] == "Bearer mail-key"
        assert b"Booking #42 confirmed" in sent[0].content

    async def test_booking_accepted_sms(self):
        sent = []

        def handler(request: httpx.Request):
            sent.append(request)
            return httpx.Response(201, json={"sid": "SM1"})

        notifier = Notifier(configured_settings(), transport=httpx.MockTransport(handler))
        assert await notifier.send_booking_accepted("+254700000001", BOOKING, DRIVER) is True
        await notifier.aclose()

        assert sent[0].url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert sent[0].headers["Authorization"].startswith("Basic ")
        assert b"To=%2B254700000001" in sent[0].content

    async def test_unconfigured_senders_skip(self):
        calls = []
        notifier = Notifier(
            configured_settings(email_api_url="", twilio_account_sid=""),
            transport=httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200)),
        )
        assert await notifier.send_booking_created("rider@example.com", BOOKING) is False
        assert await notifier.send_booking_accepted("+254700000001", BOOKING, DRIVER) is False
        await notifier.aclose()
        assert calls == []

    async def test_http_error_raises(self):
        notifier = Notifier(configured_settings(), transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.send_booking_created("rider@example.com", BOOKING)
        await notifier.aclose()


@pytest.mark.asyncio
class TestNotifySafely:
    async def test_passes_result_through(self):
        assert await notify_safely(AsyncMock(return_value=True)()) is True

    async def test_absorbs_failures(self):
        failing = AsyncMock(side_effect=httpx.ConnectError("mail API down"))
        assert await notify_safely(failing()) is False
