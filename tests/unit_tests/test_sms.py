"""Tests for SMS providers and the fallback sender."""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.errors import DeliveryError
from app.services.sms import (
    ConsoleSmsProvider,
    MessageBirdProvider,
    SmsProviderError,
    SmsSender,
    TwilioProvider,
    build_sms_sender,
)
from tests.mocks.models import PHONE
from tests.mocks.services import (
    BrokenSmsProvider,
    FailingSmsProvider,
    HangingSmsProvider,
    RecordingSmsProvider,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestMessageBirdProvider:
    async def test_sends_json_with_access_key(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "msg-1"})

        async with _client(handler) as client:
            provider = MessageBirdProvider(client, "live_key", "FoodApp")
            await provider.send("+1 555 123 4567", "hello")

        request = seen[0]
        assert request.url == "https://rest.messagebird.com/messages"
        assert request.headers["Authorization"] == "AccessKey live_key"
        assert json.loads(request.content) == {
            "originator": "FoodApp",
            "recipients": ["15551234567"],
            "body": "hello",
        }

    async def test_http_error_becomes_provider_error(self):
        async with _client(lambda r: httpx.Response(401)) as client:
            provider = MessageBirdProvider(client, "bad", "FoodApp")
            with pytest.raises(SmsProviderError):
                await provider.send(PHONE, "hello")


class TestTwilioProvider:
    async def test_sends_form_with_basic_auth(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"sid": "SM1"})

        async with _client(handler) as client:
            provider = TwilioProvider(client, "AC123", "token", "+15550000000")
            await provider.send("15551234567", "hello")

        request = seen[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form == {"To": ["+15551234567"], "From": ["+15550000000"], "Body": ["hello"]}

    async def test_network_error_becomes_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async with _client(handler) as client:
            provider = TwilioProvider(client, "AC123", "token", "+15550000000")
            with pytest.raises(SmsProviderError):
                await provider.send(PHONE, "hello")


class TestSmsSender:
    async def test_first_provider_wins(self):
        first, second = RecordingSmsProvider("A"), RecordingSmsProvider("B")
        sender = SmsSender([first, second])

        assert await sender.send(PHONE, "code") == "A"
        assert first.sent == [(PHONE, "code")]
        assert second.sent == []

    async def test_falls_back_to_next_provider(self):
        failing, backup = FailingSmsProvider("MessageBird"), RecordingSmsProvider("Twilio")
        sender = SmsSender([failing, backup])

        assert await sender.send(PHONE, "code") == "Twilio"
        assert failing.calls == 1
        assert backup.sent == [(PHONE, "code")]

    async def test_unexpected_provider_error_falls_back(self):
        backup = RecordingSmsProvider("Twilio")
        sender = SmsSender([BrokenSmsProvider("MessageBird"), backup])

        assert await sender.send(PHONE, "code") == "Twilio"
        assert backup.sent == [(PHONE, "code")]

    async def test_all_failures_are_aggregated(self):
        sender = SmsSender([
            FailingSmsProvider("MessageBird", "quota"),
            FailingSmsProvider("Twilio", "bad number"),
        ])

        with pytest.raises(DeliveryError) as exc_info:
            await sender.send(PHONE, "code")

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Failed to send OTP: MessageBird: quota, Twilio: bad number"

    async def test_hung_provider_times_out(self):
        backup = RecordingSmsProvider("Twilio")
        sender = SmsSender([HangingSmsProvider(), backup], timeout=0.05)

        assert await sender.send(PHONE, "code") == "Twilio"

    async def test_no_providers(self):
        with pytest.raises(DeliveryError, match="No SMS service configured"):
            await SmsSender([]).send(PHONE, "code")

    async def test_console_provider_always_succeeds(self):
        sender = SmsSender([ConsoleSmsProvider()])
        assert await sender.send(PHONE, "code") == "Console"


class TestBuildSmsSender:
    @pytest.fixture(autouse=True)
    def _no_providers(self, monkeypatch):
        monkeypatch.setattr("app.config.MESSAGEBIRD_API_KEY", "")
        monkeypatch.setattr("app.config.TWILIO_ACCOUNT_SID", "")
        monkeypatch.setattr("app.config.TWILIO_AUTH_TOKEN", "")
        monkeypatch.setattr("app.config.TWILIO_PHONE_NUMBER", "")

    async def test_development_without_providers_uses_console(self, monkeypatch):
        monkeypatch.setattr("app.config.ENVIRONMENT", "development")
        sender = build_sms_sender()
        assert [p.name for p in sender.providers] == ["Console"]
        await sender.close()

    async def test_production_without_providers_has_none(self, monkeypatch):
        monkeypatch.setattr("app.config.ENVIRONMENT", "production")
        sender = build_sms_sender()
        assert sender.providers == []
        await sender.close()

    async def test_messagebird_before_twilio(self, monkeypatch):
        monkeypatch.setattr("app.config.ENVIRONMENT", "production")
        monkeypatch.setattr("app.config.MESSAGEBIRD_API_KEY", "key")
        monkeypatch.setattr("app.config.TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setattr("app.config.TWILIO_AUTH_TOKEN", "tok")
        monkeypatch.setattr("app.config.TWILIO_PHONE_NUMBER", "+15550000000")

        sender = build_sms_sender()
        assert [p.name for p in sender.providers] == ["MessageBird", "Twilio"]
        await sender.close()
