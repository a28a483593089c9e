"""
SMS delivery: sends OTP messages through an ordered list of providers.

Providers are tried in order (MessageBird first, Twilio as fallback);
the first success wins. If every provider fails, the collected errors
are raised together as a DeliveryError.

In development, when no provider is configured, messages are logged
to the console instead so you can see what *would* be sent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from app import config
from app.errors import DeliveryError
from app.services.phone import validate_phone_number

logger = logging.getLogger(__name__)

MESSAGEBIRD_URL = "https://rest.messagebird.com/messages"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsProviderError(Exception):
    """A single provider rejected or failed to deliver a message."""


class SmsProvider(Protocol):
    name: str

    async def send(self, destination: str, body: str) -> None: ...


# ── Providers ─────────────────────────────────────────────────────────────


class ConsoleSmsProvider:
    """Development stand-in: logs the message and always succeeds."""

    name = "Console"

    async def send(self, destination: str, body: str) -> None:
        number = validate_phone_number(destination)
        logger.info("📱 [DEV] Would send SMS to %s: %s", number, body)


class MessageBirdProvider:
    """MessageBird REST API (``AccessKey`` auth, JSON body)."""

    name = "MessageBird"

    def __init__(self, client: httpx.AsyncClient, api_key: str, originator: str) -> None:
        self._client = client
        self._api_key = api_key
        self._originator = originator

    async def send(self, destination: str, body: str) -> None:
        number = validate_phone_number(destination)
        try:
            resp = await self._client.post(
                MESSAGEBIRD_URL,
                headers={"Authorization": f"AccessKey {self._api_key}"},
                json={
                    "originator": self._originator,
                    "recipients": [number.lstrip("+")],
                    "body": body,
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SmsProviderError(str(exc)) from exc


class TwilioProvider:
    """Twilio Programmable Messaging REST API (basic auth, form body)."""

    name = "Twilio"

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_sid: str,
        auth_token: str,
        from_number: str,
    ) -> None:
        self._client = client
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number

    async def send(self, destination: str, body: str) -> None:
        number = validate_phone_number(destination)
        if not number.startswith("+"):
            number = f"+{number}"
        try:
            resp = await self._client.post(
                TWILIO_URL.format(sid=self._account_sid),
                auth=(self._account_sid, self._auth_token),
                data={"To": number, "From": self._from_number, "Body": body},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SmsProviderError(str(exc)) from exc


# ── Sender ────────────────────────────────────────────────────────────────


class SmsSender:
    """Tries each provider in turn; raises DeliveryError when all of them fail."""

    def __init__(
        self,
        providers: list[SmsProvider],
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.providers = providers
        self._timeout = timeout
        self._client = client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def send(self, destination: str, body: str) -> str:
        """Deliver *body* and return the name of the provider that accepted it."""
        if not self.providers:
            raise DeliveryError(
                "Failed to send OTP: No SMS service configured. Please configure MessageBird or Twilio."
            )

        errors: list[str] = []
        for provider in self.providers:
            try:
                await asyncio.wait_for(provider.send(destination, body), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.error("%s timed out after %.0fs", provider.name, self._timeout)
                errors.append(f"{provider.name}: timed out")
            except SmsProviderError as exc:
                logger.error("%s error: %s", provider.name, exc)
                errors.append(f"{provider.name}: {exc}")
            except Exception as exc:
                logger.exception("%s failed unexpectedly", provider.name)
                errors.append(f"{provider.name}: {exc}")
            else:
                logger.info("SMS sent to %s via %s", destination, provider.name)
                return provider.name

        raise DeliveryError(f"Failed to send OTP: {', '.join(errors)}")


def build_sms_sender() -> SmsSender:
    """Assemble the provider chain from configuration."""
    providers: list[SmsProvider] = []
    client: httpx.AsyncClient | None = None

    if config.messagebird_enabled() or config.twilio_enabled():
        client = httpx.AsyncClient(timeout=config.SMS_TIMEOUT_SECONDS)

    if config.messagebird_enabled():
        providers.append(
            MessageBirdProvider(client, config.MESSAGEBIRD_API_KEY, config.MESSAGEBIRD_ORIGINATOR)
        )
    if config.twilio_enabled():
        providers.append(
            TwilioProvider(
                client,
                config.TWILIO_ACCOUNT_SID,
                config.TWILIO_AUTH_TOKEN,
                config.TWILIO_PHONE_NUMBER,
            )
        )

    if not providers and config.is_development():
        providers.append(ConsoleSmsProvider())

    logger.info("SMS providers: %s", ", ".join(p.name for p in providers) or "none")
    return SmsSender(providers, timeout=config.SMS_TIMEOUT_SECONDS, client=client)
