import json
from typing import Mapping, Optional, Sequence

import httpx
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import GatewaySendFailed

logger = get_logger("gateway_service")

WHATSAPP_PREFIX = "whatsapp:"


def strip_channel_prefix(address: Optional[str]) -> str:
    """`whatsapp:+57300...` -> `+57300...`"""
    if not address:
        return ""
    _, _, number = address.partition(":")
    return (number or address).strip()


def whatsapp_address(number: str) -> str:
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


def empty_twiml() -> str:
    return str(MessagingResponse())


def twiml_message(text: str) -> str:
    response = MessagingResponse()
    response.message(text)
    return str(response)


def verify_gateway_signature(
    *,
    url: str,
    form_data: Mapping[str, str],
    signature: Optional[str],
    auth_token: Optional[str] = None,
) -> bool:
    token = (auth_token if auth_token is not None else settings.twilio_auth_token).strip()
    if not token or not signature:
        return False
    validator = RequestValidator(token)
    return validator.validate(url, dict(form_data), signature)


class TwilioGateway:
    """Thin async client for the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        status_callback_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.base_url = (base_url or settings.twilio_api_base_url).rstrip("/")
        self.status_callback_url = status_callback_url or settings.status_callback_url
        self.transport = transport
        self.timeout = timeout

    @property
    def auth(self) -> tuple[str, str]:
        return self.account_sid, self.auth_token

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, auth=self.auth, transport=self.transport)

    async def _create_message(self, data: dict, to: str) -> dict:
        if not self.account_sid or not self.auth_token:
            raise GatewaySendFailed("Twilio credentials are not configured")

        try:
            async with self._client() as client:
                response = await client.post(self.messages_url, data=data)
        except httpx.HTTPError as exc:
            logger.error(f"Error sending WhatsApp message: {exc}", extra={"context": {"to": to}})
            raise GatewaySendFailed(f"Twilio request failed: {exc}") from exc

        logger.info(f"Twilio response: status={response.status_code}, to={to}, body={response.text[:200]}")
        if response.status_code not in (200, 201):
            raise GatewaySendFailed(
                f"Twilio rejected message: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewaySendFailed("Twilio returned invalid JSON") from exc
        if not payload.get("sid"):
            raise GatewaySendFailed("Twilio response has no message sid")
        return payload

    async def send_message(
        self,
        *,
        from_number: str,
        to_number: str,
        body: Optional[str] = None,
        media_urls: Optional[Sequence[str]] = None,
    ) -> str:
        """Send a text and/or media message. Returns the gateway message SID."""
        data = {
            "From": whatsapp_address(from_number),
            "To": whatsapp_address(to_number),
            "StatusCallback": self.status_callback_url,
        }
        if body:
            data["Body"] = body
        if media_urls:
            data["MediaUrl"] = list(media_urls)

        payload = await self._create_message(data, to_number)
        return payload["sid"]

    async def send_template(
        self,
        *,
        from_number: str,
        to_number: str,
        content_sid: str,
        variables: Optional[dict] = None,
    ) -> str:
        data = {
            "From": whatsapp_address(from_number),
            "To": whatsapp_address(to_number),
            "ContentSid": content_sid,
            "StatusCallback": self.status_callback_url,
        }
        if variables:
            data["ContentVariables"] = json.dumps(variables)

        payload = await self._create_message(data, to_number)
        return payload["sid"]

    async def fetch_message(self, sid: str) -> dict:
        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages/{sid}.json"
        async with self._client() as client:
            response = await client.get(url)
        if response.status_code != 200:
            raise GatewaySendFailed(
                f"Twilio message lookup failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()


_gateway: Optional[TwilioGateway] = None


def get_gateway() -> TwilioGateway:
    global _gateway
    if _gateway is None:
        _gateway = TwilioGateway()
    return _gateway
