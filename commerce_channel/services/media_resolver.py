"""Turn an inbound gateway attachment into message text plus a durable media URL.

Each media kind has its own branch. A branch that fails for any reason
degrades to a placeholder text with no media URL, so an inbound message is
never lost because of its attachment.
"""

import base64
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import EmptyMedia, InvalidSpreadsheet, MediaUnavailable, TranscriptionFailed
from commerce_channel.services.media_storage import MediaStorage, build_object_name, get_media_storage
from commerce_channel.services.media_types import (
    MediaKind,
    classify_media,
    detected_file_type,
    extension_for,
    has_zip_signature,
    is_spreadsheet,
)
from commerce_channel.services.retry import RetryPolicy, retry
from commerce_channel.services.speech_service import transcribe_audio

logger = get_logger("media_resolver")

AUDIO_RECEIVED = "Audio recibido"
AUDIO_NOT_TRANSCRIBED = "Audio recibido (no se pudo transcribir)"
AUDIO_ERROR = "Audio recibido (error en procesamiento)"
IMAGE_RECEIVED = "Imagen recibida"
IMAGE_ERROR = "Imagen recibida (error en procesamiento)"
CONTACT_DEFAULT_NAME = "Contacto"
CONTACT_ERROR = "Contacto recibido (error en procesamiento)"
DOCUMENT_ERROR = "Archivo recibido (error en procesamiento)"
MESSAGE_RECEIVED = "Mensaje recibido"

SPREADSHEET_ACCEPT = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet, application/vnd.ms-excel, */*"

VCARD_PATTERNS = {
    "name": re.compile(r"FN[;:](.+)", re.IGNORECASE),
    "phone": re.compile(r"TEL[^:]*:(.+)", re.IGNORECASE),
    "email": re.compile(r"EMAIL[^:]*:(.+)", re.IGNORECASE),
    "org": re.compile(r"ORG[;:](.+)", re.IGNORECASE),
}

Transcriber = Callable[..., Awaitable[str]]


@dataclass
class InboundMedia:
    url: Optional[str]
    mime_type: Optional[str]
    body: str = ""
    file_name: Optional[str] = None
    client_number: str = ""


@dataclass
class ResolvedMedia:
    kind: MediaKind
    text: str
    media_url: Optional[str] = None
    image_data_url: Optional[str] = None
    file_name: Optional[str] = None


@dataclass
class ContactCard:
    name: str = CONTACT_DEFAULT_NAME
    phone: str = ""
    email: str = ""
    org: str = ""

    def summary(self) -> str:
        parts = [f"Contacto compartido: {self.name}"]
        if self.phone:
            parts.append(f"Tel: {self.phone}")
        if self.email:
            parts.append(f"Email: {self.email}")
        if self.org:
            parts.append(self.org)
        return " - ".join(parts)


def parse_vcard(content: str) -> ContactCard:
    card = ContactCard()
    for field_name, pattern in VCARD_PATTERNS.items():
        match = pattern.search(content)
        if match and match.group(1).strip():
            setattr(card, field_name, match.group(1).strip())
    return card


def is_allowed_media_url(url: str, allowed_hosts: list[str]) -> bool:
    parsed = urlparse(url or "")
    if parsed.scheme != "https":
        return False
    return (parsed.hostname or "") in allowed_hosts


class MediaResolver:
    def __init__(
        self,
        storage: Optional[MediaStorage] = None,
        *,
        transcriber: Optional[Transcriber] = None,
        policy: Optional[RetryPolicy] = None,
        auth: Optional[tuple[str, str]] = None,
        allowed_hosts: Optional[list[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        timeout: Optional[float] = None,
    ):
        self.storage = storage or get_media_storage()
        self.transcriber = transcriber or transcribe_audio
        self.policy = policy or RetryPolicy(
            max_attempts=settings.media_fetch_attempts,
            delay_seconds=settings.media_fetch_retry_delay_seconds,
        )
        self.auth = auth or (settings.twilio_account_sid, settings.twilio_auth_token)
        self.allowed_hosts = allowed_hosts if allowed_hosts is not None else settings.media_allowed_hosts
        self.transport = transport
        self.sleep = sleep
        self.timeout = timeout if timeout is not None else settings.media_fetch_timeout_seconds

    async def fetch_response(self, url: str, *, headers: Optional[dict] = None) -> httpx.Response:
        """GET a gateway-hosted attachment, retrying while the gateway still prepares it."""
        if not is_allowed_media_url(url, self.allowed_hosts):
            raise MediaUnavailable(f"Media URL host not allowed: {url}")

        async with httpx.AsyncClient(
            timeout=self.timeout, auth=self.auth, transport=self.transport, follow_redirects=True
        ) as client:

            async def operation() -> httpx.Response:
                return await client.get(url, headers=headers)

            response = await retry(operation, self.policy, sleep=self.sleep)

        if not response.content:
            raise EmptyMedia(f"Empty media body received from {url}")
        return response

    async def fetch(self, url: str, *, headers: Optional[dict] = None) -> bytes:
        response = await self.fetch_response(url, headers=headers)
        return response.content

    async def resolve(self, media: InboundMedia) -> ResolvedMedia:
        kind = classify_media(media.mime_type, media.url)
        if kind != MediaKind.NONE and not media.url:
            kind = MediaKind.NONE

        if kind == MediaKind.NONE:
            return ResolvedMedia(kind=kind, text=media.body or MESSAGE_RECEIVED)

        handlers = {
            MediaKind.AUDIO: (self._resolve_audio, AUDIO_ERROR),
            MediaKind.IMAGE: (self._resolve_image, IMAGE_ERROR),
            MediaKind.VCARD: (self._resolve_vcard, CONTACT_ERROR),
            MediaKind.DOCUMENT: (self._resolve_document, DOCUMENT_ERROR),
        }
        handler, placeholder = handlers[kind]
        try:
            return await handler(media)
        except Exception as exc:
            logger.error(
                f"Error processing {kind.value} media: {exc}",
                extra={
                    "context": {
                        "media_url": media.url,
                        "media_content_type": media.mime_type,
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return ResolvedMedia(kind=kind, text=placeholder)

    async def _resolve_audio(self, media: InboundMedia) -> ResolvedMedia:
        audio = await self.fetch(media.url)
        extension = extension_for(media.mime_type, MediaKind.AUDIO)

        try:
            transcript = await self.transcriber(
                audio, filename=f"recording.{extension}", mime_type=media.mime_type
            )
            text = transcript or AUDIO_RECEIVED
            transcription_status = "success"
        except TranscriptionFailed as exc:
            logger.warning(f"Audio transcription failed: {exc}")
            text = AUDIO_NOT_TRANSCRIBED
            transcription_status = "failed"

        stored_path = await self.storage.upload(
            audio,
            folder="client-audios",
            file_name=build_object_name("audio", extension),
            content_type=media.mime_type,
            metadata={
                "original_mime_type": media.mime_type,
                "file_size": len(audio),
                "phone_number": media.client_number,
                "transcription_status": transcription_status,
            },
        )
        return ResolvedMedia(kind=MediaKind.AUDIO, text=text, media_url=stored_path)

    async def _resolve_image(self, media: InboundMedia) -> ResolvedMedia:
        response = await self.fetch_response(media.url)
        image = response.content
        content_type = response.headers.get("content-type") or media.mime_type
        extension = extension_for(media.mime_type, MediaKind.IMAGE)

        stored_path = await self.storage.upload(
            image,
            folder="images",
            file_name=build_object_name("image", extension),
            content_type=content_type,
            metadata={
                "original_mime_type": media.mime_type,
                "file_size": len(image),
                "phone_number": media.client_number,
            },
        )
        data_url = f"data:{content_type};base64,{base64.b64encode(image).decode('ascii')}"
        return ResolvedMedia(
            kind=MediaKind.IMAGE,
            text=media.body or IMAGE_RECEIVED,
            media_url=stored_path,
            image_data_url=data_url,
        )

    async def _resolve_vcard(self, media: InboundMedia) -> ResolvedMedia:
        raw = await self.fetch(media.url)
        content = raw.decode("utf-8", errors="replace")
        if not content.strip():
            raise EmptyMedia("Empty vCard content received from gateway")

        card = parse_vcard(content)
        stored_path = await self.storage.upload(
            raw,
            folder="contacts",
            file_name=build_object_name("vcard", "vcf"),
            content_type=media.mime_type,
            metadata={
                "original_mime_type": media.mime_type,
                "detected_file_type": "vCard",
                "contact_name": card.name,
                "contact_phone": card.phone,
                "contact_email": card.email,
                "contact_org": card.org,
                "file_size": len(raw),
                "phone_number": media.client_number,
            },
        )
        return ResolvedMedia(kind=MediaKind.VCARD, text=media.body or card.summary(), media_url=stored_path)

    def validate_spreadsheet(self, response: httpx.Response) -> None:
        """Raise InvalidSpreadsheet for truncated or non-ZIP spreadsheet bodies."""
        data = response.content
        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) != len(data):
            raise InvalidSpreadsheet(f"Spreadsheet size mismatch: expected {content_length}, got {len(data)}")
        if len(data) < settings.spreadsheet_min_bytes:
            raise InvalidSpreadsheet(f"Spreadsheet too small ({len(data)} bytes), likely corrupted")
        if not has_zip_signature(data):
            raise InvalidSpreadsheet("Spreadsheet has an invalid file signature")

    async def _resolve_document(self, media: InboundMedia) -> ResolvedMedia:
        spreadsheet = is_spreadsheet(media.mime_type)
        headers = {"Accept": SPREADSHEET_ACCEPT} if spreadsheet else None
        response = await self.fetch_response(media.url, headers=headers)
        if spreadsheet:
            self.validate_spreadsheet(response)

        data = response.content
        file_type = detected_file_type(media.mime_type)
        original_name = media.file_name or "documento"
        metadata = {
            "original_mime_type": media.mime_type,
            "detected_file_type": file_type,
            "original_filename": original_name,
            "file_size": len(data),
            "phone_number": media.client_number,
        }
        if spreadsheet:
            metadata["has_zip_signature"] = True

        stored_path = await self.storage.upload(
            data,
            folder="documents",
            file_name=build_object_name("document", extension_for(media.mime_type, MediaKind.DOCUMENT)),
            content_type=media.mime_type,
            metadata=metadata,
        )
        return ResolvedMedia(
            kind=MediaKind.DOCUMENT,
            text=media.body or f"Archivo {file_type} recibido: {original_name}",
            media_url=stored_path,
            file_name=original_name,
        )
