import asyncio
import random
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.models import Message
from commerce_channel.services.context import RequestContext
from commerce_channel.services.conversation_service import append_message, get_audio_preference, update_gateway_sid
from commerce_channel.services.errors import GatewaySendFailed, SpeechSynthesisFailed, UploadFailed
from commerce_channel.services.gateway_service import TwilioGateway, get_gateway
from commerce_channel.services.media_storage import MediaStorage, build_object_name, get_media_storage
from commerce_channel.services.speech_service import synthesize_speech

logger = get_logger("dispatch_service")

AUDIO_MESSAGE_BODY = "Audio message"
SEGMENT_SEPARATOR = "\n\n"

# Acronyms such as "IVA" or "S.A.S" read badly when synthesized.
ACRONYM_PATTERN = re.compile(r"\b(?:[A-Z]{2,}|(?:[A-Z]\.){2,}[A-Z]?)\b")
DIGIT_PATTERN = re.compile(r"\d")


def is_speech_eligible(text: str, audio_enabled: bool, max_chars: Optional[int] = None) -> bool:
    """Short replies without digits, acronyms or slashes may be sent as voice notes."""
    if not audio_enabled or not text:
        return False
    limit = settings.speech_max_chars if max_chars is None else max_chars
    if len(text) > limit:
        return False
    if DIGIT_PATTERN.search(text) or ACRONYM_PATTERN.search(text):
        return False
    return "/" not in text


def split_reply(text: str, threshold: Optional[int] = None) -> list[str]:
    """Replies longer than the threshold go out as one message per paragraph."""
    limit = settings.split_threshold_chars if threshold is None else threshold
    if len(text) <= limit:
        return [text]
    return [segment for segment in text.split(SEGMENT_SEPARATOR) if segment.strip()]


@dataclass
class DispatchOutcome:
    sent_sids: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    message_ids: list[int] = field(default_factory=list)
    spoken: bool = False

    @property
    def ok(self) -> bool:
        return bool(self.sent_sids) and not self.failures


class ResponseDispatcher:
    """Persist, pace and deliver agent replies through the gateway."""

    def __init__(
        self,
        gateway: Optional[TwilioGateway] = None,
        storage: Optional[MediaStorage] = None,
        *,
        synthesize: Optional[Callable[[str], Awaitable[bytes]]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
        delay_range: Optional[tuple[float, float]] = None,
    ):
        self.gateway = gateway or get_gateway()
        self.storage = storage or get_media_storage()
        self.synthesize = synthesize or synthesize_speech
        self.sleep = sleep or asyncio.sleep
        self.rng = rng or random.Random()
        self.delay_range = delay_range or (settings.dispatch_delay_min_seconds, settings.dispatch_delay_max_seconds)

    async def pace(self) -> float:
        low, high = self.delay_range
        delay = self.rng.uniform(low, high)
        logger.debug(f"Waiting {delay:.1f}s before sending")
        await self.sleep(delay)
        return delay

    def _persist(self, db: Session, text: str, ctx: RequestContext) -> Message:
        message = append_message(db, ctx.client_number, text, False, advisor_id=ctx.advisor_id)
        db.commit()
        return message

    def _correlate(self, db: Session, message: Message, sid: str, outcome: DispatchOutcome) -> None:
        update_gateway_sid(db, message.id, sid)
        db.commit()
        outcome.sent_sids.append(sid)

    async def _send_text(
        self,
        db: Session,
        message: Message,
        text: str,
        ctx: RequestContext,
        outcome: DispatchOutcome,
        *,
        pace: bool = True,
    ) -> None:
        if pace:
            await self.pace()
        try:
            sid = await self.gateway.send_message(
                from_number=ctx.gateway_number, to_number=ctx.client_number, body=text
            )
        except GatewaySendFailed as exc:
            ctx.logger.error(f"Error sending reply: {exc}", context={"message_id": message.id})
            outcome.failures.append(str(exc))
            return
        self._correlate(db, message, sid, outcome)

    async def _send_speech(
        self, db: Session, message: Message, text: str, ctx: RequestContext, outcome: DispatchOutcome
    ) -> None:
        paced = False
        try:
            audio = await self.synthesize(text)
            audio_path = await self.storage.upload(
                audio,
                folder="audios",
                file_name=build_object_name("audio", "mp3"),
                content_type="audio/mpeg",
                metadata={"phone_number": ctx.client_number, "advisor_id": str(ctx.advisor_id)},
            )
            message.media_url = audio_path
            db.commit()

            await self.pace()
            paced = True
            sid = await self.gateway.send_message(
                from_number=ctx.gateway_number,
                to_number=ctx.client_number,
                body=AUDIO_MESSAGE_BODY,
                media_urls=[self.storage.link(audio_path)],
            )
        except (SpeechSynthesisFailed, UploadFailed, GatewaySendFailed) as exc:
            ctx.logger.warning(f"Voice reply failed, falling back to text: {exc}", context={"message_id": message.id})
            message.media_url = None
            db.commit()
            await self._send_text(db, message, text, ctx, outcome, pace=not paced)
            return

        outcome.spoken = True
        self._correlate(db, message, sid, outcome)

    async def dispatch(
        self,
        db: Session,
        reply_text: str,
        ctx: RequestContext,
        *,
        audio_enabled: Optional[bool] = None,
    ) -> DispatchOutcome:
        """Deliver one agent reply. Gateway failures are recorded in the outcome, never raised."""
        outcome = DispatchOutcome()
        if not reply_text or not reply_text.strip():
            return outcome

        if audio_enabled is None:
            audio_enabled = get_audio_preference(db, ctx.client_number, ctx.advisor_id)

        if is_speech_eligible(reply_text, audio_enabled):
            message = self._persist(db, reply_text, ctx)
            outcome.message_ids.append(message.id)
            await self._send_speech(db, message, reply_text, ctx, outcome)
            return outcome

        segments = split_reply(reply_text)
        if len(segments) > 1:
            ctx.logger.info(f"Reply split into {len(segments)} messages")

        for segment in segments:
            message = self._persist(db, segment, ctx)
            outcome.message_ids.append(message.id)
            await self._send_text(db, message, segment, ctx, outcome)

        return outcome
