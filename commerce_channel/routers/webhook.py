from typing import Mapping, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.database import get_db
from commerce_channel.logging_config import get_logger
from commerce_channel.services.advisor_service import get_advisor_by_gateway_number
from commerce_channel.services.campaign_service import get_campaign_origin
from commerce_channel.services.context import RequestContext
from commerce_channel.services.conversation_service import (
    append_message,
    get_attention_flag,
    get_conversation_history,
    update_gateway_sid,
)
from commerce_channel.services.dispatch_service import ResponseDispatcher
from commerce_channel.services.gateway_service import empty_twiml, strip_channel_prefix, verify_gateway_signature
from commerce_channel.services.llm import OpenAIReplyGenerator, ReplyGenerator, ReplyRequest
from commerce_channel.services.media_resolver import InboundMedia, MediaResolver
from commerce_channel.services.state_machine import decide

logger = get_logger("webhook")

router = APIRouter()

_reply_generator: Optional[ReplyGenerator] = None


def get_reply_generator() -> ReplyGenerator:
    global _reply_generator
    if _reply_generator is None:
        _reply_generator = OpenAIReplyGenerator()
    return _reply_generator


def get_media_resolver() -> MediaResolver:
    return MediaResolver()


def get_dispatcher() -> ResponseDispatcher:
    return ResponseDispatcher()


def _twiml_response(content: Optional[str] = None) -> Response:
    return Response(content=content or empty_twiml(), media_type="application/xml")


async def process_incoming_message(db: Session, form: Mapping[str, str]) -> str:
    """Run one inbound message through the pipeline and return the TwiML acknowledgement."""
    client_number = strip_channel_prefix(form.get("From"))
    gateway_number = strip_channel_prefix(form.get("To"))

    if client_number in settings.gateway_own_numbers:
        logger.info(f"Ignoring message from own gateway number {client_number}")
        return empty_twiml()

    advisor = get_advisor_by_gateway_number(db, gateway_number)
    if not advisor:
        logger.warning(
            "No active advisor for gateway number",
            extra={"context": {"gateway_number": gateway_number, "client_number": client_number}},
        )
        return empty_twiml()

    ctx = RequestContext(
        client_number=client_number,
        gateway_number=gateway_number,
        advisor=advisor,
        inbound_sid=form.get("MessageSid") or form.get("SmsMessageSid"),
        origin=get_campaign_origin(form),
    )
    ctx.logger.info(f"Incoming message for advisor {advisor.name}", context={"origin": ctx.origin})

    resolved = await get_media_resolver().resolve(
        InboundMedia(
            url=form.get("MediaUrl0"),
            mime_type=form.get("MediaContentType0"),
            body=form.get("Body") or "",
            file_name=form.get("MediaFileName0"),
            client_number=client_number,
        )
    )

    message = append_message(
        db,
        client_number,
        resolved.text,
        True,
        media_url=resolved.media_url,
        origin=ctx.origin,
        file_name=resolved.file_name,
        advisor_id=ctx.advisor_id,
    )
    if ctx.inbound_sid:
        update_gateway_sid(db, message.id, ctx.inbound_sid)
    db.commit()

    decision = decide(get_attention_flag(db, client_number, ctx.advisor_id), resolved.text)
    if not decision.invoke_agent:
        ctx.logger.info(f"Agent not invoked: {decision.reason.value}", context={"mode": decision.mode.value})
        return empty_twiml()

    reply = await get_reply_generator().generate_reply(
        ReplyRequest(
            text=resolved.text,
            thread_id=ctx.thread_id,
            client_number=client_number,
            advisor_id=str(ctx.advisor_id),
            image_data_url=resolved.image_data_url,
            history=get_conversation_history(db, message.conversation_id, exclude_message_id=message.id),
        )
    )
    if not reply:
        ctx.logger.warning("Agent returned no reply")
        return empty_twiml()

    outcome = await get_dispatcher().dispatch(db, reply, ctx)
    ctx.logger.info(
        "Reply dispatched",
        context={"sent": len(outcome.sent_sids), "failed": len(outcome.failures), "spoken": outcome.spoken},
    )
    return empty_twiml()


@router.post("/receive-message")
async def receive_message(request: Request, db: Session = Depends(get_db)):
    """Gateway webhook for inbound customer messages."""
    try:
        form = await request.form()
        data = {key: str(value) for key, value in form.items()}
    except Exception as exc:
        logger.error(f"Unreadable webhook body: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    if settings.validate_gateway_signature:
        signature = request.headers.get("X-Twilio-Signature")
        if not verify_gateway_signature(url=str(request.url), form_data=data, signature=signature):
            logger.warning("Rejected webhook with invalid gateway signature")
            return JSONResponse(status_code=403, content={"error": "Invalid signature"})

    try:
        twiml = await process_incoming_message(db, data)
    except Exception as exc:
        logger.error(
            f"Error processing incoming message: {exc}",
            exc_info=True,
            extra={"context": {"message_sid": data.get("MessageSid"), "from": data.get("From")}},
        )
        db.rollback()
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return _twiml_response(twiml)
