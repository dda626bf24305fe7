import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.database import get_db
from commerce_channel.logging_config import get_logger
from commerce_channel.schemas.dashboard import DashboardMessageRequest, SendResponse
from commerce_channel.schemas.template import TemplateRequest
from commerce_channel.services.audio_conversion import convert_webm_to_mp3, download_audio
from commerce_channel.services.conversation_service import (
    append_message,
    append_template_message,
    update_gateway_sid,
)
from commerce_channel.services.dispatch_service import AUDIO_MESSAGE_BODY
from commerce_channel.services.gateway_service import empty_twiml, get_gateway
from commerce_channel.services.media_storage import build_object_name, get_media_storage

logger = get_logger("dashboard")

router = APIRouter()

FILE_MESSAGE_BODY = "Archivo enviado"
TEXT_SENT_MESSAGE = "Mensaje enviado exitosamente"
TEMPLATE_ERROR_MESSAGE = "Error al enviar la plantilla"
LOOKUP_ERROR_MESSAGE = "Error al obtener el mensaje"


def _twiml_response() -> Response:
    return Response(content=empty_twiml(), media_type="application/xml")


async def _send_operator_audio(db: Session, request: DashboardMessageRequest) -> None:
    recording = await download_audio(request.new_message)
    mp3 = await convert_webm_to_mp3(recording)
    storage = get_media_storage()
    audio_path = await storage.upload(
        mp3,
        folder="ogg",
        file_name=build_object_name("audio", "mp3"),
        content_type="audio/mpeg",
        metadata={"phone_number": request.client_number, "operator": request.user_name},
    )

    message = append_message(
        db,
        request.client_number,
        AUDIO_MESSAGE_BODY,
        False,
        media_url=request.new_message,
        sender=request.user_name,
        advisor_id=request.advisor_id,
    )
    db.commit()

    sid = await get_gateway().send_message(
        from_number=request.gateway_number,
        to_number=request.client_number,
        body=AUDIO_MESSAGE_BODY,
        media_urls=[storage.link(audio_path)],
    )
    update_gateway_sid(db, message.id, sid)
    db.commit()
    logger.info(f"Operator audio sent: {sid}")


async def _send_operator_file(db: Session, request: DashboardMessageRequest) -> None:
    message = append_message(
        db,
        request.client_number,
        FILE_MESSAGE_BODY,
        False,
        media_url=request.new_message,
        sender=request.user_name,
        file_name=request.file_name,
        advisor_id=request.advisor_id,
    )
    db.commit()

    sid = await get_gateway().send_message(
        from_number=request.gateway_number,
        to_number=request.client_number,
        media_urls=[request.new_message],
    )
    update_gateway_sid(db, message.id, sid)
    db.commit()
    logger.info(f"Operator file sent: {sid}", extra={"context": {"file_name": request.file_name}})


async def _send_operator_text(db: Session, request: DashboardMessageRequest) -> str:
    message = append_message(
        db,
        request.client_number,
        request.new_message,
        False,
        sender=request.user_name,
        advisor_id=request.advisor_id,
    )
    db.commit()

    sid = await get_gateway().send_message(
        from_number=request.gateway_number,
        to_number=request.client_number,
        body=request.new_message,
    )
    update_gateway_sid(db, message.id, sid)
    db.commit()
    return sid


@router.post("/chat-dashboard")
async def chat_dashboard(request: DashboardMessageRequest, db: Session = Depends(get_db)):
    """Operator-originated message: text, recorded audio or file link."""
    try:
        if request.new_message.startswith(settings.dashboard_audio_url_prefix):
            await _send_operator_audio(db, request)
            return _twiml_response()

        if request.new_message.startswith(settings.dashboard_document_url_prefix):
            await _send_operator_file(db, request)
            return _twiml_response()

        sid = await _send_operator_text(db, request)
        return SendResponse(success=True, message=TEXT_SENT_MESSAGE, sid=sid)
    except Exception as exc:
        logger.error(
            f"Error in chat dashboard route: {exc}",
            exc_info=True,
            extra={"context": {"client_number": request.client_number}},
        )
        db.rollback()
        return JSONResponse(status_code=500, content={"error": str(exc)})


@router.post("/send-template")
async def send_template(request: TemplateRequest, db: Session = Depends(get_db)):
    gateway = get_gateway()
    try:
        sid = await gateway.send_template(
            from_number=request.gateway_number,
            to_number=request.to,
            content_sid=request.template_id,
            variables={"1": request.name, "2": request.agent_name},
        )

        # The rendered template body is only available once the gateway has processed it.
        await asyncio.sleep(settings.template_render_wait_seconds)
        rendered = await gateway.fetch_message(sid)
        body = rendered.get("body") or ""

        message = append_template_message(
            db,
            request.to,
            body,
            request.user,
            advisor_id=request.advisor_id,
        )
        update_gateway_sid(db, message.id, sid)
        db.commit()

        return SendResponse(success=True, message=body, sid=sid)
    except Exception as exc:
        logger.error(f"Error sending template: {exc}", extra={"context": {"to": request.to}})
        db.rollback()
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": TEMPLATE_ERROR_MESSAGE, "error": str(exc)},
        )


@router.get("/message/{sid}")
async def get_message(sid: str):
    try:
        message = await get_gateway().fetch_message(sid)
    except Exception as exc:
        logger.error(f"Error fetching message {sid}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": LOOKUP_ERROR_MESSAGE, "error": str(exc)},
        )
    return {"success": True, "message": message}
