from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from commerce_channel.database import get_db
from commerce_channel.logging_config import get_logger
from commerce_channel.schemas.status import MessageStatusResponse
from commerce_channel.services.delivery_status_service import get_message_status, record_status_callback
from commerce_channel.services.errors import UploadFailed
from commerce_channel.services.media_storage import get_media_storage

logger = get_logger("status")

router = APIRouter()


@router.post("/webhook/status")
async def status_callback(request: Request, db: Session = Depends(get_db)):
    """Delivery status callback from the gateway. Always acknowledged with 200."""
    try:
        form = await request.form()
        payload = {key: str(value) for key, value in form.items()}
        outcome = record_status_callback(db, payload)
        if not outcome.ok:
            logger.warning(f"Status callback rejected: {outcome.error}")
    except Exception as exc:
        logger.error(f"Error handling status callback: {exc}", exc_info=True)
        db.rollback()
    return PlainTextResponse("OK")


@router.get("/message-status/{sid}", response_model=MessageStatusResponse)
def message_status(sid: str, db: Session = Depends(get_db)):
    status = get_message_status(db, sid)
    if status is None:
        return JSONResponse(status_code=404, content={"error": "Message not found"})
    message = status.get("message") or {}
    if message.get("media_url"):
        try:
            message["media_url"] = get_media_storage().link(message["media_url"])
        except UploadFailed as exc:
            logger.warning(f"Cannot sign media for {sid}: {exc}")
    return status
