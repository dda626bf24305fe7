from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from commerce_channel.logging_config import get_logger
from commerce_channel.models import Message, MessageStatusHistory
from commerce_channel.services.errors import StatusCallbackOrphan

logger = get_logger("delivery_status_service")

STATUS_HIERARCHY = {
    "queued": 1,
    "sent": 2,
    "delivered": 3,
    "read": 4,
    "failed": 5,
}

STATUS_ALIASES = {"undelivered": "failed"}
ERROR_STATUSES = frozenset({"failed"})

TIMESTAMP_COLUMNS = {
    "sent": "sent_at",
    "delivered": "delivered_at",
    "read": "read_at",
    "failed": "failed_at",
}


@dataclass(frozen=True)
class CallbackOutcome:
    """What a single delivery callback did to the stored message."""

    ok: bool
    status: Optional[str] = None
    applied: bool = False
    orphan: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def updated(status: str) -> "CallbackOutcome":
        return CallbackOutcome(ok=True, status=status, applied=True)

    @staticmethod
    def ignored(current_status: Optional[str]) -> "CallbackOutcome":
        return CallbackOutcome(ok=True, status=current_status)

    @staticmethod
    def unmatched(status: str) -> "CallbackOutcome":
        return CallbackOutcome(ok=True, status=status, orphan=True)

    @staticmethod
    def invalid(error: str, code: str = "invalid_payload") -> "CallbackOutcome":
        return CallbackOutcome(ok=False, error=error, error_code=code)


def normalize_status(raw_status: Optional[str]) -> str:
    status = (raw_status or "").strip().lower()
    return STATUS_ALIASES.get(status, status)


def status_rank(status: Optional[str]) -> int:
    return STATUS_HIERARCHY.get(normalize_status(status), 0)


def should_update_status(previous_status: Optional[str], new_status: Optional[str]) -> bool:
    """Statuses only move forward; error statuses always win."""
    normalized = normalize_status(new_status)
    if normalized in ERROR_STATUSES:
        return True
    return status_rank(normalized) > status_rank(previous_status)


def _apply_status(message: Message, status: str, error_code: Optional[str], error_message: Optional[str], now: datetime):
    message.status = status
    column = TIMESTAMP_COLUMNS.get(status)
    if column:
        setattr(message, column, now)
    if error_code:
        message.error_code = error_code
    if error_message:
        message.error_message = error_message


def record_status_callback(
    db: Session, payload: Mapping[str, str], *, now: Optional[datetime] = None
) -> CallbackOutcome:
    """Apply one gateway delivery callback and append it to the audit trail.

    An unknown SID is logged and acknowledged as an orphan outcome. Stale
    statuses still land in the history table but leave the message untouched.
    """
    now = now or datetime.now(timezone.utc)
    sid = payload.get("MessageSid") or payload.get("SmsSid") or ""
    raw_status = payload.get("MessageStatus") or payload.get("SmsStatus") or ""
    error_code = payload.get("ErrorCode") or None
    error_message = payload.get("ErrorMessage") or None
    log_context = {"message_sid": sid, "status": raw_status, "error_code": error_code}

    if not sid or not raw_status:
        logger.warning("Status callback without sid or status", extra={"context": log_context})
        return CallbackOutcome.invalid("missing sid or status")

    message = db.query(Message).filter(Message.gateway_sid == sid).first()
    if not message:
        orphan = StatusCallbackOrphan(f"No message found for sid {sid}")
        logger.warning(str(orphan), extra={"context": log_context})
        return CallbackOutcome.unmatched(normalize_status(raw_status))

    previous_status = message.status
    new_status = normalize_status(raw_status)

    applied = should_update_status(previous_status, new_status)
    if applied:
        _apply_status(message, new_status, error_code, error_message, now)
        logger.info(f"Message {sid} status {previous_status} -> {new_status}", extra={"context": log_context})
    else:
        logger.info(
            f"Ignoring out-of-order status {new_status} for {sid} (current {previous_status})",
            extra={"context": log_context},
        )

    db.add(
        MessageStatusHistory(
            message_id=message.id,
            gateway_sid=sid,
            status=new_status,
            previous_status=previous_status,
            error_code=error_code,
            error_message=error_message,
            raw_payload=dict(payload),
            created_at=now,
        )
    )
    db.commit()
    return CallbackOutcome.updated(new_status) if applied else CallbackOutcome.ignored(message.status)


def get_message_status(db: Session, sid: str) -> Optional[dict]:
    """Current status plus ordered history for a gateway SID, or None if unknown."""
    message = db.query(Message).filter(Message.gateway_sid == sid).first()
    if not message:
        return None

    history = (
        db.query(MessageStatusHistory)
        .filter(MessageStatusHistory.message_id == message.id)
        .order_by(MessageStatusHistory.created_at.asc(), MessageStatusHistory.id.asc())
        .all()
    )
    return {
        "message_sid": sid,
        "current_status": message.status,
        "error_code": message.error_code,
        "error_message": message.error_message,
        "message": {
            "id": message.id,
            "conversation_id": message.conversation_id,
            "sender": message.sender,
            "body": message.body,
            "media_url": message.media_url,
            "created_at": message.created_at,
        },
        "history": [
            {
                "status": entry.status,
                "previous_status": entry.previous_status,
                "error_code": entry.error_code,
                "error_message": entry.error_message,
                "created_at": entry.created_at,
            }
            for entry in history
        ],
        "timeline": {
            "sent": message.sent_at,
            "delivered": message.delivered_at,
            "read": message.read_at,
            "failed": message.failed_at,
        },
    }
