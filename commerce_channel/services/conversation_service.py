from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.models import ClientProfile, Conversation, Message
from commerce_channel.services.errors import ConversationConflict

logger = get_logger("conversation_service")

SENDER_CLIENT = "client_message"
SENDER_AGENT = "agent_message"

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def find_latest_conversation(db: Session, client_number: str, advisor_id: Optional[UUID]) -> Optional[Conversation]:
    """Most recent conversation for (client, advisor); with no advisor, the most recent for the client."""
    query = db.query(Conversation).filter(Conversation.client_number == client_number)
    if advisor_id:
        query = query.filter(Conversation.advisor_id == advisor_id)
    return query.order_by(Conversation.created_at.desc(), Conversation.id.desc()).first()


def get_attention_flag(db: Session, client_number: str, advisor_id: Optional[UUID]) -> Optional[bool]:
    """`chat_on` of the canonical conversation: True human, False AI, None unknown."""
    try:
        conversation = find_latest_conversation(db, client_number, advisor_id)
    except SQLAlchemyError as exc:
        logger.error(
            f"Error reading chat_on: {exc}",
            extra={"context": {"client_number": client_number, "advisor_id": str(advisor_id)}},
        )
        return None
    if not conversation:
        logger.info(f"No conversation found for {client_number} with advisor {advisor_id or 'any'}")
        return None
    return conversation.chat_on


def get_audio_preference(db: Session, client_number: str, advisor_id: Optional[UUID]) -> bool:
    try:
        conversation = find_latest_conversation(db, client_number, advisor_id)
    except SQLAlchemyError as exc:
        logger.error(f"Error reading audio preference: {exc}")
        return False
    return bool(conversation and conversation.audio)


def _last_message_at(db: Session, conversation_id: int) -> Optional[datetime]:
    last_message = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .first()
    )
    return _as_aware(last_message.created_at) if last_message else None


def _reset_notification_flags(conversation: Conversation) -> None:
    conversation.notified_no_reply = False
    conversation.notified_out_afternoon = False
    conversation.notified_out_of_hours = False


def should_reopen(last_message_at: Optional[datetime], now: datetime, reopen_after_minutes: float) -> bool:
    """A closed conversation reopens once the client has been silent for at least the threshold."""
    if last_message_at is None:
        return False
    elapsed_minutes = (now - _as_aware(last_message_at)).total_seconds() / 60
    return elapsed_minutes >= reopen_after_minutes


def apply_client_message_effects(
    db: Session,
    conversation: Conversation,
    *,
    now: datetime,
    reopen_after_minutes: Optional[float] = None,
) -> None:
    threshold = settings.reopen_after_minutes if reopen_after_minutes is None else reopen_after_minutes

    if conversation.chat_status != STATUS_CLOSED:
        _reset_notification_flags(conversation)

    if conversation.is_archived:
        conversation.is_archived = False
        logger.info(f"Conversation {conversation.id} unarchived by client message")

    if conversation.chat_status == STATUS_CLOSED:
        last_message_at = _last_message_at(db, conversation.id)
        if should_reopen(last_message_at, now, threshold):
            conversation.chat_status = STATUS_OPEN
            _reset_notification_flags(conversation)
            logger.info(f"Conversation {conversation.id} reopened after client message")
        else:
            logger.info(
                f"Conversation {conversation.id} stays closed: last message less than {threshold} minutes ago"
            )


def apply_outgoing_message_effects(conversation: Conversation) -> None:
    if conversation.is_archived:
        conversation.is_archived = False
        logger.info(f"Conversation {conversation.id} unarchived by outgoing message")


def _lookup_client_profile(db: Session, client_number: str) -> Optional[ClientProfile]:
    try:
        return db.query(ClientProfile).filter(ClientProfile.phone == client_number).first()
    except SQLAlchemyError as exc:
        logger.info(f"Could not fetch client profile, creating bare conversation: {exc}")
        return None


def create_conversation(
    db: Session,
    client_number: str,
    advisor_id: Optional[UUID],
    *,
    origin: Optional[str] = None,
    chat_on: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Conversation:
    """Insert a conversation; if a concurrent request won the race, return its row instead."""
    profile = _lookup_client_profile(db, client_number)
    conversation = Conversation(
        client_number=client_number,
        advisor_id=advisor_id,
        client_name=profile.name if profile else None,
        email=profile.email if profile else None,
        company=profile.company if profile else None,
        tax_id=profile.tax_id if profile else None,
        category=profile.category if profile else None,
        chat_on=settings.default_chat_on if chat_on is None else chat_on,
        audio=False,
        is_archived=False,
        chat_status=STATUS_OPEN,
        origin=origin or "organic",
        created_at=now or _utcnow(),
    )

    try:
        with db.begin_nested():
            db.add(conversation)
            db.flush()
    except IntegrityError as exc:
        conflict = ConversationConflict(f"Conversation for {client_number} created concurrently")
        logger.info(
            "Conflict detected, using conversation created by concurrent request",
            extra={"context": {"client_number": client_number, "advisor_id": str(advisor_id), "code": conflict.code}},
        )
        existing = find_latest_conversation(db, client_number, advisor_id)
        if existing is None:
            raise exc
        return existing

    logger.info(f"Created conversation {conversation.id} for {client_number} with advisor {advisor_id or 'any'}")
    return conversation


def get_or_create_conversation(
    db: Session,
    client_number: str,
    advisor_id: Optional[UUID],
    *,
    origin: Optional[str] = None,
) -> tuple[Conversation, bool]:
    conversation = find_latest_conversation(db, client_number, advisor_id)
    if conversation:
        return conversation, False
    return create_conversation(db, client_number, advisor_id, origin=origin), True


def append_message(
    db: Session,
    client_number: str,
    text: str,
    is_from_client: bool,
    media_url: Optional[str] = None,
    sender: Optional[str] = None,
    origin: Optional[str] = None,
    file_name: Optional[str] = None,
    advisor_id: Optional[UUID] = None,
    *,
    now: Optional[datetime] = None,
) -> Message:
    """Persist one message, creating or updating its conversation as a side effect."""
    now = now or _utcnow()
    conversation, created = get_or_create_conversation(db, client_number, advisor_id, origin=origin)

    if not created:
        if is_from_client:
            apply_client_message_effects(db, conversation, now=now)
        else:
            apply_outgoing_message_effects(conversation)

    message = Message(
        conversation_id=conversation.id,
        advisor_id=advisor_id,
        sender=sender or (SENDER_CLIENT if is_from_client else SENDER_AGENT),
        body=text,
        media_url=media_url or None,
        file_name=file_name,
        created_at=now,
    )
    db.add(message)
    db.flush()
    logger.info(f"Message {message.id} saved to conversation {conversation.id}")
    return message


def append_template_message(
    db: Session,
    client_number: str,
    text: str,
    operator_name: str,
    advisor_id: Optional[UUID] = None,
    media_url: Optional[str] = None,
) -> Message:
    """Persist an operator-sent template; no client-side effects besides unarchiving."""
    now = _utcnow()
    conversation, created = get_or_create_conversation(db, client_number, advisor_id)
    if not created:
        apply_outgoing_message_effects(conversation)

    message = Message(
        conversation_id=conversation.id,
        advisor_id=advisor_id,
        sender=operator_name,
        body=text,
        media_url=media_url or None,
        created_at=now,
    )
    db.add(message)
    db.flush()
    return message


def get_conversation_history(
    db: Session,
    conversation_id: int,
    limit: Optional[int] = None,
    *,
    exclude_message_id: Optional[int] = None,
) -> list[dict]:
    """Recent messages as chat turns, oldest first.

    Client messages become `user` turns; agent, operator and template
    messages become `assistant` turns.
    """
    limit = limit if limit is not None else settings.reply_history_limit
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if exclude_message_id is not None:
        query = query.filter(Message.id != exclude_message_id)
    messages = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()

    history = []
    for message in reversed(messages):
        if not (message.body or "").strip():
            continue
        role = "user" if message.sender == SENDER_CLIENT else "assistant"
        history.append({"role": role, "content": message.body})
    return history


def update_gateway_sid(db: Session, message_id: int, gateway_sid: str) -> bool:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        logger.warning(f"Cannot attach gateway sid {gateway_sid}: message {message_id} not found")
        return False
    message.gateway_sid = gateway_sid
    db.flush()
    logger.info(f"Message {message_id} updated with gateway sid {gateway_sid}")
    return True


def set_attention_flag(db: Session, conversation_id: int, chat_on: bool) -> bool:
    """Operator toggle: True hands the conversation to a human, False to the agent."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        return False
    conversation.chat_on = chat_on
    db.flush()
    logger.info(f"Conversation {conversation_id} attention set to {'human' if chat_on else 'ai'}")
    return True


def set_audio_preference(db: Session, conversation_id: int, enabled: bool) -> bool:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        return False
    conversation.audio = enabled
    db.flush()
    return True
