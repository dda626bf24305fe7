from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class StatusHistoryEntry(BaseModel):
    status: str
    previous_status: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class StatusMessage(BaseModel):
    id: int
    conversation_id: int
    sender: str
    body: Optional[str] = None
    media_url: Optional[str] = None
    created_at: Optional[datetime] = None


class StatusTimeline(BaseModel):
    sent: Optional[datetime] = None
    delivered: Optional[datetime] = None
    read: Optional[datetime] = None
    failed: Optional[datetime] = None


class MessageStatusResponse(BaseModel):
    message_sid: str
    current_status: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    message: StatusMessage
    history: list[StatusHistoryEntry]
    timeline: StatusTimeline
