from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from commerce_channel.database import Base


class MessageStatusHistory(Base):
    __tablename__ = "message_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    gateway_sid = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False)
    previous_status = Column(Text)
    error_code = Column(Text)
    error_message = Column(Text)
    raw_payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    message = relationship("Message", back_populates="status_history")
