from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from commerce_channel.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    advisor_id = Column(Uuid(as_uuid=True))
    sender = Column(Text, nullable=False)  # client_message, agent_message, or operator name
    body = Column(Text, nullable=False, default="")
    media_url = Column(Text)
    file_name = Column(Text)
    gateway_sid = Column(Text, index=True)
    status = Column(Text)  # queued, sent, delivered, read, failed
    error_code = Column(Text)
    error_message = Column(Text)
    sent_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    read_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
    status_history = relationship("MessageStatusHistory", back_populates="message")
