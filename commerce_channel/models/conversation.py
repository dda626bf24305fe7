from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from commerce_channel.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("client_number", "advisor_id", name="uq_conversations_client_advisor"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_number = Column(Text, nullable=False, index=True)
    advisor_id = Column(Uuid(as_uuid=True), ForeignKey("advisors.id"))
    client_name = Column(Text)
    email = Column(Text)
    company = Column(Text)
    tax_id = Column(Text)
    category = Column(Text)
    chat_on = Column(Boolean)  # True: human attention, False: AI, NULL: unknown
    audio = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    chat_status = Column(Text, nullable=False, default="open")  # open, closed
    notified_no_reply = Column(Boolean, nullable=False, default=False)
    notified_out_afternoon = Column(Boolean, nullable=False, default=False)
    notified_out_of_hours = Column(Boolean, nullable=False, default=False)
    origin = Column(Text, nullable=False, default="organic")  # campaign, organic
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    advisor = relationship("Advisor", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
