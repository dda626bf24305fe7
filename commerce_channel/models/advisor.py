import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from commerce_channel.database import Base


class Advisor(Base):
    __tablename__ = "advisors"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    gateway_number = Column(Text, nullable=False, index=True)  # e.g. +5742044644
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversations = relationship("Conversation", back_populates="advisor")
