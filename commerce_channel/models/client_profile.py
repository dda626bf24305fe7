from sqlalchemy import Column, Integer, Text

from commerce_channel.database import Base


class ClientProfile(Base):
    """Reference data about known customers, looked up by phone."""

    __tablename__ = "client_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    email = Column(Text)
    company = Column(Text)
    tax_id = Column(Text)
    category = Column(Text)
