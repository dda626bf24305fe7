import os
import uuid
from unittest.mock import Mock

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MEDIA_SIGNING_SECRET", "test-secret")

from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from commerce_channel.database import Base  # noqa: E402
from commerce_channel.models import Advisor  # noqa: E402
from commerce_channel.services.advisor_service import AdvisorInfo  # noqa: E402
from commerce_channel.services.context import RequestContext  # noqa: E402


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "ACtest")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "test-token")


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine):
    Session = sessionmaker(bind=sqlite_engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def advisor(sqlite_session):
    row = Advisor(id=uuid.uuid4(), name="Laura", gateway_number="+5742044600", is_active=True)
    sqlite_session.add(row)
    sqlite_session.commit()
    return row


@pytest.fixture
def advisor_info():
    return AdvisorInfo(id=uuid.uuid4(), name="Laura", gateway_number="+5742044600", is_active=True)


@pytest.fixture
def request_context(advisor_info):
    return RequestContext(
        client_number="+573001112233",
        gateway_number=advisor_info.gateway_number,
        advisor=advisor_info,
        inbound_sid="SM_inbound",
    )
