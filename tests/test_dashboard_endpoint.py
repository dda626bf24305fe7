from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from commerce_channel.config import settings
from commerce_channel.database import get_db
from commerce_channel.main import app
from commerce_channel.models import Message
from commerce_channel.services.errors import GatewaySendFailed

CLIENT = "+573001112233"
GATEWAY_NUMBER = "+5742044600"


@pytest.fixture
def client(sqlite_session):
    app.dependency_overrides[get_db] = lambda: sqlite_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def gateway():
    gateway = Mock()
    gateway.send_message = AsyncMock(return_value="SM_op_1")
    gateway.send_template = AsyncMock(return_value="SM_tpl_1")
    gateway.fetch_message = AsyncMock(return_value={"sid": "SM_tpl_1", "body": "Hola Ana, soy Laura de Asadores"})
    with patch("commerce_channel.routers.dashboard.get_gateway", return_value=gateway):
        yield gateway


def _payload(advisor, message, **extra):
    payload = {
        "clientNumber": CLIENT,
        "newMessage": message,
        "userName": "Laura",
        "advisorId": str(advisor.id),
        "gatewayNumber": GATEWAY_NUMBER,
    }
    payload.update(extra)
    return payload


class TestChatDashboard:
    def test_text_message(self, client, sqlite_session, advisor, gateway):
        response = client.post("/chat-dashboard", json=_payload(advisor, "Ya le envío la cotización"))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Mensaje enviado exitosamente", "sid": "SM_op_1"}
        message = sqlite_session.query(Message).one()
        assert message.sender == "Laura"
        assert message.body == "Ya le envío la cotización"
        assert message.gateway_sid == "SM_op_1"
        kwargs = gateway.send_message.await_args.kwargs
        assert kwargs["from_number"] == GATEWAY_NUMBER
        assert kwargs["to_number"] == CLIENT

    def test_file_message(self, client, sqlite_session, advisor, gateway):
        file_url = f"{settings.dashboard_document_url_prefix}%2Fcotizacion.pdf?alt=media"

        response = client.post("/chat-dashboard", json=_payload(advisor, file_url, fileName="cotizacion.pdf"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        message = sqlite_session.query(Message).one()
        assert message.body == "Archivo enviado"
        assert message.file_name == "cotizacion.pdf"
        assert message.media_url == file_url
        assert gateway.send_message.await_args.kwargs["media_urls"] == [file_url]

    def test_audio_message(self, client, sqlite_session, advisor, gateway):
        audio_url = f"{settings.dashboard_audio_url_prefix}%2Fnota.webm?alt=media"
        storage = Mock()
        storage.upload = AsyncMock(return_value="ogg/audio_1.mp3")
        storage.link = Mock(return_value="https://channel.example.com/media/ogg/audio_1.mp3?expires=1&sig=1")

        with patch("commerce_channel.routers.dashboard.download_audio", AsyncMock(return_value=b"webm")), patch(
            "commerce_channel.routers.dashboard.convert_webm_to_mp3", AsyncMock(return_value=b"mp3")
        ), patch("commerce_channel.routers.dashboard.get_media_storage", return_value=storage):
            response = client.post("/chat-dashboard", json=_payload(advisor, audio_url))

        assert response.status_code == 200
        message = sqlite_session.query(Message).one()
        assert message.body == "Audio message"
        assert message.media_url == audio_url
        assert message.gateway_sid == "SM_op_1"
        assert storage.upload.await_args.kwargs["folder"] == "ogg"
        kwargs = gateway.send_message.await_args.kwargs
        assert kwargs["media_urls"] == ["https://channel.example.com/media/ogg/audio_1.mp3?expires=1&sig=1"]
        storage.link.assert_called_once_with("ogg/audio_1.mp3")

    def test_gateway_error_returns_500(self, client, advisor, gateway):
        gateway.send_message.side_effect = GatewaySendFailed("Twilio rejected message")

        response = client.post("/chat-dashboard", json=_payload(advisor, "Hola"))

        assert response.status_code == 500
        assert response.json() == {"error": "Twilio rejected message"}


class TestSendTemplate:
    def test_template_is_sent_and_persisted(self, client, sqlite_session, advisor, gateway):
        with patch.object(settings, "template_render_wait_seconds", 0):
            response = client.post(
                "/send-template",
                json={
                    "to": CLIENT,
                    "templateId": "HX123",
                    "name": "Ana",
                    "agentName": "Laura",
                    "user": "Laura",
                    "advisorId": str(advisor.id),
                    "gatewayNumber": GATEWAY_NUMBER,
                },
            )

        assert response.status_code == 200
        assert response.json()["message"] == "Hola Ana, soy Laura de Asadores"
        assert gateway.send_template.await_args.kwargs["variables"] == {"1": "Ana", "2": "Laura"}
        message = sqlite_session.query(Message).one()
        assert message.sender == "Laura"
        assert message.gateway_sid == "SM_tpl_1"

    def test_template_error(self, client, advisor, gateway):
        gateway.send_template.side_effect = GatewaySendFailed("bad template")

        response = client.post(
            "/send-template",
            json={
                "to": CLIENT,
                "templateId": "HX404",
                "name": "Ana",
                "agentName": "Laura",
                "user": "Laura",
                "gatewayNumber": GATEWAY_NUMBER,
            },
        )

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["error"] == "bad template"


class TestMessageLookup:
    def test_lookup(self, client, gateway):
        response = client.get("/message/SM_tpl_1")
        assert response.json() == {"success": True, "message": {"sid": "SM_tpl_1", "body": "Hola Ana, soy Laura de Asadores"}}

    def test_lookup_error(self, client, gateway):
        gateway.fetch_message.side_effect = GatewaySendFailed("not found", status_code=404)
        response = client.get("/message/SM404")
        assert response.status_code == 500
        assert response.json()["success"] is False
