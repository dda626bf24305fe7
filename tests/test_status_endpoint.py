from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from commerce_channel.database import get_db
from commerce_channel.main import app
from commerce_channel.services.conversation_service import append_message, update_gateway_sid
from commerce_channel.services.media_storage import MediaStorage


@pytest.fixture
def client(sqlite_session):
    app.dependency_overrides[get_db] = lambda: sqlite_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sent_message(sqlite_session, advisor):
    message = append_message(sqlite_session, "+573001112233", "Hola", False, advisor_id=advisor.id)
    update_gateway_sid(sqlite_session, message.id, "SM200")
    sqlite_session.commit()
    return message


class TestStatusWebhook:
    def test_callbacks_update_status(self, client, sqlite_session, sent_message):
        for status in ["delivered", "sent", "read"]:
            response = client.post("/webhook/status", data={"MessageSid": "SM200", "MessageStatus": status})
            assert response.status_code == 200
            assert response.text == "OK"

        sqlite_session.refresh(sent_message)
        assert sent_message.status == "read"

    def test_unknown_sid_is_acknowledged(self, client):
        response = client.post("/webhook/status", data={"MessageSid": "SM404", "MessageStatus": "sent"})
        assert response.status_code == 200
        assert response.text == "OK"

    def test_internal_error_is_acknowledged(self, client):
        with patch("commerce_channel.routers.status.record_status_callback", side_effect=RuntimeError("db down")):
            response = client.post("/webhook/status", data={"MessageSid": "SM200", "MessageStatus": "sent"})
        assert response.status_code == 200
        assert response.text == "OK"


class TestMessageStatus:
    def test_unknown_sid_is_404(self, client):
        response = client.get("/message-status/SM404")
        assert response.status_code == 404
        assert response.json() == {"error": "Message not found"}

    def test_status_details(self, client, sent_message):
        client.post("/webhook/status", data={"MessageSid": "SM200", "MessageStatus": "sent"})
        client.post("/webhook/status", data={"MessageSid": "SM200", "MessageStatus": "delivered"})

        response = client.get("/message-status/SM200")

        assert response.status_code == 200
        data = response.json()
        assert data["current_status"] == "delivered"
        assert [entry["status"] for entry in data["history"]] == ["sent", "delivered"]
        assert data["timeline"]["delivered"] is not None
        assert data["message"]["body"] == "Hola"

    def test_stored_media_gets_fresh_link(self, client, sqlite_session, advisor, tmp_path):
        message = append_message(
            sqlite_session, "+573001112233", "Audio message", False, media_url="audios/audio_1.mp3", advisor_id=advisor.id
        )
        update_gateway_sid(sqlite_session, message.id, "SM300")
        sqlite_session.commit()
        storage = MediaStorage(str(tmp_path), public_base_url="https://channel.example.com", signing_secret="secret")

        with patch("commerce_channel.routers.status.get_media_storage", return_value=storage):
            response = client.get("/message-status/SM300")

        media_url = response.json()["message"]["media_url"]
        assert media_url.startswith("https://channel.example.com/media/audios/audio_1.mp3?expires=")
        sqlite_session.refresh(message)
        assert message.media_url == "audios/audio_1.mp3"


class TestMediaEndpoint:
    def test_rejects_bad_signature(self, client):
        response = client.get("/media/images/i.jpg", params={"expires": 9999999999, "sig": "bogus"})
        assert response.status_code == 403

    def test_serves_signed_file(self, client, tmp_path):
        storage = MediaStorage(str(tmp_path), public_base_url="http://testserver", signing_secret="secret")
        with patch("commerce_channel.routers.media.get_media_storage", return_value=storage):
            (tmp_path / "images").mkdir()
            (tmp_path / "images" / "i.jpg").write_bytes(b"\xff\xd8\xff")
            url = storage.signed_url("images/i.jpg")

            response = client.get(url.replace("http://testserver", ""))

        assert response.status_code == 200
        assert response.content == b"\xff\xd8\xff"

    def test_missing_file_is_404(self, client, tmp_path):
        storage = MediaStorage(str(tmp_path), public_base_url="http://testserver", signing_secret="secret")
        with patch("commerce_channel.routers.media.get_media_storage", return_value=storage):
            url = storage.signed_url("images/missing.jpg")
            response = client.get(url.replace("http://testserver", ""))

        assert response.status_code == 404
