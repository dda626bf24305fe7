import asyncio
import random
from unittest.mock import AsyncMock, Mock, patch

import pytest

from commerce_channel.services.dispatch_service import (
    AUDIO_MESSAGE_BODY,
    ResponseDispatcher,
    is_speech_eligible,
    split_reply,
)
from commerce_channel.services.errors import GatewaySendFailed, SpeechSynthesisFailed, UploadFailed

AUDIO_PATH = "audios/audio_1.mp3"
AUDIO_URL = "https://media.example.com/media/audios/audio_1.mp3?expires=1&sig=1"


def _storage():
    storage = Mock()
    storage.upload = AsyncMock(return_value=AUDIO_PATH)
    storage.link = Mock(return_value=AUDIO_URL)
    return storage


class TestIsSpeechEligible:
    def test_short_plain_text(self):
        assert is_speech_eligible("Claro que sí, con mucho gusto", True) is True

    def test_audio_disabled(self):
        assert is_speech_eligible("Claro que sí", False) is False

    def test_digits_are_not_spoken(self):
        assert is_speech_eligible("Cuesta 250 mil pesos", True) is False

    def test_acronyms_are_not_spoken(self):
        assert is_speech_eligible("El precio incluye IVA", True) is False
        assert is_speech_eligible("Somos Asados S.A.S. desde siempre", True) is False

    def test_slash_is_not_spoken(self):
        assert is_speech_eligible("Puede ser carbón y/o gas", True) is False

    def test_length_limit(self):
        assert is_speech_eligible("a" * 400, True) is True
        assert is_speech_eligible("a" * 401, True) is False


class TestSplitReply:
    def test_short_reply_is_single(self):
        text = "a" * 1000
        assert split_reply(text) == [text]

    def test_long_reply_splits_on_blank_lines(self):
        text = "a" * 500 + "\n\n" + "b" * 499
        assert len(text) == 1001
        assert split_reply(text) == ["a" * 500, "b" * 499]

    def test_empty_segments_are_dropped(self):
        text = "a" * 600 + "\n\n\n\n" + "b" * 600 + "\n\n"
        assert split_reply(text) == ["a" * 600, "b" * 600]


@pytest.fixture
def events():
    return []


@pytest.fixture
def persisted(events):
    messages = []

    def _append(db, client_number, text, is_from_client, **kwargs):
        message = Mock(id=len(messages) + 1, media_url=None)
        messages.append(message)
        events.append(("persist", text))
        return message

    with patch("commerce_channel.services.dispatch_service.append_message", side_effect=_append) as append, patch(
        "commerce_channel.services.dispatch_service.update_gateway_sid"
    ) as update_sid:
        append.messages = messages
        yield append, update_sid


def _gateway(events, failures=None):
    gateway = Mock()
    sids = iter(f"SM{i}" for i in range(1, 100))

    async def _send(**kwargs):
        events.append(("send", kwargs.get("body")))
        if failures and failures.pop(0):
            raise GatewaySendFailed("rejected", status_code=400)
        return next(sids)

    gateway.send_message = AsyncMock(side_effect=_send)
    return gateway


def _dispatcher(gateway, synthesize=None, storage=None, sleep=None):
    if storage is None:
        storage = _storage()
    return ResponseDispatcher(
        gateway,
        storage,
        synthesize=synthesize or AsyncMock(return_value=b"ID3-audio"),
        sleep=sleep or AsyncMock(),
        rng=random.Random(7),
    )


class TestDispatchText:
    def test_thousand_chars_is_one_message(self, request_context, events, persisted):
        gateway = _gateway(events)
        dispatcher = _dispatcher(gateway)

        outcome = asyncio.run(dispatcher.dispatch(Mock(), "a" * 1000, request_context, audio_enabled=False))

        assert outcome.sent_sids == ["SM1"]
        assert gateway.send_message.await_count == 1
        kwargs = gateway.send_message.await_args.kwargs
        assert kwargs["from_number"] == request_context.gateway_number
        assert kwargs["to_number"] == request_context.client_number

    def test_long_reply_sends_each_segment_after_persisting(self, request_context, events, persisted):
        append, update_sid = persisted
        gateway = _gateway(events)
        text = "a" * 500 + "\n\n" + "b" * 499

        outcome = asyncio.run(_dispatcher(gateway).dispatch(Mock(), text, request_context, audio_enabled=False))

        assert events == [
            ("persist", "a" * 500),
            ("send", "a" * 500),
            ("persist", "b" * 499),
            ("send", "b" * 499),
        ]
        assert outcome.sent_sids == ["SM1", "SM2"]
        assert outcome.message_ids == [1, 2]
        assert update_sid.call_count == 2

    def test_messages_are_persisted_as_agent(self, request_context, events, persisted):
        append, _ = persisted
        asyncio.run(_dispatcher(_gateway(events)).dispatch(Mock(), "Hola", request_context, audio_enabled=False))

        args, kwargs = append.call_args
        assert args[1] == request_context.client_number
        assert args[3] is False
        assert kwargs["advisor_id"] == request_context.advisor_id

    def test_pacing_delay_within_range(self, request_context, events, persisted):
        sleep = AsyncMock()
        asyncio.run(
            _dispatcher(_gateway(events), sleep=sleep).dispatch(Mock(), "Hola", request_context, audio_enabled=False)
        )

        delay = sleep.await_args.args[0]
        assert 15 <= delay <= 25

    def test_gateway_failure_is_recorded(self, request_context, events, persisted):
        _, update_sid = persisted
        gateway = _gateway(events, failures=[True])

        outcome = asyncio.run(_dispatcher(gateway).dispatch(Mock(), "Hola", request_context, audio_enabled=False))

        assert outcome.sent_sids == []
        assert len(outcome.failures) == 1
        assert outcome.ok is False
        update_sid.assert_not_called()

    def test_partial_failure_continues_with_next_segment(self, request_context, events, persisted):
        gateway = _gateway(events, failures=[True, False])
        text = "a" * 600 + "\n\n" + "b" * 600

        outcome = asyncio.run(_dispatcher(gateway).dispatch(Mock(), text, request_context, audio_enabled=False))

        assert outcome.sent_sids == ["SM1"]
        assert len(outcome.failures) == 1

    def test_blank_reply_sends_nothing(self, request_context, events, persisted):
        gateway = _gateway(events)
        outcome = asyncio.run(_dispatcher(gateway).dispatch(Mock(), "  ", request_context, audio_enabled=False))
        assert outcome.sent_sids == []
        gateway.send_message.assert_not_awaited()

    def test_audio_preference_read_when_not_given(self, request_context, events, persisted):
        with patch(
            "commerce_channel.services.dispatch_service.get_audio_preference", return_value=False
        ) as preference:
            asyncio.run(_dispatcher(_gateway(events)).dispatch(Mock(), "Hola", request_context))

        preference.assert_called_once()


class TestDispatchSpeech:
    def test_speech_reply_sends_audio(self, request_context, events, persisted):
        append, _ = persisted
        gateway = _gateway(events)
        storage = _storage()

        outcome = asyncio.run(
            _dispatcher(gateway, storage=storage).dispatch(
                Mock(), "Claro que sí, con gusto", request_context, audio_enabled=True
            )
        )

        assert outcome.spoken is True
        assert outcome.sent_sids == ["SM1"]
        assert append.call_count == 1
        kwargs = gateway.send_message.await_args.kwargs
        assert kwargs["body"] == AUDIO_MESSAGE_BODY
        assert kwargs["media_urls"] == [AUDIO_URL]
        assert storage.upload.await_args.kwargs["folder"] == "audios"
        storage.link.assert_called_once_with(AUDIO_PATH)
        assert append.messages[0].media_url == AUDIO_PATH

    def test_synthesis_failure_falls_back_to_text(self, request_context, events, persisted):
        append, _ = persisted
        gateway = _gateway(events)
        synthesize = AsyncMock(side_effect=SpeechSynthesisFailed("quota"))

        outcome = asyncio.run(
            _dispatcher(gateway, synthesize=synthesize).dispatch(
                Mock(), "Claro que sí", request_context, audio_enabled=True
            )
        )

        assert outcome.spoken is False
        assert outcome.sent_sids == ["SM1"]
        assert append.call_count == 1
        assert gateway.send_message.await_args.kwargs["body"] == "Claro que sí"

    def test_upload_failure_falls_back_to_text(self, request_context, events, persisted):
        storage = Mock()
        storage.upload = AsyncMock(side_effect=UploadFailed("no secret"))
        gateway = _gateway(events)

        outcome = asyncio.run(
            _dispatcher(gateway, storage=storage).dispatch(Mock(), "Claro que sí", request_context, audio_enabled=True)
        )

        assert outcome.sent_sids == ["SM1"]
        assert gateway.send_message.await_args.kwargs["body"] == "Claro que sí"

    def test_audio_send_failure_falls_back_without_second_delay(self, request_context, events, persisted):
        gateway = _gateway(events, failures=[True, False])
        sleep = AsyncMock()

        outcome = asyncio.run(
            _dispatcher(gateway, sleep=sleep).dispatch(Mock(), "Claro que sí", request_context, audio_enabled=True)
        )

        assert outcome.sent_sids == ["SM1"]
        assert outcome.failures == []
        assert sleep.await_count == 1
        assert [body for kind, body in events if kind == "send"] == [AUDIO_MESSAGE_BODY, "Claro que sí"]
