from typing import Optional


class ChannelError(Exception):
    code = "channel_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class MediaUnavailable(ChannelError):
    """Gateway never served the attachment (non-retryable status or retries exhausted)."""

    code = "media_unavailable"

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 0):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


class EmptyMedia(ChannelError):
    code = "empty_media"


class InvalidSpreadsheet(ChannelError):
    code = "invalid_spreadsheet"


class TranscriptionFailed(ChannelError):
    code = "transcription_failed"


class SpeechSynthesisFailed(ChannelError):
    code = "speech_synthesis_failed"


class UploadFailed(ChannelError):
    code = "upload_failed"


class ConversationConflict(ChannelError):
    code = "conversation_conflict"


class GatewaySendFailed(ChannelError):
    code = "gateway_send_failed"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StatusCallbackOrphan(ChannelError):
    code = "status_callback_orphan"


class AudioConversionFailed(ChannelError):
    code = "audio_conversion_failed"
