from enum import Enum
from typing import Optional


class MediaKind(str, Enum):
    AUDIO = "audio"
    IMAGE = "image"
    VCARD = "vcard"
    DOCUMENT = "document"
    NONE = "none"


VCARD_MIME_TYPES = ("text/x-vcard", "text/vcard")

AUDIO_EXTENSIONS = (
    (("mpeg", "mp3"), "mp3"),
    (("wav",), "wav"),
    (("m4a",), "m4a"),
    (("aac",), "aac"),
    (("ogg",), "ogg"),
    (("webm",), "webm"),
)
AUDIO_DEFAULT_EXTENSION = "ogg"

IMAGE_EXTENSIONS = (
    (("png",), "png"),
    (("gif",), "gif"),
    (("webp",), "webp"),
    (("jpeg", "jpg"), "jpg"),
    (("bmp",), "bmp"),
    (("tiff",), "tiff"),
)
IMAGE_DEFAULT_EXTENSION = "jpg"

# Order matters: the first rule whose markers appear in the MIME type wins.
DOCUMENT_RULES = (
    (("pdf",), "pdf", "PDF"),
    (("spreadsheetml.sheet", "vnd.ms-excel", "excel", "sheet"), "xlsx", "Excel"),
    (("wordprocessingml.document", "word"), "docx", "Word"),
    (("presentationml.presentation", "vnd.ms-powerpoint"), "pptx", "PowerPoint"),
    (("video",), "mp4", "Video"),
    (("image",), None, "Image"),
    (("text/plain",), "txt", "Text"),
    (("text/csv", "comma-separated-values"), "csv", "CSV"),
    (("application/zip",), "zip", "ZIP"),
    (("application/x-rar", "application/vnd.rar"), "rar", "RAR"),
    (("audio",), None, "Audio"),
)

SPREADSHEET_MARKERS = ("excel", "spreadsheet")
ZIP_SIGNATURE = b"\x50\x4b"


def _normalize(mime: Optional[str]) -> str:
    return (mime or "").strip().lower()


def _subtype(mime: str, default: str) -> str:
    parts = mime.split(";")[0].split("/")
    if len(parts) > 1 and parts[1]:
        return parts[1]
    return default


def classify_media(mime: Optional[str], media_url: Optional[str] = None) -> MediaKind:
    """Map a gateway MIME type onto the branch that processes it."""
    normalized = _normalize(mime)
    if not normalized:
        return MediaKind.NONE
    if "audio" in normalized:
        return MediaKind.AUDIO
    if "image" in normalized:
        return MediaKind.IMAGE
    if any(vcard in normalized for vcard in VCARD_MIME_TYPES):
        return MediaKind.VCARD
    if media_url:
        return MediaKind.DOCUMENT
    return MediaKind.NONE


def is_spreadsheet(mime: Optional[str]) -> bool:
    normalized = _normalize(mime)
    return any(marker in normalized for marker in SPREADSHEET_MARKERS)


def _match_extension(normalized: str, table, default: str) -> str:
    for markers, extension in table:
        if any(marker in normalized for marker in markers):
            return extension
    return default


def extension_for(mime: Optional[str], kind: Optional[MediaKind] = None) -> str:
    """File extension (without dot) for a MIME type within its branch."""
    normalized = _normalize(mime)
    kind = kind or classify_media(normalized, media_url="-")

    if kind == MediaKind.AUDIO:
        return _match_extension(normalized, AUDIO_EXTENSIONS, AUDIO_DEFAULT_EXTENSION)
    if kind == MediaKind.IMAGE:
        return _match_extension(normalized, IMAGE_EXTENSIONS, IMAGE_DEFAULT_EXTENSION)
    if kind == MediaKind.VCARD:
        return "vcf"

    for markers, extension, label in DOCUMENT_RULES:
        if any(marker in normalized for marker in markers):
            if extension:
                return extension
            return _subtype(normalized, "jpg" if label == "Image" else "mp3")
    return _subtype(normalized, "bin")


def detected_file_type(mime: Optional[str]) -> str:
    normalized = _normalize(mime)
    for markers, _extension, label in DOCUMENT_RULES:
        if any(marker in normalized for marker in markers):
            return label
    return "Generic"


def has_zip_signature(data: bytes) -> bool:
    return data[:2] == ZIP_SIGNATURE
