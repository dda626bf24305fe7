import asyncio
import hashlib
import hmac
import json
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from uuid import uuid4

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import UploadFailed

logger = get_logger("media_storage")

METADATA_SUFFIX = ".meta.json"


def build_object_name(prefix: str, extension: str) -> str:
    """`<prefix>_<epoch millis>_<8 hex>.<ext>`: unique enough for concurrent uploads."""
    millis = int(time.time() * 1000)
    ext = extension.lstrip(".") or "bin"
    return f"{prefix}_{millis}_{uuid4().hex[:8]}.{ext}"


def _normalize_media_path(path: str) -> str:
    normalized = (path or "").strip().lstrip("/")
    return normalized.replace("\\", "/")


def _sign_media_path(path: str, expires: int, secret: str) -> str:
    payload = f"{path}:{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class MediaStorage:
    """Durable file storage keyed by relative path.

    Callers persist the path returned by `upload`. Public URLs served by
    `/media` are signed from that path whenever a link is handed out, so a
    stored reference never expires.
    """

    def __init__(
        self,
        base_dir: Optional[str] = None,
        *,
        public_base_url: Optional[str] = None,
        signing_secret: Optional[str] = None,
        url_ttl_seconds: Optional[int] = None,
    ):
        self.base_dir = Path(base_dir or settings.media_storage_dir)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.signing_secret = signing_secret if signing_secret is not None else settings.media_signing_secret
        self.url_ttl_seconds = url_ttl_seconds if url_ttl_seconds is not None else settings.media_url_ttl_seconds

    def _safe_path(self, relative_path: str) -> Path:
        base = self.base_dir.resolve()
        target = (base / _normalize_media_path(relative_path)).resolve()
        if base not in target.parents:
            raise UploadFailed(f"Invalid media path: {relative_path}")
        return target

    def _write(self, relative_path: str, data: bytes, metadata: dict) -> None:
        target = self._safe_path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        target.with_name(target.name + METADATA_SUFFIX).write_text(
            json.dumps(metadata, ensure_ascii=False, default=str), encoding="utf-8"
        )

    def signed_url(self, relative_path: str, *, ttl_seconds: Optional[int] = None) -> str:
        if not self.signing_secret:
            raise UploadFailed("MEDIA_SIGNING_SECRET not configured")
        ttl = ttl_seconds if ttl_seconds is not None else self.url_ttl_seconds
        expires = int(time.time()) + max(int(ttl), 60)
        normalized_path = _normalize_media_path(relative_path)
        signature = _sign_media_path(normalized_path, expires, self.signing_secret)
        quoted_path = quote(normalized_path, safe="/")
        return f"{self.public_base_url}/media/{quoted_path}?expires={expires}&sig={signature}"

    def link(self, reference: Optional[str], *, ttl_seconds: Optional[int] = None) -> Optional[str]:
        """Public URL for a persisted media reference; external URLs pass through."""
        if not reference:
            return None
        if reference.startswith(("http://", "https://")):
            return reference
        return self.signed_url(reference, ttl_seconds=ttl_seconds)

    def verify(self, relative_path: str, expires: int, signature: str) -> bool:
        if not self.signing_secret or not signature:
            return False
        if expires < int(time.time()):
            return False
        expected = _sign_media_path(_normalize_media_path(relative_path), expires, self.signing_secret)
        return hmac.compare_digest(expected, signature)

    def resolve(self, relative_path: str) -> tuple[Optional[Path], Optional[str]]:
        """Return the stored file and its content type, or (None, None)."""
        try:
            target = self._safe_path(relative_path)
        except UploadFailed:
            return None, None
        if not target.is_file():
            return None, None
        content_type = None
        meta_path = target.with_name(target.name + METADATA_SUFFIX)
        if meta_path.is_file():
            try:
                content_type = json.loads(meta_path.read_text(encoding="utf-8")).get("content_type")
            except (OSError, ValueError):
                content_type = None
        return target, content_type

    async def upload(
        self,
        data: bytes,
        *,
        folder: str,
        file_name: str,
        content_type: str,
        metadata: Optional[dict] = None,
    ) -> str:
        """Store `data` under `folder/file_name` and return the stored path.

        Raises UploadFailed on any storage error, and before writing anything
        when no signing secret is configured to serve the file later.
        """
        if not self.signing_secret:
            raise UploadFailed("MEDIA_SIGNING_SECRET not configured")
        relative_path = f"{folder.strip('/')}/{re.sub(r'[^a-zA-Z0-9_.-]', '', file_name)}"
        record = {
            "content_type": content_type,
            "size_bytes": len(data),
            "sha256": hashlib.sha256(data).hexdigest(),
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
            "custom": metadata or {},
        }
        try:
            await asyncio.to_thread(self._write, relative_path, data, record)
        except OSError as exc:
            raise UploadFailed(f"Failed to store {relative_path}: {exc}") from exc

        logger.info(
            "Media stored",
            extra={"context": {"path": relative_path, "size_bytes": len(data), "content_type": content_type}},
        )
        return relative_path


_media_storage: Optional[MediaStorage] = None


def get_media_storage() -> MediaStorage:
    global _media_storage
    if _media_storage is None:
        _media_storage = MediaStorage()
    return _media_storage
