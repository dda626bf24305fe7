from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from commerce_channel.services.media_storage import get_media_storage

router = APIRouter()


@router.get("/media/{media_path:path}")
async def serve_media(media_path: str, expires: int, sig: str):
    """Serve stored media via signed URLs."""
    normalized_path = (media_path or "").strip().lstrip("/")
    if not normalized_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing media path")

    storage = get_media_storage()
    if not storage.verify(normalized_path, expires, sig):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")

    target_path, content_type = storage.resolve(normalized_path)
    if target_path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")

    return FileResponse(target_path, media_type=content_type)
