import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from imagebed.auth import get_settings, require_session
from imagebed.config import Settings
from imagebed.dependencies import get_object_store, get_rate_limiter
from imagebed.errors import StorageError, UploadRejected
from imagebed.models import PresignRequest, PresignResponse
from imagebed.presign import presign_batch, validate_batch
from imagebed.ratelimit import RateLimiter, get_client_identifier
from imagebed.storage import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"], dependencies=[Depends(require_session)])


@router.post("/presign", response_model=PresignResponse)
async def presign_uploads(
    body: PresignRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    store: ObjectStore = Depends(get_object_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    try:
        validate_batch(body.files, settings)
    except UploadRejected as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    client_id = get_client_identifier(request)
    rate = limiter.check(client_id, settings.UPLOAD_RATE_LIMIT, settings.UPLOAD_RATE_WINDOW_MS)
    if not rate.allowed:
        logger.warning("Upload rate limit hit for %s", client_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many uploads, try again later",
        )

    try:
        items = await presign_batch(store, body.files)
    except StorageError as e:
        raise HTTPException(status_code=500, detail={"message": e.message, "detail": e.detail})

    logger.info("Presigned %d uploads for %s", len(items), client_id)
    return PresignResponse(items=items, remaining=rate.remaining)
