import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from imagebed.auth import require_session
from imagebed.dependencies import get_object_store, get_order_store
from imagebed.errors import OrderStoreError, StorageError
from imagebed.listing import list_images
from imagebed.models import (
    ArrangedImagesResponse,
    DeleteRequest,
    ImageListResponse,
    MoveRequest,
    OkResponse,
    OrderDocument,
    OrderSaveRequest,
)
from imagebed.order_store import OrderStore
from imagebed.ordering import merge_groups, move_key
from imagebed.storage import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["images"], dependencies=[Depends(require_session)])


def storage_failure(error: StorageError) -> HTTPException:
    return HTTPException(status_code=500, detail={"message": error.message, "detail": error.detail})


@router.get("", response_model=ImageListResponse)
async def get_images(
    cursor: Optional[str] = Query(None),
    limit: int = Query(24, ge=1, le=50),
    search: Optional[str] = Query(None, description="Substring of a filename or tag"),
    tag: Optional[str] = Query(None, description="Exact tag"),
    store: ObjectStore = Depends(get_object_store),
):
    try:
        return await list_images(store, limit=limit, cursor=cursor, search=search, tag=tag)
    except StorageError as e:
        raise storage_failure(e)


@router.get("/arranged", response_model=ArrangedImagesResponse)
async def get_arranged_images(
    cursor: Optional[str] = Query(None),
    limit: int = Query(24, ge=1, le=50),
    search: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    store: ObjectStore = Depends(get_object_store),
    order_store: OrderStore = Depends(get_order_store),
):
    """One listing page grouped by upload day and arranged by the saved order."""
    try:
        page = await list_images(store, limit=limit, cursor=cursor, search=search, tag=tag)
        saved = await order_store.load()
    except StorageError as e:
        raise storage_failure(e)

    groups = merge_groups(saved.groups.model_dump(), page.items, datetime.now().astimezone())
    return ArrangedImagesResponse(
        groups=groups,
        has_more=page.has_more,
        next_cursor=page.next_cursor,
        backend=saved.backend,
    )


@router.post("/delete", response_model=OkResponse)
async def delete_images(
    body: DeleteRequest,
    store: ObjectStore = Depends(get_object_store),
    order_store: OrderStore = Depends(get_order_store),
):
    try:
        await store.delete_many(body.keys)
    except StorageError as e:
        raise storage_failure(e)
    logger.info("Deleted %d images", len(body.keys))

    # best effort once the objects are gone
    try:
        await order_store.prune(body.keys)
    except OrderStoreError as e:
        logger.warning("Pruning deleted keys from the order failed: %s (%s)", e.message, e.detail)
    return OkResponse()


@router.get("/order", response_model=OrderDocument)
async def get_order(order_store: OrderStore = Depends(get_order_store)):
    try:
        return await order_store.load()
    except OrderStoreError as e:
        raise storage_failure(e)


@router.post("/order", response_model=OrderDocument)
async def save_order(body: OrderSaveRequest, order_store: OrderStore = Depends(get_order_store)):
    try:
        return await order_store.save(body.groups.model_dump())
    except OrderStoreError as e:
        raise storage_failure(e)


@router.post("/order/move", response_model=OrderDocument)
async def move_in_order(body: MoveRequest, order_store: OrderStore = Depends(get_order_store)):
    """Moves one key onto another key's position within a group and saves."""
    try:
        current = await order_store.load()
        groups = current.groups.model_dump()
        groups[body.group] = move_key(groups[body.group], body.key, body.target)
        return await order_store.save(groups)
    except OrderStoreError as e:
        raise storage_failure(e)
