from fastapi import APIRouter, Depends, HTTPException, Query

from messenger.config import settings
from messenger.dependencies import CurrentUser, get_current_user, get_document_store
from messenger.services.document_store import DocumentStore

router = APIRouter(prefix="/api/debug", tags=["debug"])


@router.get("/store")
async def read_store(
    path: str = Query(..., description="Slash-separated document path"),
    current_user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """Debug route returning the raw stored value at a path. Only enabled in DEBUG mode."""
    if not settings.DEBUG:
        raise HTTPException(status_code=404, detail="Debug routes disabled")

    value, etag = await store.get_with_etag(path)
    return {"path": path, "etag": etag, "value": value}
