from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from backend import get_backend
from backends.base import KVBackend
from cipher import open_paste
from errors import InvalidInput
from logging_config import get_logger
from paste_store import PasteStore
from schemas.paste import RetrieveResponse, StoreRequest, StoreResponse

logger = get_logger(__name__)

paste_router = APIRouter(tags=["paste"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


def get_paste_store(backend: KVBackend = Depends(get_backend)) -> PasteStore:
    return PasteStore(backend)


@paste_router.post("/store", response_model=StoreResponse)
async def store_paste(body: StoreRequest, request: Request, store: PasteStore = Depends(get_paste_store)):
    client_host = request.client.host if request.client else "unknown"
    logger.debug(f"Store request from {client_host}, ttl={body.ttl_seconds}")
    paste_id = await store.store(body.ciphertext, body.ttl_seconds)
    return StoreResponse(id=paste_id)


@paste_router.get("/get", response_model=RetrieveResponse)
async def get_paste(id: Optional[str] = Query(None), store: PasteStore = Depends(get_paste_store)):
    if not id:
        raise InvalidInput("Missing id query parameter")
    ciphertext = await store.retrieve(id)
    return RetrieveResponse(ciphertext=ciphertext)


@paste_router.get("/raw/{paste_id}", response_class=PlainTextResponse)
async def get_raw_paste(paste_id: str, key: Optional[str] = Query(None), store: PasteStore = Depends(get_paste_store)):
    """Decrypt server-side and return the plaintext.

    Only for links where the user chose to expose the key in the query string;
    the response is never cached.
    """
    if not paste_id:
        raise InvalidInput("Missing ID parameter")
    if not key:
        raise InvalidInput("Missing key parameter")

    stored = await store.retrieve(paste_id)
    plaintext = open_paste(stored, key)
    logger.info(f"Served raw paste {paste_id}")
    return PlainTextResponse(plaintext, headers=NO_STORE_HEADERS)
