from typing import Optional

from fastapi import Request

from backends.base import KVBackend
from backends.redis_local import LocalRedisClient, RedisBackend
from backends.upstash import UpstashBackend
import constants
from errors import BackendError
from logging_config import get_logger

logger = get_logger(__name__)


async def create_backend(mode: Optional[str] = None) -> KVBackend:
    """Build the KV backend selected by ``KV_MODE`` and open its connection."""
    mode = (mode or constants.KV_MODE).lower()
    logger.info(f"Initializing KV backend in {mode} mode")

    if mode == "remote":
        return UpstashBackend(constants.UPSTASH_REDIS_REST_URL, constants.UPSTASH_REDIS_REST_TOKEN)
    if mode == "local":
        handle = LocalRedisClient(constants.REDIS_URL)
        await handle.connect()
        return RedisBackend(handle)
    raise BackendError(f"Unknown KV_MODE: {mode}")


def get_backend(request: Request) -> KVBackend:
    return request.app.state.backend
