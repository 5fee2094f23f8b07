import re
import secrets
import string
from typing import Optional

from backends.base import KVBackend
from constants import DEFAULT_TTL_SECONDS, PASTE_ID_ATTEMPTS, PASTE_ID_LENGTH
from errors import BackendError, InvalidInput, KeyNotFound, NotFound, ServiceError
from logging_config import get_logger
from policy import enforce_size, resolve_ttl
from redis_keys import PASTE_KEY

logger = get_logger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits + "_-"
PASTE_ID_PATTERN = re.compile(rf"[A-Za-z0-9_-]{{{PASTE_ID_LENGTH}}}")


def generate_paste_id(length: int = PASTE_ID_LENGTH) -> str:
    """Generate a URL-safe opaque id."""
    return ''.join(secrets.choice(ID_ALPHABET) for _ in range(length))


def is_paste_id(value: str) -> bool:
    """Only ids this store could have issued map onto a key; relay keys never do."""
    return bool(value) and PASTE_ID_PATTERN.fullmatch(value) is not None


class PasteStore:
    """Stores client-encrypted blobs under fresh opaque ids."""

    def __init__(self, backend: KVBackend):
        self.backend = backend

    async def store(self, ciphertext: str, ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS) -> str:
        if not isinstance(ciphertext, str) or not ciphertext:
            raise InvalidInput("ciphertext must be a non-empty string")

        ttl = resolve_ttl(ttl_seconds)
        enforce_size(ciphertext, ttl)

        for _ in range(PASTE_ID_ATTEMPTS):
            paste_id = generate_paste_id()
            written = await self.backend.set_with_ttl(
                PASTE_KEY.format(paste_id=paste_id), ciphertext, ttl, only_if_absent=True
            )
            if written:
                logger.info(f"Stored paste {paste_id} ({len(ciphertext)} chars, ttl={ttl})")
                return paste_id
            logger.warning(f"Paste id collision on {paste_id}, regenerating")
        raise BackendError("Could not allocate a paste id")

    async def retrieve(self, paste_id: str) -> str:
        if not paste_id:
            raise InvalidInput("Missing id")
        if not is_paste_id(paste_id):
            logger.info(f"Rejected lookup of non-paste id {paste_id!r}")
            raise NotFound()
        try:
            return await self.backend.get(PASTE_KEY.format(paste_id=paste_id))
        except KeyNotFound:
            logger.debug(f"Paste {paste_id} not found or expired")
            raise NotFound()

    async def delete(self, paste_id: str) -> None:
        if not is_paste_id(paste_id):
            return
        try:
            removed = await self.backend.delete(PASTE_KEY.format(paste_id=paste_id))
            logger.debug(f"Deleted paste {paste_id}: {removed}")
        except (KeyNotFound, ServiceError) as e:
            logger.warning(f"Failed to delete paste {paste_id}: {e}")
