import json
from typing import Any, List, Optional

import httpx

from backends.base import KVBackend
from constants import KV_TIMEOUT_SECONDS, TRANSPORT_BASE_DELAY, TRANSPORT_MAX_RETRIES
from errors import BackendError, CorruptData, KeyNotFound
from logging_config import get_logger
from resilience import retry_with_backoff

logger = get_logger(__name__)

# ARGV: has_expected ("1"/"0"), expected, new value, ttl seconds (0 = none)
COMPARE_AND_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
  if current ~= ARGV[2] then return 0 end
elseif current then
  return 0
end
if tonumber(ARGV[4]) > 0 then
  redis.call('SET', KEYS[1], ARGV[3], 'EX', ARGV[4])
else
  redis.call('SET', KEYS[1], ARGV[3])
end
return 1
"""

COMPARE_AND_DELETE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


def _encode(value: str) -> str:
    return json.dumps(value)


def _decode(key: str, stored: Any) -> str:
    # Values are JSON-stringified before they are sent, so a read has to
    # undo the transport envelope and then the stored string.
    try:
        value = json.loads(stored)
    except (TypeError, ValueError) as e:
        raise CorruptData(f"Malformed data in storage for {key}") from e
    if not isinstance(value, str):
        raise CorruptData(f"Stored value for {key} is not a string")
    return value


class UpstashBackend(KVBackend):
    """Remote store speaking the Upstash REST protocol.

    Each command is POSTed as a JSON array to the base URL and answered with
    ``{"result": ...}`` or ``{"error": ...}``.
    """

    mode = "remote"

    def __init__(self, url: str, token: str, client: Optional[httpx.AsyncClient] = None):
        if not url or not token:
            raise BackendError("Upstash Redis credentials are missing")
        self.url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=KV_TIMEOUT_SECONDS,
        )

    @retry_with_backoff(
        max_retries=TRANSPORT_MAX_RETRIES,
        base_delay=TRANSPORT_BASE_DELAY,
        exceptions=(httpx.TransportError,),
    )
    async def _post(self, command: list) -> httpx.Response:
        return await self._client.post("/", json=command)

    async def _command(self, *command: Any, key: str = "") -> Any:
        name = command[0]
        key = key or (str(command[1]) if len(command) > 1 else "")
        try:
            response = await self._post([str(part) for part in command])
        except httpx.TransportError as e:
            logger.error(f"Upstash {name} transport failure for {key}: {e}", exc_info=True)
            raise BackendError(f"Remote store {name} failed") from e

        if response.status_code == 404:
            raise KeyNotFound(key)
        if not response.is_success:
            logger.error(f"Upstash {name} failed ({response.status_code}) for {key}: {response.text}")
            raise BackendError(f"Remote store {name} failed ({response.status_code})")

        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"Remote store {name} returned invalid JSON") from e
        if "error" in body:
            logger.error(f"Upstash {name} error for {key}: {body['error']}")
            raise BackendError(f"Remote store {name} failed: {body['error']}")
        return body.get("result")

    async def get(self, key: str) -> str:
        result = await self._command("GET", key)
        if result is None:
            raise KeyNotFound(key)
        return _decode(key, result)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[int], only_if_absent: bool = False) -> bool:
        command = ["SET", key, _encode(value)]
        if ttl_seconds:
            command += ["EX", ttl_seconds]
        if only_if_absent:
            command.append("NX")
        result = await self._command(*command)
        if result is None and only_if_absent:
            return False
        if result != "OK":
            raise BackendError(f"Unexpected SET result: {result}")
        return True

    async def compare_and_set(self, key: str, expected: Optional[str], value: str, ttl_seconds: Optional[int]) -> bool:
        has_expected = "0" if expected is None else "1"
        result = await self._command(
            "EVAL", COMPARE_AND_SET_SCRIPT, 1, key,
            has_expected, _encode(expected) if expected is not None else "",
            _encode(value), ttl_seconds or 0,
            key=key,
        )
        return result == 1

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        result = await self._command("EVAL", COMPARE_AND_DELETE_SCRIPT, 1, key, _encode(expected), key=key)
        return result == 1

    async def delete(self, key: str) -> int:
        return int(await self._command("DEL", key) or 0)

    async def keys_by_pattern(self, pattern: str) -> List[str]:
        return list(await self._command("KEYS", pattern) or [])

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Upstash HTTP client closed")
