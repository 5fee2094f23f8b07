from abc import ABC, abstractmethod
from typing import List, Optional


class KVBackend(ABC):
    """Uniform key-value contract shared by the local and remote stores.

    Values cross this boundary as plain logical strings. Encoding quirks of a
    particular store stay inside its implementation.

    Failure semantics:
    - a missing or expired key raises ``errors.KeyNotFound``
    - any transport or driver failure raises ``errors.BackendError``
    """

    mode: str = ""

    @abstractmethod
    async def get(self, key: str) -> str:
        ...

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[int], only_if_absent: bool = False) -> bool:
        """Store ``value``; ``ttl_seconds=None`` means no expiry.

        Returns False only when ``only_if_absent`` is set and the key exists.
        """

    @abstractmethod
    async def compare_and_set(self, key: str, expected: Optional[str], value: str, ttl_seconds: Optional[int]) -> bool:
        """Write ``value`` only if the current value equals ``expected``.

        ``expected=None`` requires the key to be absent. Returns whether the
        write happened.
        """

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete ``key`` only if its current value equals ``expected``."""

    @abstractmethod
    async def delete(self, key: str) -> int:
        ...

    @abstractmethod
    async def keys_by_pattern(self, pattern: str) -> List[str]:
        """Best-effort glob scan; may return an empty list."""

    async def close(self) -> None:
        return None
