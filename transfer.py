"""Chunked file transfer over an established peer data channel.

Wire format (JSON text frames):
- ``{"type": "file-start", "id", "name", "size", "mimeType", "totalChunks", "timestamp"}``
- ``{"type": "file-chunk", "id", "chunkIndex", "chunkData": [bytes as ints], "isLast"}``
"""
import asyncio
import json
import secrets
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from constants import BUFFER_POLL_INTERVAL, FILE_CHUNK_SIZE, MAX_BUFFERED_AMOUNT, TRANSFER_TIMEOUT_MS
from logging_config import get_logger
from relay import now_ms

logger = get_logger(__name__)


class DataChannel(Protocol):
    ready_state: str
    buffered_amount: int

    def send(self, data: str) -> None:
        ...


async def wait_for_buffer_space(channel: DataChannel, max_buffered: int = MAX_BUFFERED_AMOUNT, interval: float = BUFFER_POLL_INTERVAL) -> None:
    """Return once the channel has drained below ``max_buffered``.

    Sleeps in short steps instead of blocking so the event loop keeps running.
    A channel that is not open returns immediately; the send will fail there.
    """
    while channel.ready_state == "open" and (channel.buffered_amount or 0) > max_buffered:
        await asyncio.sleep(interval)


async def send_file(
    channel: DataChannel,
    name: str,
    content: bytes,
    mime_type: str = "application/octet-stream",
    chunk_size: int = FILE_CHUNK_SIZE,
    max_buffered: int = MAX_BUFFERED_AMOUNT,
    on_progress: Optional[Callable[[int], None]] = None,
) -> str:
    transfer_id = secrets.token_hex(6)
    total_chunks = max(1, -(-len(content) // chunk_size))

    channel.send(json.dumps({
        "type": "file-start",
        "id": transfer_id,
        "name": name,
        "size": len(content),
        "mimeType": mime_type,
        "totalChunks": total_chunks,
        "timestamp": now_ms(),
    }))

    for index in range(total_chunks):
        chunk = content[index * chunk_size:(index + 1) * chunk_size]
        await wait_for_buffer_space(channel, max_buffered)
        channel.send(json.dumps({
            "type": "file-chunk",
            "id": transfer_id,
            "chunkIndex": index,
            "chunkData": list(chunk),
            "isLast": index == total_chunks - 1,
        }))
        if on_progress:
            on_progress(round((index + 1) * 100 / total_chunks))

    logger.info(f"Sent file {name} ({len(content)} bytes, {total_chunks} chunks) as transfer {transfer_id}")
    return transfer_id


@dataclass
class ReceivedFile:
    id: str
    name: str
    size: int
    mime_type: str
    content: bytes


@dataclass
class _PendingFile:
    name: str
    size: int
    mime_type: str
    total_chunks: int
    updated_at: int
    chunks: dict = field(default_factory=dict)


class ChunkAssembler:
    """Rebuilds files from ``file-start``/``file-chunk`` frames.

    Transfers that stop receiving chunks are dropped after ``timeout_ms``.
    Frames that cannot be parsed are logged and ignored.
    """

    def __init__(self, timeout_ms: int = TRANSFER_TIMEOUT_MS, clock: Callable[[], int] = now_ms):
        self.timeout_ms = timeout_ms
        self.clock = clock
        self._pending: dict[str, _PendingFile] = {}

    def _expire(self, now: int) -> None:
        for transfer_id in [t for t, p in self._pending.items() if now - p.updated_at > self.timeout_ms]:
            logger.warning(f"Dropping stalled transfer {transfer_id}")
            del self._pending[transfer_id]

    def feed(self, frame: str) -> Optional[ReceivedFile]:
        """Consume one frame; returns the file once its last chunk arrives."""
        now = self.clock()
        self._expire(now)
        try:
            return self._consume(json.loads(frame), now)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring malformed transfer frame: {e!r}")
            return None

    def _consume(self, message: dict, now: int) -> Optional[ReceivedFile]:
        kind = message.get("type")

        if kind == "file-start":
            transfer_id = message["id"]
            total_chunks = int(message["totalChunks"])
            if total_chunks < 1:
                raise ValueError(f"totalChunks must be positive, got {total_chunks}")
            if transfer_id in self._pending:
                logger.warning(f"Transfer {transfer_id} restarted")
            self._pending[transfer_id] = _PendingFile(
                name=str(message["name"]),
                size=int(message["size"]),
                mime_type=message.get("mimeType") or "application/octet-stream",
                total_chunks=total_chunks,
                updated_at=now,
            )
            return None

        if kind != "file-chunk":
            return None

        transfer_id = message["id"]
        pending = self._pending.get(transfer_id)
        if pending is None:
            logger.warning(f"Chunk for unknown transfer {transfer_id}")
            return None
        index = int(message["chunkIndex"])
        if not 0 <= index < pending.total_chunks:
            raise ValueError(f"chunk {index} out of range for transfer {transfer_id}")
        pending.chunks[index] = bytes(message["chunkData"])
        pending.updated_at = now
        if len(pending.chunks) < pending.total_chunks:
            return None

        del self._pending[transfer_id]
        content = b"".join(pending.chunks[i] for i in range(pending.total_chunks))
        if len(content) != pending.size:
            logger.warning(f"Transfer {transfer_id} size mismatch: {len(content)} != {pending.size}")
        return ReceivedFile(transfer_id, pending.name, pending.size, pending.mime_type, content)
