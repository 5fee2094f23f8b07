"""Client side of the LAN signaling relay.

Talks to ``/lan/signal`` over httpx and keeps the pull loop a device runs
while it is in a room. Peer connection setup itself is left to the caller,
which receives every delivered message through ``on_message``.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from constants import POLL_FAILURE_THRESHOLD, POLL_INTERVAL_SECONDS, STALE_DEVICE_MS
from logging_config import get_logger
from relay import now_ms
from schemas.rooms import Device, Room, SignalMessage, SignalType

logger = get_logger(__name__)

SIGNAL_PATH = "/lan/signal"


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SignalClientError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def should_initiate(local_device_id: str, remote_device_id: str) -> bool:
    """Exactly one side of a pair starts the peer connection: the smaller id."""
    return local_device_id < remote_device_id


class SignalClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        on_message: Optional[Callable[[SignalMessage], Awaitable[None]]] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        failure_threshold: int = POLL_FAILURE_THRESHOLD,
    ):
        self.http = http
        self.on_message = on_message
        self.poll_interval = poll_interval
        self.failure_threshold = failure_threshold

        self.room: Optional[Room] = None
        self.device: Optional[Device] = None
        self.cursor = 0
        self.status = ConnectionStatus.IDLE
        self.error: Optional[str] = None

        self._failures = 0
        self._generation = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._poll_lock = asyncio.Lock()

    async def _request(self, method: str, params: Optional[dict] = None, json: Optional[dict] = None) -> dict:
        response = await self.http.request(method, SIGNAL_PATH, params=params, json=json)
        if not response.is_success:
            try:
                message = response.json().get("error", response.text)
            except ValueError:
                message = response.text
            raise SignalClientError(response.status_code, message)
        return response.json()

    async def create_room(self) -> Room:
        data = await self._request("POST", json={"action": "create-room"})
        room = Room.model_validate(data["room"])
        logger.info(f"Created room {room.id}")
        return room

    async def join_room(self, room_id: str, device_name: str, device_type: str) -> Device:
        if self.room is not None:
            # switching rooms: stop the old loop before anything else changes
            await self.leave_room()

        self.status = ConnectionStatus.CONNECTING
        try:
            data = await self._request(
                "POST",
                json={"action": "join-room", "roomId": room_id, "deviceName": device_name, "deviceType": device_type},
            )
        except (httpx.HTTPError, SignalClientError) as e:
            self.status = ConnectionStatus.ERROR
            self.error = str(e)
            raise

        self.room = Room.model_validate(data["room"])
        self.device = Device.model_validate(data["device"])
        self.cursor = 0
        self._failures = 0
        self.error = None
        logger.info(f"Joined room {room_id} as {self.device.id} ({device_name})")
        self.start_polling()
        return self.device

    async def send_signal(self, message_type: SignalType, to_device: str, data: Any) -> None:
        if self.room is None or self.device is None:
            raise RuntimeError("Not in a room")
        await self._request(
            "POST",
            json={
                "action": "signal",
                "roomId": self.room.id,
                "type": SignalType(message_type).value,
                "fromDevice": self.device.id,
                "toDevice": to_device,
                "data": data,
            },
        )

    async def poll_once(self) -> list[SignalMessage]:
        """Fetch and dispatch new messages. Skipped while a poll is in flight."""
        if self.room is None or self.device is None or self._poll_lock.locked():
            return []

        async with self._poll_lock:
            generation = self._generation
            room_id, device_id = self.room.id, self.device.id
            try:
                data = await self._request(
                    "GET", params={"action": "poll", "roomId": room_id, "deviceId": device_id, "cursor": self.cursor}
                )
            except (httpx.HTTPError, SignalClientError, ValueError) as e:
                self._record_failure(e)
                return []

            if generation != self._generation:
                # left or switched rooms while the request was in flight
                return []

            raw_messages = data.get("messages") if isinstance(data, dict) else None
            if not isinstance(raw_messages, list):
                self._record_failure(ValueError(f"Malformed poll response: {str(data)[:200]}"))
                return []

            messages = []
            for raw in raw_messages:
                try:
                    messages.append(SignalMessage.model_validate(raw))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed message in room {room_id}: {e}")
            for message in messages:
                await self._dispatch(message)
                self.cursor = max(self.cursor, message.timestamp)

            self._failures = 0
            if self.status != ConnectionStatus.CONNECTED:
                logger.info(f"Signaling connected in room {room_id}")
            self.status = ConnectionStatus.CONNECTED
            self.error = None
            return messages

    def _record_failure(self, error: Exception) -> None:
        self._failures += 1
        logger.warning(f"Poll failed ({self._failures}/{self.failure_threshold}): {error}")
        if self._failures >= self.failure_threshold:
            self.status = ConnectionStatus.ERROR
            self.error = str(error)

    async def _dispatch(self, message: SignalMessage) -> None:
        if message.type == SignalType.ROOM_UPDATE and isinstance(message.data, dict) and "room" in message.data:
            try:
                self.room = Room.model_validate(message.data["room"])
            except ValueError as e:
                logger.warning(f"Ignoring malformed room update {message.id}: {e}")
        if self.on_message is None:
            return
        try:
            await self.on_message(message)
        except Exception as e:
            logger.error(f"Handler failed for {message.type.value} message {message.id}: {e}", exc_info=True)

    def start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Poll loop error: {e}", exc_info=True)
                self._record_failure(e)
            await asyncio.sleep(self.poll_interval)

    async def stop_polling(self) -> None:
        self._generation += 1
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def leave_room(self) -> None:
        await self.stop_polling()
        room, device = self.room, self.device
        self.room = None
        self.device = None
        self.cursor = 0
        self.status = ConnectionStatus.IDLE
        if room is None or device is None:
            return
        try:
            await self._request("DELETE", params={"roomId": room.id, "deviceId": device.id})
            logger.info(f"Left room {room.id}")
        except (httpx.HTTPError, SignalClientError) as e:
            logger.warning(f"Leave request for room {room.id} failed: {e}")

    def peers(self, threshold_ms: int = STALE_DEVICE_MS) -> list[Device]:
        """Other devices in the room that polled recently."""
        if self.room is None or self.device is None:
            return []
        return [d for d in self.room.live_devices(now_ms(), threshold_ms) if d.id != self.device.id]
