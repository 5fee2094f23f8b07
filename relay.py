"""LAN signaling relay.

Rooms and their mailboxes live in the KV backend as JSON values. Browsers
create or join a room, then pull the messages addressed to them (offers,
answers, ICE candidates and room updates) until a direct peer connection is
up. Every mutation is a read-modify-write guarded by a conditional write and
retried with backoff when another request got there first.
"""
import secrets
import string
import time
from typing import Any, Awaitable, Callable, Optional

from pydantic import TypeAdapter, ValidationError

from backends.base import KVBackend
from constants import (
    BROADCAST_TARGET,
    CAS_BASE_DELAY,
    CAS_MAX_DELAY,
    CAS_MAX_RETRIES,
    DEVICE_ID_LENGTH,
    MAILBOX_CAPACITY,
    MAILBOX_TTL_SECONDS,
    ROOM_ID_ATTEMPTS,
    ROOM_ID_LENGTH,
    ROOM_TTL_SECONDS,
)
from errors import (
    BackendError,
    CorruptData,
    InvalidInput,
    KeyNotFound,
    RoomNotFound,
    ServiceError,
    WriteConflict,
)
from logging_config import get_logger
from redis_keys import LAN_MESSAGES_KEY, LAN_ROOM_KEY
from resilience import retry_with_backoff
from schemas.rooms import Device, DeviceType, Room, SignalMessage, SignalType

logger = get_logger(__name__)

_mailbox = TypeAdapter(list[SignalMessage])

DEVICE_JOINED = "device-joined"
DEVICE_LEFT = "device-left"


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_room_id(length: int = ROOM_ID_LENGTH) -> str:
    return ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(length))


def generate_device_id(length: int = DEVICE_ID_LENGTH) -> str:
    return ''.join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(length))


def _dump_room(room: Room) -> str:
    return room.model_dump_json(by_alias=True)


class SignalRelay:
    def __init__(self, backend: KVBackend, clock: Callable[[], int] = now_ms):
        self.backend = backend
        self.clock = clock

    async def _retrying(self, attempt: Callable[[], Awaitable[Any]]) -> Any:
        retried = retry_with_backoff(
            max_retries=CAS_MAX_RETRIES,
            base_delay=CAS_BASE_DELAY,
            max_delay=CAS_MAX_DELAY,
            exceptions=(WriteConflict,),
        )(attempt)
        return await retried()

    # ---- rooms ----------------------------------------------------------

    async def _read_room(self, room_id: str) -> tuple[str, Room]:
        try:
            raw = await self.backend.get(LAN_ROOM_KEY.format(room_id=room_id))
        except KeyNotFound:
            raise RoomNotFound(room_id)
        try:
            return raw, Room.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Room {room_id} record is malformed: {e}")
            raise CorruptData(f"Room {room_id} record is malformed") from e

    async def _update_room(self, room_id: str, mutate: Callable[[Room], bool]) -> Room:
        """Apply ``mutate`` to the stored room and write it back conditionally.

        ``mutate`` returns False when there is nothing to write.
        """
        key = LAN_ROOM_KEY.format(room_id=room_id)

        async def attempt() -> Room:
            raw, room = await self._read_room(room_id)
            if not mutate(room):
                return room
            room.version += 1
            if not await self.backend.compare_and_set(key, raw, _dump_room(room), ROOM_TTL_SECONDS):
                raise WriteConflict(f"Room {room_id} changed concurrently")
            return room

        return await self._retrying(attempt)

    async def create_room(self) -> Room:
        for _ in range(ROOM_ID_ATTEMPTS):
            room_id = generate_room_id()
            now = self.clock()
            room = Room(id=room_id, name=f"Room {room_id}", devices=[], created_at=now, last_activity=now)
            created = await self.backend.set_with_ttl(
                LAN_ROOM_KEY.format(room_id=room_id), _dump_room(room), ROOM_TTL_SECONDS, only_if_absent=True
            )
            if created:
                logger.info(f"Room {room_id} created")
                return room
            logger.debug(f"Room id {room_id} already taken, regenerating")
        raise BackendError("Could not allocate a room id")

    async def get_room(self, room_id: str) -> Room:
        _, room = await self._read_room(room_id)
        return room

    async def join_room(self, room_id: str, device_name: str, device_type: str) -> tuple[Room, Device]:
        if not room_id or not device_name or not device_type:
            raise InvalidInput("roomId, deviceName and deviceType are required")
        try:
            device_type = DeviceType(device_type)
        except ValueError:
            raise InvalidInput(f"Unknown device type: {device_type}")

        now = self.clock()
        device = Device(id=generate_device_id(), name=device_name, type=device_type, joined_at=now, last_seen=now)

        def mutate(room: Room) -> bool:
            # same name means the same device coming back
            room.devices = [d for d in room.devices if d.name != device_name]
            while room.find_device(device.id):
                device.id = generate_device_id()
            room.devices.append(device)
            room.last_activity = max(room.last_activity, now)
            return True

        room = await self._update_room(room_id, mutate)
        logger.info(f"Device {device.id} ({device_name}, {device_type.value}) joined room {room_id}, {len(room.devices)} devices")
        await self._broadcast_room_update(room, device, DEVICE_JOINED)
        return room, device

    async def leave_room(self, room_id: str, device_id: str) -> None:
        if not room_id or not device_id:
            raise InvalidInput("roomId and deviceId are required")
        key = LAN_ROOM_KEY.format(room_id=room_id)
        now = self.clock()

        async def attempt() -> tuple[Room, Optional[Device], bool]:
            raw, room = await self._read_room(room_id)
            departed = room.find_device(device_id)
            room.devices = [d for d in room.devices if d.id != device_id]
            if not room.devices:
                if not await self.backend.compare_and_delete(key, raw):
                    raise WriteConflict(f"Room {room_id} changed concurrently")
                return room, departed, True
            if departed is None:
                return room, None, False
            room.last_activity = max(room.last_activity, now)
            room.version += 1
            if not await self.backend.compare_and_set(key, raw, _dump_room(room), ROOM_TTL_SECONDS):
                raise WriteConflict(f"Room {room_id} changed concurrently")
            return room, departed, False

        room, departed, emptied = await self._retrying(attempt)

        if emptied:
            logger.info(f"Last device left room {room_id}, room deleted")
            try:
                await self.backend.delete(LAN_MESSAGES_KEY.format(room_id=room_id))
            except (KeyNotFound, ServiceError) as e:
                logger.warning(f"Failed to delete mailbox for room {room_id}: {e}")
            return
        if departed is None:
            logger.debug(f"Device {device_id} was not in room {room_id}")
            return
        logger.info(f"Device {device_id} left room {room_id}, {len(room.devices)} devices remain")
        await self._broadcast_room_update(room, departed, DEVICE_LEFT)

    # ---- mailbox --------------------------------------------------------

    async def _read_mailbox(self, room_id: str) -> tuple[Optional[str], list[SignalMessage]]:
        """Return the raw stored value (None if absent or unreadable) and its messages."""
        try:
            raw = await self.backend.get(LAN_MESSAGES_KEY.format(room_id=room_id))
        except KeyNotFound:
            return None, []
        except CorruptData as e:
            logger.warning(f"Discarding unreadable mailbox for room {room_id}: {e}")
            try:
                await self.backend.delete(LAN_MESSAGES_KEY.format(room_id=room_id))
            except KeyNotFound:
                pass
            return None, []
        try:
            return raw, _mailbox.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed mailbox for room {room_id}: {e}")
            return raw, []

    async def _append_message(self, room_id: str, message_type: SignalType, from_device: str, to_device: str, data: Any) -> SignalMessage:
        key = LAN_MESSAGES_KEY.format(room_id=room_id)

        async def attempt() -> SignalMessage:
            raw, messages = await self._read_mailbox(room_id)
            # strictly increasing so a cursor never skips a same-millisecond message
            timestamp = self.clock()
            if messages:
                timestamp = max(timestamp, messages[-1].timestamp + 1)
            message = SignalMessage(
                id=secrets.token_hex(8),
                type=message_type,
                from_device=from_device,
                to_device=to_device,
                data=data,
                timestamp=timestamp,
            )
            messages.append(message)
            messages = messages[-MAILBOX_CAPACITY:]
            value = _mailbox.dump_json(messages, by_alias=True).decode()
            if not await self.backend.compare_and_set(key, raw, value, MAILBOX_TTL_SECONDS):
                raise WriteConflict(f"Mailbox for room {room_id} changed concurrently")
            return message

        return await self._retrying(attempt)

    async def send_signal(self, room_id: str, message_type: str, from_device: str, to_device: str, data: Any) -> SignalMessage:
        if not room_id or not message_type or not from_device or not to_device or data is None:
            raise InvalidInput("roomId, type, fromDevice, toDevice and data are required")
        try:
            message_type = SignalType(message_type)
        except ValueError:
            raise InvalidInput(f"Unknown signal type: {message_type}")

        await self._read_room(room_id)
        message = await self._append_message(room_id, message_type, from_device, to_device, data)
        logger.debug(f"Signal {message.type.value} {from_device} -> {to_device} in room {room_id} at {message.timestamp}")
        return message

    async def _broadcast_room_update(self, room: Room, device: Device, event: str) -> None:
        data = {
            "type": event,
            "room": room.model_dump(mode="json", by_alias=True),
            "device": device.model_dump(mode="json", by_alias=True),
        }
        try:
            await self._append_message(room.id, SignalType.ROOM_UPDATE, device.id, BROADCAST_TARGET, data)
        except ServiceError as e:
            logger.warning(f"Room update broadcast for room {room.id} failed: {e}")

    async def poll_messages(self, room_id: str, device_id: str, cursor: int = 0) -> list[SignalMessage]:
        """Messages for ``device_id`` newer than ``cursor``, oldest first.

        Also serves as the device heartbeat.
        """
        if not room_id or not device_id:
            raise InvalidInput("roomId and deviceId are required")
        _, room = await self._read_room(room_id)
        device = room.find_device(device_id)
        _, messages = await self._read_mailbox(room_id)

        def addressed(message: SignalMessage) -> bool:
            if message.to_device == device_id:
                return True
            return (
                message.to_device == BROADCAST_TARGET
                and device is not None
                and message.from_device != device_id
                and message.timestamp >= device.joined_at
            )

        delivered = sorted(
            (m for m in messages if m.timestamp > cursor and addressed(m)),
            key=lambda m: m.timestamp,
        )

        if device is not None:
            await self._heartbeat(room_id, device_id)
        return delivered

    async def _heartbeat(self, room_id: str, device_id: str) -> None:
        now = self.clock()

        def mutate(room: Room) -> bool:
            device = room.find_device(device_id)
            if device is None:
                return False
            device.last_seen = max(device.last_seen, now)
            room.last_activity = max(room.last_activity, now)
            return True

        try:
            await self._update_room(room_id, mutate)
        except ServiceError as e:
            logger.warning(f"Heartbeat for device {device_id} in room {room_id} failed: {e}")
