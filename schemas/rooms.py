from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class SignalType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    ROOM_UPDATE = "room-update"


class Device(CamelModel):
    id: str
    name: str
    type: DeviceType
    joined_at: int
    last_seen: int

    def is_stale(self, now_ms: int, threshold_ms: int) -> bool:
        return now_ms - self.last_seen > threshold_ms


class Room(CamelModel):
    id: str
    name: str
    devices: list[Device] = []
    created_at: int
    last_activity: int
    version: int = 0

    def find_device(self, device_id: str) -> Optional[Device]:
        return next((d for d in self.devices if d.id == device_id), None)

    def live_devices(self, now_ms: int, threshold_ms: int) -> list[Device]:
        """Devices that polled recently. Advisory only, nothing is evicted."""
        return [d for d in self.devices if not d.is_stale(now_ms, threshold_ms)]


class SignalMessage(CamelModel):
    id: str
    type: SignalType
    from_device: str
    to_device: str
    data: Any
    timestamp: int


class SignalRequest(CamelModel):
    room_id: Optional[str] = None
    type: Optional[SignalType] = None
    from_device: Optional[str] = None
    to_device: Optional[str] = None
    data: Any = None


class JoinRoomRequest(CamelModel):
    room_id: Optional[str] = None
    device_name: Optional[str] = None
    device_type: Optional[DeviceType] = None


class CreateRoomResponse(CamelModel):
    room_id: str
    room: Room


class JoinRoomResponse(CamelModel):
    room: Room
    device: Device


class RoomResponse(CamelModel):
    room: Room


class RoomsResponse(CamelModel):
    rooms: list[str]


class PollResponse(CamelModel):
    messages: list[SignalMessage]


class SuccessResponse(CamelModel):
    success: bool = True
