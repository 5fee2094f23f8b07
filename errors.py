class KeyNotFound(Exception):
    """Raised by a KV backend when a key is absent or expired."""

    def __init__(self, key: str):
        super().__init__(f"Key not found: {key}")
        self.key = key


class ServiceError(Exception):
    """Base for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(ServiceError):
    status_code = 400
    default_message = "Invalid input"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Failed to decrypt data. Invalid key?"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Data not found or expired"


class RoomNotFound(NotFound):
    default_message = "Room not found"

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class PayloadTooLarge(ServiceError):
    status_code = 413
    default_message = "Payload too large"


class BackendError(ServiceError):
    default_message = "Storage backend failure"


class WriteConflict(BackendError):
    default_message = "Concurrent update conflict, please retry"


class CorruptData(ServiceError):
    default_message = "Malformed data in storage"
