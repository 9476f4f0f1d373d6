"""
Room session errors.

Lifecycle errors carry the name of the event sent back to the client that
triggered them. Infrastructure errors (store, negotiation, capture) have no
wire event: they are logged where they happen and the event is dropped.
"""

from enum import Enum
from typing import Any, Dict, Optional


class RoomErrorCode(str, Enum):
    """Machine-readable error codes."""

    ROOM_NOT_FOUND = "room_not_found"
    ROOM_ALREADY_EXISTS = "room_already_exists"
    INVALID_PAYLOAD = "invalid_payload"
    STORE_UNAVAILABLE = "store_unavailable"
    NEGOTIATION_FAILED = "negotiation_failed"
    CAPTURE_UNAVAILABLE = "capture_unavailable"


class RoomError(Exception):
    """Base exception for room session errors."""

    event: Optional[str] = None

    def __init__(
        self,
        error_code: RoomErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class RoomNotFound(RoomError):
    """Join (or update) against a room id with no document."""

    event = "error-room-not-found"

    def __init__(self, room_id: str):
        super().__init__(
            error_code=RoomErrorCode.ROOM_NOT_FOUND,
            message=f"Room {room_id} not found",
            details={"room_id": room_id},
        )


class RoomAlreadyExists(RoomError):
    """Create against a room id that already has a document."""

    event = "error-room-exists"

    def __init__(self, room_id: str):
        super().__init__(
            error_code=RoomErrorCode.ROOM_ALREADY_EXISTS,
            message=f"Room {room_id} already exists",
            details={"room_id": room_id},
        )


class InvalidPayload(RoomError):
    """Malformed envelope or event payload."""

    event = "error-invalid-payload"

    def __init__(self, event_name: Optional[str], reason: str):
        super().__init__(
            error_code=RoomErrorCode.INVALID_PAYLOAD,
            message=f"Invalid payload for {event_name or 'unknown event'}: {reason}",
            details={"event": event_name},
        )


class StoreUnavailable(RoomError):
    """The room store could not complete a call."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(
            error_code=RoomErrorCode.STORE_UNAVAILABLE,
            message=f"Room store unavailable during {operation}: {cause}",
            details={"operation": operation},
        )


class NegotiationFailure(RoomError):
    """A single peer link failed to negotiate."""

    def __init__(self, peer_id: str, cause: Optional[BaseException] = None):
        super().__init__(
            error_code=RoomErrorCode.NEGOTIATION_FAILED,
            message=f"Negotiation with {peer_id} failed: {cause}",
            details={"peer_id": peer_id},
        )


class CaptureUnavailable(RoomError):
    """The local capture device could not be opened."""

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(
            error_code=RoomErrorCode.CAPTURE_UNAVAILABLE,
            message=f"Could not access microphone: {cause}",
        )
