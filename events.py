"""
Inbound event dispatch for the room channel.

Each frame is a JSON envelope `{"event": name, "data": payload}`. Every event
is handled inside its own error boundary: lifecycle errors go back to the
caller as their error event, store failures and unexpected errors are logged
and the event is dropped. Nothing raised here ends the connection.
"""

from pydantic import ValidationError
from typing import Any, Awaitable, Callable, Dict
from backend import RedisBackend
from chat import ChatRelay
from connections import Connection, ConnectionRegistry
from errors import InvalidPayload, RoomError, StoreUnavailable
from membership import MembershipReconciler
from playback import PlaybackSynchronizer
from signaling import SignalingRelay
from schemas.rooms import (
    ChangeVideoRequest,
    Envelope,
    RoomIdRequest,
    RoomRequest,
    SendMessageRequest,
    SignalRequest,
    ToggleMuteRequest,
    VideoStateEvent,
    VideoStateRequest,
)
from logging_config import get_logger

logger = get_logger(__name__)

Handler = Callable[[Connection, Any], Awaitable[Any]]


class EventRouter:
    def __init__(self, store: RedisBackend, registry: ConnectionRegistry):
        self.store = store
        self.registry = registry
        self.membership = MembershipReconciler(store, registry)
        self.playback = PlaybackSynchronizer(store, registry)
        self.chat = ChatRelay(store, registry)
        self.signaling = SignalingRelay(registry)
        self.handlers: Dict[str, Handler] = {
            "create-room": self.on_create_room,
            "join-room": self.on_join_room,
            "leave-room": self.on_leave_room,
            "delete-room": self.on_delete_room,
            "change-video": self.on_change_video,
            "video-state": self.on_video_state,
            "send-message": self.on_send_message,
            "signal": self.on_signal,
            "toggle-mute": self.on_toggle_mute,
        }

    async def on_create_room(self, conn: Connection, data: Any):
        request = RoomRequest.model_validate(data)
        await self.membership.create_room(conn, request.room_id, request.username)

    async def on_join_room(self, conn: Connection, data: Any):
        request = RoomRequest.model_validate(data)
        await self.membership.join_room(conn, request.room_id, request.username)

    async def on_leave_room(self, conn: Connection, data: Any):
        request = RoomIdRequest.model_validate(data)
        await self.membership.leave_room(conn, request.room_id)

    async def on_delete_room(self, conn: Connection, data: Any):
        request = RoomIdRequest.model_validate(data)
        await self.membership.delete_room(conn, request.room_id)

    async def on_change_video(self, conn: Connection, data: Any):
        request = ChangeVideoRequest.model_validate(data)
        await self.playback.set_video(conn, request.room_id, request.url)

    async def on_video_state(self, conn: Connection, data: Any):
        request = VideoStateRequest.model_validate(data)
        event = VideoStateEvent(kind=request.kind, playing=request.playing, position=request.position)
        await self.playback.apply_event(conn, request.room_id, event)

    async def on_send_message(self, conn: Connection, data: Any):
        request = SendMessageRequest.model_validate(data)
        await self.chat.send_message(conn, request.room_id, request.author, request.text)

    async def on_signal(self, conn: Connection, data: Any):
        request = SignalRequest.model_validate(data)
        # The sender id is the caller's own session, whatever the payload claims
        await self.signaling.relay(conn.connection_id, request.to_id, request.payload)

    async def on_toggle_mute(self, conn: Connection, data: Any):
        request = ToggleMuteRequest.model_validate(data)
        await self.membership.toggle_mute(conn, request.room_id, request.is_muted)

    async def handle(self, conn: Connection, raw: str):
        event_name = None
        try:
            try:
                envelope = Envelope.model_validate_json(raw)
            except ValidationError as e:
                raise InvalidPayload(None, "not an event envelope") from e
            event_name = envelope.event

            handler = self.handlers.get(event_name)
            if handler is None:
                raise InvalidPayload(event_name, "unknown event")

            logger.debug(f"Handling {event_name} from connection {conn.connection_id}")
            try:
                await handler(conn, envelope.data)
            except ValidationError as e:
                raise InvalidPayload(event_name, f"{e.error_count()} validation errors") from e
        except StoreUnavailable as e:
            # The mutation is lost; the room simply does not reflect it
            logger.error(f"Dropping {event_name} from {conn.connection_id}: {e}", exc_info=True)
        except RoomError as e:
            logger.info(f"{event_name} from {conn.connection_id} rejected: {e.message}")
            if e.event:
                await conn.emit(e.event, e.to_dict())
        except Exception as e:
            logger.error(f"Error handling {event_name} from {conn.connection_id}: {e}", exc_info=True)

    async def disconnect(self, conn: Connection):
        await self.membership.disconnect(conn)
