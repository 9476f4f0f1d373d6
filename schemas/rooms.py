from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Literal, Optional
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    # Wire and storage use camelCase names, Python code uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Membership(CamelModel):
    username: str
    connection_id: str
    is_muted: bool = True
    joined_at: datetime = Field(default_factory=utcnow)


class ChatMessage(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    author: str
    text: str
    timestamp: datetime = Field(default_factory=utcnow)


class PlaybackState(CamelModel):
    url: str = ""
    playing: bool = False
    position: float = 0.0
    updated_at: datetime = Field(default_factory=utcnow)

    def live_position(self, now: Optional[datetime] = None) -> float:
        """Position extrapolated to `now`; `position` itself is the position at `updated_at`."""
        if not self.playing:
            return self.position
        now = now or utcnow()
        return self.position + (now - self.updated_at).total_seconds()


class Room(CamelModel):
    room_id: str
    owner: str
    users: list[Membership] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)
    video_state: PlaybackState = Field(default_factory=PlaybackState)

    def find_user(self, connection_id: str) -> Optional[Membership]:
        for user in self.users:
            if user.connection_id == connection_id:
                return user
        return None


# ---- client -> server payloads ----

class RoomIdRequest(CamelModel):
    room_id: str

    @field_validator("room_id")
    @classmethod
    def strip_room_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("room id must not be blank")
        return value


class RoomRequest(RoomIdRequest):
    username: str

    @field_validator("username")
    @classmethod
    def require_username(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("username must not be blank")
        return value


class ChangeVideoRequest(RoomIdRequest):
    url: str


class VideoStateRequest(RoomIdRequest):
    kind: Literal["playpause", "seek"]
    playing: bool
    position: float


class SendMessageRequest(RoomIdRequest):
    author: str
    text: str


class ToggleMuteRequest(RoomIdRequest):
    is_muted: bool


class SignalRequest(CamelModel):
    to_id: str
    payload: Any = None


# ---- server -> client payloads ----

class RoomSync(CamelModel):
    owner: str
    users: list[Membership]
    messages: list[ChatMessage]
    video_state: PlaybackState

    @classmethod
    def from_room(cls, room: Room) -> "RoomSync":
        return cls(owner=room.owner, users=room.users, messages=room.messages, video_state=room.video_state)


class VideoStateEvent(CamelModel):
    kind: Literal["playpause", "seek"]
    playing: bool
    position: float


class SignalEvent(CamelModel):
    from_id: str
    payload: Any = None


class Envelope(BaseModel):
    event: str
    data: Any = None


# ---- REST ----

class RoomDetailsResponse(CamelModel):
    room_id: str
    owner: str
    online_users_count: int
    online_users: list[str]
    message_count: int
    video_state: PlaybackState
