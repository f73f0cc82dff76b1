"""Realtime event envelopes: ``{event, data, timestamp}`` as a closed set of typed variants."""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from .schemas import ChatRoom, Message, Participant, WireModel


class ChatEvent(str, Enum):
    MESSAGE_SENT = "message_sent"
    MESSAGE_DELIVERED = "message_delivered"
    MESSAGE_READ = "message_read"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    USER_TYPING = "user_typing"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    CHAT_CREATED = "chat_created"
    CHAT_UPDATED = "chat_updated"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_LEFT = "participant_left"


# Events worth replaying after a reconnect; typing and presence are stale by then.
QUEUEABLE_EVENTS = frozenset(
    {
        ChatEvent.MESSAGE_SENT,
        ChatEvent.MESSAGE_DELIVERED,
        ChatEvent.MESSAGE_READ,
        ChatEvent.MESSAGE_EDITED,
        ChatEvent.MESSAGE_DELETED,
    }
)


class MessageRef(WireModel):
    message_id: str
    chat_room_id: Optional[str] = None
    user_id: Optional[str] = None


class TypingData(WireModel):
    chat_room_id: str
    user_id: Optional[str] = None
    is_typing: bool


class PresenceData(WireModel):
    user_id: Optional[str] = None


class ParticipantChange(WireModel):
    chat_room_id: str
    participant: Optional[Participant] = None
    user_id: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Envelope(WireModel):
    timestamp: datetime = Field(default_factory=_now)

    @property
    def kind(self) -> ChatEvent:
        return ChatEvent(self.event)


class MessageSentEvent(_Envelope):
    event: Literal["message_sent"] = "message_sent"
    data: Message


class MessageDeliveredEvent(_Envelope):
    event: Literal["message_delivered"] = "message_delivered"
    data: MessageRef


class MessageReadEvent(_Envelope):
    event: Literal["message_read"] = "message_read"
    data: MessageRef


class MessageEditedEvent(_Envelope):
    event: Literal["message_edited"] = "message_edited"
    data: Message


class MessageDeletedEvent(_Envelope):
    event: Literal["message_deleted"] = "message_deleted"
    data: MessageRef


class UserTypingEvent(_Envelope):
    event: Literal["user_typing"] = "user_typing"
    data: TypingData


class UserOnlineEvent(_Envelope):
    event: Literal["user_online"] = "user_online"
    data: PresenceData = Field(default_factory=PresenceData)


class UserOfflineEvent(_Envelope):
    event: Literal["user_offline"] = "user_offline"
    data: PresenceData = Field(default_factory=PresenceData)


class ChatCreatedEvent(_Envelope):
    event: Literal["chat_created"] = "chat_created"
    data: ChatRoom


class ChatUpdatedEvent(_Envelope):
    event: Literal["chat_updated"] = "chat_updated"
    data: ChatRoom


class ParticipantJoinedEvent(_Envelope):
    event: Literal["participant_joined"] = "participant_joined"
    data: ParticipantChange


class ParticipantLeftEvent(_Envelope):
    event: Literal["participant_left"] = "participant_left"
    data: ParticipantChange


RealtimeEvent = Annotated[
    Union[
        MessageSentEvent,
        MessageDeliveredEvent,
        MessageReadEvent,
        MessageEditedEvent,
        MessageDeletedEvent,
        UserTypingEvent,
        UserOnlineEvent,
        UserOfflineEvent,
        ChatCreatedEvent,
        ChatUpdatedEvent,
        ParticipantJoinedEvent,
        ParticipantLeftEvent,
    ],
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter = TypeAdapter(RealtimeEvent)


def parse_event(raw: Union[str, bytes]) -> RealtimeEvent:
    """Validate one inbound frame; raises ``pydantic.ValidationError`` when malformed."""
    return _event_adapter.validate_json(raw)


def serialize_event(event: RealtimeEvent) -> str:
    return event.model_dump_json(by_alias=True, exclude_none=True)


def event_from_dict(payload: Dict[str, Any]) -> RealtimeEvent:
    return _event_adapter.validate_python(payload)
