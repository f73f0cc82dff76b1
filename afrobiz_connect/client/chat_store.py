"""Chat state: room list, the active room's message log, typing users and connectivity."""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..shared.utils import merge_by_id
from .chat import ChatService
from .config import MESSAGES_PAGE_SIZE
from .errors import ClientError, PreconditionError
from .events import (
    ChatCreatedEvent,
    ChatEvent,
    ChatUpdatedEvent,
    MessageDeletedEvent,
    MessageDeliveredEvent,
    MessageEditedEvent,
    MessageReadEvent,
    MessageSentEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    UserOfflineEvent,
    UserOnlineEvent,
    UserTypingEvent,
)
from .logging_config import get_logger
from .realtime import ConnectionState, RealtimeChannel
from .schemas import ChatRoom, CreateChatRequest, Message, SendMessageRequest
from .store import ObservableStore, RequestSequence

logger = get_logger("chat_store")

ROOM_ACTIONS = ("archive", "unarchive", "mute", "unmute")


def _message_key(message: Message) -> Tuple[datetime, str]:
    created = message.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, message.id


def merge_messages(current: Iterable[Message], incoming: Iterable[Message], replace: bool = True) -> List[Message]:
    """Union of two message lists by ``id``, sorted ascending by ``created_at``.

    With ``replace`` the incoming copy wins for ids present in both; history
    pages pass ``replace=False`` so they never roll back a newer live update.
    """
    by_id: Dict[str, Message] = {m.id: m for m in current}
    for message in incoming:
        if replace or message.id not in by_id:
            by_id[message.id] = message
    return sorted(by_id.values(), key=_message_key)


class ChatStore(ObservableStore):
    """One coherent view of the active conversation.

    History pages come from the REST API, newest first; live deltas come from
    the realtime channel. Both are merged into ``messages``, which stays in
    ascending ``created_at`` order without duplicate ids.
    """

    def __init__(
        self,
        service: ChatService,
        channel: RealtimeChannel,
        page_size: int = MESSAGES_PAGE_SIZE,
        typing_ttl: Optional[float] = None,
    ):
        super().__init__()
        self.service = service
        self.channel = channel
        self.page_size = page_size
        self.typing_ttl = typing_ttl
        self.chat_rooms: List[ChatRoom] = []
        self.current_room: Optional[ChatRoom] = None
        self.messages: List[Message] = []
        self.typing_users: Set[str] = set()
        self.is_connected = channel.is_connected
        self.is_loading_rooms = False
        self.is_loading_messages = False
        self.messages_page = 0
        self.has_more_messages = False
        self._rooms_seq = RequestSequence()
        self._messages_seq = RequestSequence()
        # Messages that reached the active room while a page-1 load was in flight.
        self._arrived: Optional[Dict[str, Message]] = None
        self._typing_timers: Dict[str, asyncio.TimerHandle] = {}
        self._handlers: Dict[ChatEvent, Callable[[Any], None]] = {
            ChatEvent.MESSAGE_SENT: self._on_message_sent,
            ChatEvent.MESSAGE_DELIVERED: self._on_message_delivered,
            ChatEvent.MESSAGE_READ: self._on_message_read,
            ChatEvent.MESSAGE_EDITED: self._on_message_edited,
            ChatEvent.MESSAGE_DELETED: self._on_message_deleted,
            ChatEvent.USER_TYPING: self._on_user_typing,
            ChatEvent.USER_ONLINE: self._on_presence,
            ChatEvent.USER_OFFLINE: self._on_presence,
            ChatEvent.CHAT_CREATED: self._on_chat_changed,
            ChatEvent.CHAT_UPDATED: self._on_chat_changed,
            ChatEvent.PARTICIPANT_JOINED: self._on_participant_joined,
            ChatEvent.PARTICIPANT_LEFT: self._on_participant_left,
        }
        self._attached = False

    # --- lifecycle ---

    def attach(self) -> None:
        """Register the event and state handlers on the channel, once."""
        if self._attached:
            return
        for kind, handler in self._handlers.items():
            self.channel.add_event_listener(kind, handler)
        self.channel.add_state_listener(self._on_connection_state)
        self._attached = True

    async def initialize(self) -> None:
        self.attach()
        await self.channel.connect()
        await self.load_chat_rooms()

    async def close(self) -> None:
        if self._attached:
            for kind, handler in self._handlers.items():
                self.channel.remove_event_listener(kind, handler)
            self.channel.remove_state_listener(self._on_connection_state)
            self._attached = False
        self._clear_typing()
        await self.channel.close()
        self.is_connected = False
        self._notify()

    # --- rooms ---

    async def load_chat_rooms(self, filters: Optional[Dict[str, Any]] = None) -> None:
        tag = self._rooms_seq.issue()
        self.is_loading_rooms = True
        self._notify()
        try:
            rooms, _ = await self.service.get_chat_rooms(filters)
        except ClientError as exc:
            if self._rooms_seq.is_current(tag):
                self.is_loading_rooms = False
                self._record_error(exc, "Failed to load chats")
            raise
        if not self._rooms_seq.is_current(tag):
            logger.debug("STALE_RESPONSE_DROPPED collection=chat_rooms tag=%s", tag)
            return
        self.chat_rooms = rooms
        self.is_loading_rooms = False
        self._notify()

    async def get_chat_room(self, chat_room_id: str) -> ChatRoom:
        try:
            return await self.service.get_chat_room(chat_room_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to load chat")
            raise

    async def create_chat_room(self, request: CreateChatRequest) -> ChatRoom:
        try:
            room = await self.service.create_chat_room(request)
        except ClientError as exc:
            self._record_error(exc, "Failed to create chat")
            raise
        self.chat_rooms = merge_by_id(self.chat_rooms, room)
        self._notify()
        return room

    async def select_chat_room(self, room: ChatRoom) -> None:
        """Make ``room`` active: reset the log, load its newest page, mark it read."""
        self.current_room = room
        self.messages = []
        self._arrived = None
        self.messages_page = 0
        self.has_more_messages = False
        self._clear_typing()
        self._notify()
        await self.load_messages(page=1)
        if self._is_active(room.id):
            await self.mark_chat_as_read(room.id)

    def leave_chat_room(self) -> None:
        self.current_room = None
        self.messages = []
        self._arrived = None
        self.messages_page = 0
        self.has_more_messages = False
        self._clear_typing()
        self._notify()

    async def set_room_flag(self, chat_room_id: str, action: str) -> None:
        if action not in ROOM_ACTIONS:
            raise ValueError(f"unknown room action: {action}")
        try:
            await self.service.set_room_flag(chat_room_id, action)
        except ClientError as exc:
            self._record_error(exc, f"Failed to {action} chat")
            raise
        if action in ("archive", "unarchive"):
            update = {"is_archived": action == "archive"}
        else:
            update = {"is_muted": action == "mute"}
        self._update_room(chat_room_id, **update)
        self._notify()

    async def archive_chat(self, chat_room_id: str) -> None:
        await self.set_room_flag(chat_room_id, "archive")

    async def unarchive_chat(self, chat_room_id: str) -> None:
        await self.set_room_flag(chat_room_id, "unarchive")

    async def mute_chat(self, chat_room_id: str) -> None:
        await self.set_room_flag(chat_room_id, "mute")

    async def unmute_chat(self, chat_room_id: str) -> None:
        await self.set_room_flag(chat_room_id, "unmute")

    async def mark_chat_as_read(self, chat_room_id: str) -> None:
        try:
            await self.service.mark_chat_as_read(chat_room_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to mark chat as read")
            raise
        self._update_room(chat_room_id, unread_count=0)
        self._notify()

    # --- messages ---

    async def load_messages(self, page: int = 1) -> None:
        """Load one history page of the active room.

        Page 1 replaces the log, keeping only messages that arrived while it
        was loading; later pages are older and merge in front of it. A
        response that arrives after the room changed, or after a newer load
        was issued, is dropped.
        """
        room = self.current_room
        if room is None:
            raise PreconditionError("No chat room selected")
        tag = self._messages_seq.issue()
        if page == 1:
            self._arrived = {}
        else:
            self._arrived = None
        self.is_loading_messages = True
        self._notify()
        try:
            page_messages, total = await self.service.get_messages(room.id, page, self.page_size)
        except ClientError as exc:
            if self._messages_seq.is_current(tag):
                self.is_loading_messages = False
                self._arrived = None
                self._record_error(exc, "Failed to load messages")
            raise
        if not self._messages_seq.is_current(tag) or self.current_room is None or self.current_room.id != room.id:
            logger.debug("STALE_RESPONSE_DROPPED collection=messages room=%s tag=%s", room.id, tag)
            return
        history = list(reversed(page_messages))
        if page == 1:
            arrived = list((self._arrived or {}).values())
            self._arrived = None
            self.messages = merge_messages(history, arrived, replace=False)
        else:
            self.messages = merge_messages(self.messages, history, replace=False)
        self.messages_page = page
        self.has_more_messages = len(self.messages) < total
        self.is_loading_messages = False
        self._notify()

    async def load_more_messages(self) -> None:
        if self.has_more_messages and not self.is_loading_messages:
            await self.load_messages(self.messages_page + 1)

    async def send_message(self, request: SendMessageRequest) -> Message:
        try:
            message = await self.service.send_message(request)
        except ClientError as exc:
            self._record_error(exc, "Failed to send message")
            raise
        if self._is_active(message.chat_room_id):
            self.messages = merge_messages(self.messages, [message])
            self._remember_arrival(message)
        self._update_room(message.chat_room_id, last_message=message)
        self._notify()
        return message

    async def edit_message(self, message_id: str, content: str) -> Message:
        try:
            message = await self.service.edit_message(message_id, content)
        except ClientError as exc:
            self._record_error(exc, "Failed to edit message")
            raise
        self._apply_edit(message)
        self._notify()
        return message

    async def delete_message(self, message_id: str) -> None:
        try:
            await self.service.delete_message(message_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to delete message")
            raise
        self.messages = [m for m in self.messages if m.id != message_id]
        if self._arrived:
            self._arrived.pop(message_id, None)
        self._notify()

    async def mark_message_as_read(self, message_id: str) -> None:
        try:
            await self.service.mark_message_as_read(message_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to mark message as read")
            raise
        self._set_message_flag(message_id, is_read=True)
        self._notify()

    async def send_typing_indicator(self, is_typing: bool) -> None:
        if self.current_room is not None:
            await self.service.send_typing_indicator(self.current_room.id, is_typing)

    async def search_messages(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[Message]:
        try:
            messages, _ = await self.service.search_messages(query, filters)
        except ClientError as exc:
            self._record_error(exc, "Search failed")
            raise
        return messages

    async def refresh_data(self) -> None:
        calls = [self.load_chat_rooms()]
        if self.current_room is not None:
            calls.append(self.load_messages(page=1))
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("REFRESH_PARTIAL_FAIL reason=%s", result)

    # --- realtime handlers ---

    def _on_connection_state(self, state: ConnectionState) -> None:
        connected = state is ConnectionState.CONNECTED
        if connected != self.is_connected:
            self.is_connected = connected
            self._notify()

    def _on_message_sent(self, event: MessageSentEvent) -> None:
        message = event.data
        active = self._is_active(message.chat_room_id)
        if active:
            self.messages = merge_messages(self.messages, [message])
            self._remember_arrival(message)
        room = self._find_room(message.chat_room_id)
        if room is not None:
            unread = room.unread_count if active else room.unread_count + 1
            self._update_room(room.id, last_message=message, unread_count=unread)
        else:
            logger.debug("MESSAGE_FOR_UNKNOWN_ROOM room=%s", message.chat_room_id)
        self._notify()

    def _on_message_edited(self, event: MessageEditedEvent) -> None:
        self._apply_edit(event.data)
        self._notify()

    def _on_message_deleted(self, event: MessageDeletedEvent) -> None:
        message_id = event.data.message_id
        if self._arrived:
            self._arrived.pop(message_id, None)
        remaining = [m for m in self.messages if m.id != message_id]
        if len(remaining) != len(self.messages):
            self.messages = remaining
            self._notify()

    def _on_message_read(self, event: MessageReadEvent) -> None:
        if self._set_message_flag(event.data.message_id, is_read=True):
            self._notify()

    def _on_message_delivered(self, event: MessageDeliveredEvent) -> None:
        if self._set_message_flag(event.data.message_id, is_delivered=True):
            self._notify()

    def _on_user_typing(self, event: UserTypingEvent) -> None:
        data = event.data
        if not data.user_id or not self._is_active(data.chat_room_id):
            return
        self._cancel_typing_timer(data.user_id)
        if data.is_typing:
            self.typing_users.add(data.user_id)
            if self.typing_ttl:
                loop = asyncio.get_running_loop()
                self._typing_timers[data.user_id] = loop.call_later(
                    self.typing_ttl, self._expire_typing, data.user_id
                )
        else:
            self.typing_users.discard(data.user_id)
        self._notify()

    def _on_presence(self, event: Any) -> None:
        user_id = event.data.user_id
        if not user_id:
            return
        online = isinstance(event, UserOnlineEvent)
        changed = False
        for room in self.chat_rooms:
            if any(p.user_id == user_id and p.is_online != online for p in room.participants):
                participants = [
                    p.model_copy(update={"is_online": online}) if p.user_id == user_id else p
                    for p in room.participants
                ]
                self._update_room(room.id, participants=participants)
                changed = True
        if changed:
            self._notify()

    def _on_chat_changed(self, event: Any) -> None:
        room: ChatRoom = event.data
        if isinstance(event, ChatCreatedEvent):
            self.chat_rooms = merge_by_id(self.chat_rooms, room)
        elif isinstance(event, ChatUpdatedEvent):
            self.chat_rooms = merge_by_id(self.chat_rooms, room)
            if self.current_room is not None and self.current_room.id == room.id:
                self.current_room = room
        self._notify()

    def _on_participant_joined(self, event: ParticipantJoinedEvent) -> None:
        data = event.data
        room = self._find_room(data.chat_room_id)
        if room is None or data.participant is None:
            return
        others = [p for p in room.participants if p.user_id != data.participant.user_id]
        self._update_room(room.id, participants=[*others, data.participant])
        self._notify()

    def _on_participant_left(self, event: ParticipantLeftEvent) -> None:
        data = event.data
        user_id = data.user_id or (data.participant.user_id if data.participant else None)
        room = self._find_room(data.chat_room_id)
        if room is None or user_id is None:
            return
        self._update_room(room.id, participants=[p for p in room.participants if p.user_id != user_id])
        self._notify()

    # --- internals ---

    def _remember_arrival(self, message: Message) -> None:
        if self._arrived is not None:
            self._arrived[message.id] = message

    def _is_active(self, chat_room_id: str) -> bool:
        return self.current_room is not None and self.current_room.id == chat_room_id

    def _find_room(self, chat_room_id: str) -> Optional[ChatRoom]:
        for room in self.chat_rooms:
            if room.id == chat_room_id:
                return room
        return None

    def _update_room(self, chat_room_id: str, **changes: Any) -> None:
        room = self._find_room(chat_room_id)
        if room is not None:
            updated = room.model_copy(update=changes)
            self.chat_rooms = merge_by_id(self.chat_rooms, updated)
        if self._is_active(chat_room_id):
            self.current_room = self.current_room.model_copy(update=changes)

    def _apply_edit(self, edited: Message) -> None:
        for index, message in enumerate(self.messages):
            if message.id == edited.id:
                self.messages[index] = message.model_copy(
                    update={
                        "content": edited.content,
                        "type": edited.type,
                        "attachments": edited.attachments,
                        "is_edited": True,
                        "edited_at": edited.edited_at or edited.updated_at,
                    }
                )
                return

    def _set_message_flag(self, message_id: str, **flags: bool) -> bool:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                self.messages[index] = message.model_copy(update=flags)
                return True
        return False

    def _expire_typing(self, user_id: str) -> None:
        self._typing_timers.pop(user_id, None)
        if user_id in self.typing_users:
            self.typing_users.discard(user_id)
            logger.debug("TYPING_EXPIRED user_id=%s", user_id)
            self._notify()

    def _cancel_typing_timer(self, user_id: str) -> None:
        timer = self._typing_timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()

    def _clear_typing(self) -> None:
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        self.typing_users = set()
