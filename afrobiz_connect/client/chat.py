"""Chat endpoints plus the realtime notifications that follow a successful call."""
import json
from typing import Any, Dict, List, Optional, Tuple

from ..shared.utils import build_query
from .api import APIClient
from .events import MessageDeletedEvent, MessageEditedEvent, MessageReadEvent, MessageRef, MessageSentEvent, TypingData, UserTypingEvent
from .realtime import RealtimeChannel
from .schemas import ChatRoom, CreateChatRequest, Message, SendMessageRequest


class ChatService:
    def __init__(self, api: APIClient, channel: RealtimeChannel):
        self.api = api
        self.channel = channel

    async def get_chat_rooms(self, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[ChatRoom], int]:
        response = await self.api.get("/chat/rooms", params=build_query(filters))
        data = response.raise_for_success("Failed to fetch chat rooms")
        rooms = [ChatRoom.model_validate(raw) for raw in data.get("chatRooms", [])]
        return rooms, data.get("total", len(rooms))

    async def get_chat_room(self, chat_room_id: str) -> ChatRoom:
        response = await self.api.get(f"/chat/rooms/{chat_room_id}")
        return ChatRoom.model_validate(response.raise_for_success("Chat room not found"))

    async def create_chat_room(self, request: CreateChatRequest) -> ChatRoom:
        response = await self.api.post("/chat/rooms", request.to_wire())
        return ChatRoom.model_validate(response.raise_for_success("Failed to create chat room"))

    async def get_messages(
        self, chat_room_id: str, page: int = 1, limit: int = 50, filters: Optional[Dict[str, Any]] = None
    ) -> Tuple[List[Message], int]:
        """Return one page, newest first, as the server orders it."""
        params = [("page", str(page)), ("limit", str(limit)), *build_query(filters)]
        response = await self.api.get(f"/chat/rooms/{chat_room_id}/messages", params=params)
        data = response.raise_for_success("Failed to fetch messages")
        messages = [Message.model_validate(raw) for raw in data.get("messages", [])]
        return messages, data.get("total", len(messages))

    async def send_message(self, request: SendMessageRequest) -> Message:
        if request.attachments:
            fields = {
                "chatRoomId": request.chat_room_id,
                "type": request.type.value,
                "content": request.content,
                "clientMessageId": request.client_message_id,
            }
            if request.reply_to_message_id:
                fields["replyToMessageId"] = request.reply_to_message_id
            if request.metadata:
                fields["metadata"] = json.dumps(request.metadata)
            attachments = [a.model_copy(update={"field": "attachments"}) for a in request.attachments]
            response = await self.api.upload("/chat/messages/with-attachments", attachments, fields)
        else:
            response = await self.api.post("/chat/messages", request.to_wire())
        message = Message.model_validate(response.raise_for_success("Failed to send message"))
        await self.channel.send(MessageSentEvent(data=message))
        return message

    async def edit_message(self, message_id: str, content: str) -> Message:
        response = await self.api.patch(f"/chat/messages/{message_id}", {"content": content})
        message = Message.model_validate(response.raise_for_success("Failed to edit message"))
        await self.channel.send(MessageEditedEvent(data=message))
        return message

    async def delete_message(self, message_id: str) -> None:
        response = await self.api.delete(f"/chat/messages/{message_id}")
        response.raise_for_success("Failed to delete message", require_data=False)
        await self.channel.send(MessageDeletedEvent(data=MessageRef(message_id=message_id)))

    async def mark_message_as_read(self, message_id: str) -> None:
        response = await self.api.post(f"/chat/messages/{message_id}/read")
        response.raise_for_success("Failed to mark message as read", require_data=False)
        await self.channel.send(MessageReadEvent(data=MessageRef(message_id=message_id)))

    async def mark_chat_as_read(self, chat_room_id: str) -> None:
        response = await self.api.post(f"/chat/rooms/{chat_room_id}/read")
        response.raise_for_success("Failed to mark chat as read", require_data=False)

    async def send_typing_indicator(self, chat_room_id: str, is_typing: bool) -> None:
        await self.channel.send(UserTypingEvent(data=TypingData(chat_room_id=chat_room_id, is_typing=is_typing)))

    async def set_room_flag(self, chat_room_id: str, action: str) -> None:
        """``action`` is one of archive, unarchive, mute, unmute."""
        response = await self.api.patch(f"/chat/rooms/{chat_room_id}/{action}")
        response.raise_for_success(f"Failed to {action} chat", require_data=False)

    async def search_messages(self, query: str, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[Message], int]:
        params = [("query", query), *build_query(filters)]
        response = await self.api.get("/chat/messages/search", params=params)
        data = response.raise_for_success("Failed to search messages")
        messages = [Message.model_validate(raw) for raw in data.get("messages", [])]
        return messages, data.get("total", len(messages))
