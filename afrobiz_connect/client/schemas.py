"""Pydantic schemas for request and response bodies."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import ApiError, NotFoundError


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Pagination(WireModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ResponseMeta(WireModel):
    pagination: Optional[Pagination] = None


class ApiResponse(WireModel):
    success: bool
    data: Any = None
    message: Optional[str] = None
    errors: Optional[List[str]] = None
    meta: Optional[ResponseMeta] = None
    status_code: int = Field(default=200, exclude=True)

    def raise_for_success(self, default_message: str, require_data: bool = True) -> Any:
        """Return ``data`` or raise the failure this envelope reports."""
        if self.success and (self.data is not None or not require_data):
            return self.data
        if self.success:
            raise NotFoundError(self.message or default_message, details=self.errors)
        raise ApiError(self.message or default_message, status=self.status_code, details=self.errors)


# --- Auth ---


class LoginCredentials(WireModel):
    email: str
    password: str


class Location(WireModel):
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class RegisterData(WireModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    password: str
    confirm_password: str
    user_type: Literal["customer", "business"] = "customer"
    business_name: Optional[str] = None
    business_category: Optional[str] = None
    location: Optional[Location] = None


class UserProfile(WireModel):
    bio: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None
    location: Optional[Location] = None


class User(WireModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    user_type: str = "customer"
    avatar: Optional[str] = None
    verified: bool = False
    email_verified: bool = False
    phone_verified: bool = False
    profile: Optional[UserProfile] = None
    business: Optional[Dict[str, Any]] = None


class AuthTokens(WireModel):
    access_token: str
    refresh_token: str
    expires_in: Optional[int] = None


class AuthResponse(WireModel):
    user: User
    tokens: AuthTokens


# --- Catalog and bookings ---


class Price(WireModel):
    amount: float
    currency: str
    type: str = "fixed"


class Service(WireModel):
    id: str
    business_id: Optional[str] = None
    name: str
    description: str = ""
    category: str = ""
    subcategory: Optional[str] = None
    price: Optional[Price] = None
    features: List[str] = []
    gallery: List[str] = []
    rating: Optional[float] = None
    review_count: Optional[int] = None
    is_active: bool = True


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    REFUNDED = "refunded"


class TimeSlot(WireModel):
    start: str
    end: str
    is_booked: Optional[bool] = None


class PaymentMethod(WireModel):
    type: str
    provider: Optional[str] = None
    token: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class PaymentInfo(WireModel):
    id: str
    method: Optional[PaymentMethod] = None
    status: str
    amount: float
    currency: str
    transaction_id: Optional[str] = None


class BookingRequest(WireModel):
    service_id: str
    date: str
    time_slot: TimeSlot
    duration: Optional[int] = None
    location: Optional[Dict[str, Any]] = None
    requirements: Optional[List[str]] = None
    notes: Optional[str] = None
    payment_method: PaymentMethod


class Booking(WireModel):
    id: str
    customer_id: Optional[str] = None
    business_id: Optional[str] = None
    service_id: str
    service: Optional[Service] = None
    status: BookingStatus
    date: str
    time_slot: Optional[TimeSlot] = None
    pricing: Optional[Dict[str, Any]] = None
    payment: Optional[PaymentInfo] = None
    notes: Optional[str] = None
    confirmation_code: Optional[str] = None


class Review(WireModel):
    id: str
    booking_id: Optional[str] = None
    service_id: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    images: Optional[List[str]] = None


class Refund(WireModel):
    refund_id: str
    status: str
    amount: float
    estimated_processing_time: Optional[str] = None


class Availability(WireModel):
    available: bool
    slots: List[Dict[str, Any]] = []


# --- Chat ---


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    LOCATION = "location"
    SYSTEM = "system"
    BOOKING_UPDATE = "booking_update"
    PAYMENT_UPDATE = "payment_update"


class Attachment(WireModel):
    id: str
    type: str
    name: str
    url: str
    size: int = 0
    mime_type: Optional[str] = None
    thumbnail_url: Optional[str] = None


class Message(WireModel):
    id: str
    chat_room_id: str
    sender_id: str
    type: MessageType = MessageType.TEXT
    content: str = ""
    attachments: List[Attachment] = []
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_delivered: bool = False
    is_read: bool = False
    client_message_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class Participant(WireModel):
    user_id: str
    first_name: str = ""
    last_name: str = ""
    avatar: Optional[str] = None
    role: str = "customer"
    is_online: bool = False


class ChatRoom(WireModel):
    id: str
    type: str = "direct"
    name: Optional[str] = None
    participants: List[Participant] = []
    last_message: Optional[Message] = None
    unread_count: int = 0
    is_archived: bool = False
    is_muted: bool = False
    booking_id: Optional[str] = None
    business_id: Optional[str] = None


class UploadFile(BaseModel):
    """One file part of a multipart upload."""

    field: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class SendMessageRequest(WireModel):
    chat_room_id: str
    type: MessageType = MessageType.TEXT
    content: str
    reply_to_message_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    client_message_id: str = Field(default_factory=lambda: uuid4().hex)
    attachments: List[UploadFile] = Field(default=[], exclude=True)


class CreateChatRequest(WireModel):
    type: Literal["direct", "group"] = "direct"
    participant_ids: List[str]
    name: Optional[str] = None
    description: Optional[str] = None
    booking_id: Optional[str] = None
