"""Cached catalog, bookings and payment methods bound by the UI."""
import asyncio
from typing import Any, Dict, List, Optional

from ..shared.utils import merge_by_id
from .bookings import BookingService
from .errors import ClientError
from .logging_config import get_logger
from .schemas import (
    Availability,
    Booking,
    BookingRequest,
    BookingStatus,
    PaymentInfo,
    PaymentMethod,
    Refund,
    Review,
    Service,
)
from .store import ObservableStore, RequestSequence

logger = get_logger("booking_store")

FEATURED_FILTERS = {"rating": 4.5, "limit": 10}


class BookingStore(ObservableStore):
    """One authoritative copy of each collection.

    Mutations wait for the server and then merge the returned entity by ``id``;
    a failed mutation leaves the cache as it was. List loads tag each request
    and drop any response that is no longer the latest one issued.
    """

    def __init__(self, service: BookingService):
        super().__init__()
        self.service = service
        self.services: List[Service] = []
        self.featured_services: List[Service] = []
        self.bookings: List[Booking] = []
        self.payment_methods: List[PaymentMethod] = []
        self.selected_service: Optional[Service] = None
        self.current_booking: Optional[Booking] = None
        self.is_loading_services = False
        self.is_loading_bookings = False
        self._services_seq = RequestSequence()
        self._bookings_seq = RequestSequence()

    async def initialize(self) -> None:
        await asyncio.gather(self.load_featured_services(), self.load_payment_methods())

    # --- services ---

    async def load_services(self, filters: Optional[Dict[str, Any]] = None) -> None:
        tag = self._services_seq.issue()
        self.is_loading_services = True
        self._notify()
        try:
            services, _ = await self.service.get_services(filters)
        except ClientError as exc:
            if self._services_seq.is_current(tag):
                self.is_loading_services = False
                self._record_error(exc, "Failed to load services")
            raise
        if not self._services_seq.is_current(tag):
            logger.debug("STALE_RESPONSE_DROPPED collection=services tag=%s", tag)
            return
        self.services = services
        self.is_loading_services = False
        self._notify()

    async def load_featured_services(self) -> None:
        try:
            services, _ = await self.service.get_services(FEATURED_FILTERS)
        except ClientError as exc:
            self._record_error(exc, "Failed to load featured services")
            raise
        self.featured_services = services
        self._notify()

    async def get_service(self, service_id: str) -> Service:
        try:
            return await self.service.get_service(service_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to load service")
            raise

    async def search_services(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[Service]:
        try:
            services, _ = await self.service.get_services({**(filters or {}), "search": query})
        except ClientError as exc:
            self._record_error(exc, "Search failed")
            raise
        return services

    async def check_availability(self, query: Dict[str, Any]) -> Availability:
        try:
            return await self.service.check_availability(query)
        except ClientError as exc:
            self._record_error(exc, "Failed to check availability")
            raise

    async def get_service_reviews(self, service_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        try:
            return await self.service.get_service_reviews(service_id, page, limit)
        except ClientError as exc:
            self._record_error(exc, "Failed to fetch reviews")
            raise

    # --- bookings ---

    async def load_bookings(self, filters: Optional[Dict[str, Any]] = None) -> None:
        tag = self._bookings_seq.issue()
        self.is_loading_bookings = True
        self._notify()
        try:
            bookings, _ = await self.service.get_bookings(filters)
        except ClientError as exc:
            if self._bookings_seq.is_current(tag):
                self.is_loading_bookings = False
                self._record_error(exc, "Failed to load bookings")
            raise
        if not self._bookings_seq.is_current(tag):
            logger.debug("STALE_RESPONSE_DROPPED collection=bookings tag=%s", tag)
            return
        self.bookings = bookings
        self.is_loading_bookings = False
        self._notify()

    async def get_booking(self, booking_id: str) -> Booking:
        try:
            return await self.service.get_booking(booking_id)
        except ClientError as exc:
            self._record_error(exc, "Failed to fetch booking")
            raise

    async def create_booking(self, request: BookingRequest) -> Booking:
        try:
            booking = await self.service.create_booking(request)
        except ClientError as exc:
            self._record_error(exc, "Failed to create booking")
            raise
        self.current_booking = booking
        self._merge_booking(booking)
        return booking

    async def update_booking_status(self, booking_id: str, status: BookingStatus, notes: Optional[str] = None) -> Booking:
        try:
            booking = await self.service.update_booking_status(booking_id, status, notes)
        except ClientError as exc:
            self._record_error(exc, "Failed to update booking")
            raise
        self._merge_booking(booking)
        return booking

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        try:
            booking = await self.service.cancel_booking(booking_id, reason)
        except ClientError as exc:
            self._record_error(exc, "Failed to cancel booking")
            raise
        self._merge_booking(booking)
        return booking

    async def process_payment(self, booking_id: str, payment_method: PaymentMethod) -> PaymentInfo:
        try:
            payment = await self.service.process_payment(booking_id, payment_method)
            booking = await self.service.get_booking(booking_id)
        except ClientError as exc:
            self._record_error(exc, "Payment failed")
            raise
        self._merge_booking(booking)
        return payment

    async def request_refund(self, booking_id: str, reason: str) -> Refund:
        try:
            return await self.service.request_refund(booking_id, reason)
        except ClientError as exc:
            self._record_error(exc, "Refund request failed")
            raise

    async def submit_review(
        self, booking_id: str, rating: int, comment: Optional[str] = None, images: Optional[List[str]] = None
    ) -> Review:
        try:
            review = await self.service.submit_review(booking_id, rating, comment, images)
        except ClientError as exc:
            self._record_error(exc, "Failed to submit review")
            raise
        await self.load_bookings()
        return review

    # --- payment methods ---

    async def load_payment_methods(self) -> None:
        try:
            methods = await self.service.get_payment_methods()
        except ClientError as exc:
            self._record_error(exc, "Failed to load payment methods")
            raise
        self.payment_methods = methods
        self._notify()

    async def save_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod:
        try:
            saved = await self.service.save_payment_method(payment_method)
        except ClientError as exc:
            self._record_error(exc, "Failed to save payment method")
            raise
        self.payment_methods = [*self.payment_methods, saved]
        self._notify()
        return saved

    async def delete_payment_method(self, token: str) -> None:
        try:
            await self.service.delete_payment_method(token)
        except ClientError as exc:
            self._record_error(exc, "Failed to delete payment method")
            raise
        self.payment_methods = [m for m in self.payment_methods if m.token != token]
        self._notify()

    # --- local selection ---

    def set_selected_service(self, service: Optional[Service]) -> None:
        self.selected_service = service
        self._notify()

    def set_current_booking(self, booking: Optional[Booking]) -> None:
        self.current_booking = booking
        self._notify()

    async def refresh_data(self) -> None:
        results = await asyncio.gather(
            self.load_featured_services(),
            self.load_bookings(),
            self.load_payment_methods(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("REFRESH_PARTIAL_FAIL reason=%s", result)

    def _merge_booking(self, booking: Booking) -> None:
        self.bookings = merge_by_id(self.bookings, booking)
        if self.current_booking is not None and self.current_booking.id == booking.id:
            self.current_booking = booking
        self._notify()
