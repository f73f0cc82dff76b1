"""Catalog, booking and payment-method endpoints."""
from typing import Any, Dict, List, Optional, Tuple

from ..shared.utils import build_query, compact
from .api import APIClient
from .errors import ApiError, ClientError, NetworkError, ParseError, RequestTimeoutError
from .fallback_data import fallback_payment_methods, fallback_services
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

logger = get_logger("bookings")


def is_unavailable(exc: ClientError) -> bool:
    """True when the failure means the endpoint could not serve us at all."""
    if isinstance(exc, (NetworkError, RequestTimeoutError, ParseError)):
        return True
    return isinstance(exc, ApiError) and (exc.status == 404 or exc.status >= 500)


class BookingService:
    def __init__(self, api: APIClient):
        self.api = api

    # --- services ---

    async def get_services(self, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[Service], int]:
        try:
            response = await self.api.get("/services", params=build_query(filters), requires_auth=False)
            data = response.raise_for_success("Failed to fetch services")
        except ClientError as exc:
            if not is_unavailable(exc):
                raise
            logger.warning("CATALOG_FALLBACK endpoint=/services reason=%s", exc.message)
            services = fallback_services(filters)
            return services, len(services)
        services = [Service.model_validate(raw) for raw in data.get("services", [])]
        return services, data.get("total", len(services))

    async def get_service(self, service_id: str) -> Service:
        response = await self.api.get(f"/services/{service_id}", requires_auth=False)
        return Service.model_validate(response.raise_for_success("Service not found"))

    async def get_service_reviews(self, service_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        response = await self.api.get(
            f"/services/{service_id}/reviews", params={"page": page, "limit": limit}, requires_auth=False
        )
        data = response.raise_for_success("Failed to fetch reviews")
        return {
            "reviews": [Review.model_validate(raw) for raw in data.get("reviews", [])],
            "total": data.get("total", 0),
            "averageRating": data.get("averageRating"),
        }

    async def check_availability(self, query: Dict[str, Any]) -> Availability:
        response = await self.api.post("/bookings/check-availability", query, requires_auth=False)
        return Availability.model_validate(response.raise_for_success("Failed to check availability"))

    # --- bookings ---

    async def create_booking(self, request: BookingRequest) -> Booking:
        response = await self.api.post("/bookings", request.to_wire())
        return Booking.model_validate(response.raise_for_success("Failed to create booking"))

    async def get_bookings(self, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[Booking], int]:
        response = await self.api.get("/bookings", params=build_query(filters))
        data = response.raise_for_success("Failed to fetch bookings")
        bookings = [Booking.model_validate(raw) for raw in data.get("bookings", [])]
        return bookings, data.get("total", len(bookings))

    async def get_booking(self, booking_id: str) -> Booking:
        response = await self.api.get(f"/bookings/{booking_id}")
        return Booking.model_validate(response.raise_for_success("Booking not found"))

    async def update_booking_status(self, booking_id: str, status: BookingStatus, notes: Optional[str] = None) -> Booking:
        body = compact({"status": BookingStatus(status).value, "notes": notes})
        response = await self.api.patch(f"/bookings/{booking_id}/status", body)
        return Booking.model_validate(response.raise_for_success("Failed to update booking status"))

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        response = await self.api.patch(f"/bookings/{booking_id}/cancel", compact({"reason": reason}))
        return Booking.model_validate(response.raise_for_success("Failed to cancel booking"))

    async def process_payment(self, booking_id: str, payment_method: PaymentMethod) -> PaymentInfo:
        response = await self.api.post(f"/bookings/{booking_id}/payment", {"paymentMethod": payment_method.to_wire()})
        return PaymentInfo.model_validate(response.raise_for_success("Payment processing failed"))

    async def request_refund(self, booking_id: str, reason: str) -> Refund:
        response = await self.api.post(f"/bookings/{booking_id}/refund", {"reason": reason})
        return Refund.model_validate(response.raise_for_success("Refund request failed"))

    async def submit_review(
        self, booking_id: str, rating: int, comment: Optional[str] = None, images: Optional[List[str]] = None
    ) -> Review:
        body = compact({"rating": rating, "comment": comment, "images": images})
        response = await self.api.post(f"/bookings/{booking_id}/review", body)
        return Review.model_validate(response.raise_for_success("Failed to submit review"))

    # --- payment methods ---

    async def get_payment_methods(self) -> List[PaymentMethod]:
        try:
            response = await self.api.get("/payment-methods")
            data = response.raise_for_success("Failed to fetch payment methods")
        except ClientError as exc:
            if not is_unavailable(exc):
                raise
            logger.warning("CATALOG_FALLBACK endpoint=/payment-methods reason=%s", exc.message)
            return fallback_payment_methods()
        return [PaymentMethod.model_validate(raw) for raw in data]

    async def save_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod:
        body = payment_method.to_wire()
        body.pop("token", None)
        response = await self.api.post("/payment-methods", body)
        return PaymentMethod.model_validate(response.raise_for_success("Failed to save payment method"))

    async def delete_payment_method(self, token: str) -> None:
        response = await self.api.delete(f"/payment-methods/{token}")
        response.raise_for_success("Failed to delete payment method", require_data=False)
