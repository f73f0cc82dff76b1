"""Built-in catalog used when the read-only list endpoints are unreachable."""
from typing import Any, Dict, List, Optional

from .schemas import PaymentMethod, Service

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


def _schedule(open_: str, close: str, saturday: Optional[tuple], sunday: Optional[tuple]) -> Dict[str, Any]:
    schedule = {day: {"isAvailable": True, "slots": [{"start": open_, "end": close}]} for day in _WEEKDAYS}
    for day, hours in (("saturday", saturday), ("sunday", sunday)):
        slots = [{"start": hours[0], "end": hours[1]}] if hours else []
        schedule[day] = {"isAvailable": bool(hours), "slots": slots}
    return schedule


FALLBACK_SERVICES: List[Dict[str, Any]] = [
    {
        "id": "1",
        "businessId": "business-1",
        "name": "Professional Hair Styling",
        "description": "Expert hair styling and treatment services for all hair types",
        "category": "Beauty",
        "subcategory": "Hair Care",
        "price": {"amount": 150, "currency": "NAD", "type": "fixed"},
        "duration": {"amount": 90, "unit": "minutes"},
        "location": {"type": "business", "address": "Windhoek, Namibia"},
        "availability": {
            "schedule": _schedule("09:00", "17:00", ("10:00", "16:00"), None),
            "advanceBooking": {"min": 2, "max": 30},
        },
        "requirements": ["Clean hair preferred"],
        "features": ["Professional styling", "Hair treatment", "Consultation"],
        "gallery": [],
        "rating": 4.8,
        "reviewCount": 127,
        "isActive": True,
    },
    {
        "id": "2",
        "businessId": "business-2",
        "name": "Traditional African Cuisine Catering",
        "description": "Authentic African dishes for events and celebrations",
        "category": "Food",
        "subcategory": "Catering",
        "price": {"amount": 80, "currency": "NAD", "type": "hourly"},
        "duration": {"amount": 4, "unit": "hours"},
        "location": {"type": "customer", "address": "Windhoek Area"},
        "availability": {
            "schedule": _schedule("08:00", "20:00", ("08:00", "20:00"), ("10:00", "18:00")),
            "advanceBooking": {"min": 24, "max": 60},
        },
        "requirements": ["Kitchen access", "Minimum 10 people"],
        "features": ["Traditional recipes", "Fresh ingredients", "Setup included"],
        "gallery": [],
        "rating": 4.9,
        "reviewCount": 89,
        "isActive": True,
    },
    {
        "id": "3",
        "businessId": "business-3",
        "name": "Custom Tailoring & Alterations",
        "description": "Professional tailoring services for traditional and modern clothing",
        "category": "Fashion",
        "subcategory": "Tailoring",
        "price": {"amount": 200, "currency": "NAD", "type": "fixed"},
        "duration": {"amount": 3, "unit": "days"},
        "location": {"type": "business", "address": "Katutura, Windhoek"},
        "availability": {
            "schedule": _schedule("08:00", "17:00", ("09:00", "15:00"), None),
            "advanceBooking": {"min": 48, "max": 90},
        },
        "requirements": ["Fabric provided by customer", "Measurements required"],
        "features": ["Custom fitting", "Traditional designs", "Modern styles"],
        "gallery": [],
        "rating": 4.7,
        "reviewCount": 156,
        "isActive": True,
    },
]

FALLBACK_PAYMENT_METHODS: List[Dict[str, Any]] = [
    {"type": "mobile_money", "provider": "mtn_mobile_money", "details": {"phoneNumber": "*****1234"}},
    {
        "type": "credit_card",
        "provider": "visa",
        "details": {"cardNumber": "****1234", "expiryMonth": 12, "expiryYear": 2025, "holderName": "John Doe"},
    },
]


def fallback_services(filters: Optional[Dict[str, Any]] = None) -> List[Service]:
    """Apply the catalog filters the server would apply, over the built-in list."""
    filters = filters or {}
    services = [Service.model_validate(raw) for raw in FALLBACK_SERVICES]

    category = filters.get("category")
    if category:
        services = [s for s in services if s.category.lower() == category.lower()]

    search = filters.get("search")
    if search:
        term = search.lower()
        services = [
            s
            for s in services
            if term in s.name.lower() or term in s.description.lower() or term in s.category.lower()
        ]

    rating = filters.get("rating")
    if rating:
        services = [s for s in services if (s.rating or 0) >= rating]

    price_min = filters.get("priceMin")
    if price_min is not None:
        services = [s for s in services if s.price and s.price.amount >= price_min]
    price_max = filters.get("priceMax")
    if price_max is not None:
        services = [s for s in services if s.price and s.price.amount <= price_max]

    limit = filters.get("limit")
    if limit:
        services = services[:limit]
    return services


def fallback_payment_methods() -> List[PaymentMethod]:
    return [PaymentMethod.model_validate(raw) for raw in FALLBACK_PAYMENT_METHODS]
