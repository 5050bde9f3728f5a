"""Checkout input validation.

Errors are collected per field and raised together as one Protean
``ValidationError``, the same shape aggregate invariants produce.
"""

import re
from datetime import UTC, date, datetime, timedelta, timezone

from protean.exceptions import ValidationError

from grocery.config import Settings, get_settings
from grocery.payment.payment import PaymentMethod

TANZANIAN_PHONE = re.compile(r"^(\+255|0)[67]\d{8}$")

# East Africa Time has no daylight saving
EAT = timezone(timedelta(hours=3), name="EAT")


def normalize_phone(phone: str) -> str:
    return re.sub(r"[\s-]", "", phone or "")


def today_in_tanzania(now: datetime | None = None) -> date:
    now = now or datetime.now(UTC)
    return now.astimezone(EAT).date()


def validate_checkout(
    line_items: list[dict],
    delivery: dict,
    payment_method: str,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> None:
    settings = settings or get_settings()
    errors: dict[str, list[str]] = {}

    if not line_items:
        errors.setdefault("line_items", []).append("Cart is empty")
    for item in line_items:
        if not item.get("product_id"):
            errors.setdefault("line_items", []).append("Every line needs a product")
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            errors.setdefault("line_items", []).append(
                f"Quantity for {item.get('product_id')} must be a positive whole number"
            )

    if not (delivery.get("address") or "").strip():
        errors.setdefault("delivery_address", []).append("Delivery address is required")

    if not TANZANIAN_PHONE.match(normalize_phone(delivery.get("phone"))):
        errors.setdefault("delivery_phone", []).append("Phone must be a Tanzanian mobile number (+255 or 0, then 6/7)")

    delivery_date = delivery.get("date")
    if delivery_date is not None and delivery_date < today_in_tanzania(now):
        errors.setdefault("delivery_date", []).append("Delivery date cannot be in the past")

    time_window = delivery.get("time_window")
    if time_window is not None and time_window not in settings.delivery_time_windows:
        errors.setdefault("delivery_time_window", []).append(f"Unknown delivery window {time_window}")

    if payment_method not in {m.value for m in PaymentMethod}:
        errors.setdefault("payment_method", []).append(f"Unsupported payment method {payment_method}")

    if errors:
        raise ValidationError(errors)
