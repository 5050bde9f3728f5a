"""Order pricing and numbering.

Delivery is a flat fee, waived once the basket reaches the free-delivery
threshold. Tax is a configurable rate on the basket subtotal; it defaults to
zero because shelf prices already include VAT. The total is computed once at
placement and stored on the order.
"""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime

from grocery.config import Settings, get_settings


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    tax: float
    delivery_fee: float
    discount: float
    total: float
    currency: str

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "delivery_fee": self.delivery_fee,
            "discount": self.discount,
            "total": self.total,
            "currency": self.currency,
        }


def delivery_fee_for(subtotal: float, settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    if subtotal >= settings.free_delivery_threshold:
        return 0.0
    return settings.delivery_fee


def price_order(line_subtotals: list[float], discount: float = 0.0, settings: Settings | None = None) -> PriceBreakdown:
    settings = settings or get_settings()
    subtotal = round(sum(line_subtotals), 2)
    tax = round(subtotal * settings.tax_rate, 2)
    fee = delivery_fee_for(subtotal, settings)
    discount = round(min(discount, subtotal), 2)
    total = round(subtotal + fee + tax - discount, 2)
    return PriceBreakdown(
        subtotal=subtotal,
        tax=tax,
        delivery_fee=fee,
        discount=discount,
        total=total,
        currency=settings.currency,
    )


def generate_order_number(now: datetime | None = None) -> str:
    """Human-readable order number, e.g. ``FG20261018-7Q3K9A``."""
    now = now or datetime.now(UTC)
    suffix = "".join(secrets.choice("ABCDEFGHJKLMNPQRSTUVWXYZ23456789") for _ in range(6))
    return f"FG{now:%Y%m%d}-{suffix}"
