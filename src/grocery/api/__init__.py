"""Grocery API package."""

from grocery.api.errors import register_error_handlers
from grocery.api.routes import (
    delivery_router,
    inventory_router,
    order_router,
    payment_router,
    reconciliation_router,
)

__all__ = [
    "delivery_router",
    "inventory_router",
    "order_router",
    "payment_router",
    "reconciliation_router",
    "register_error_handlers",
]
