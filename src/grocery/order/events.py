"""Order domain events — immutable facts about order state changes.

All events are past tense, versioned, and carry enough data for read models
and notification senders downstream.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String

from grocery.domain import grocery


@grocery.event(part_of="Order")
class OrderPlaced:
    """An order was accepted with all of its lines reserved."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    total_amount = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    item_count = Integer(required=True)
    placed_at = DateTime(required=True)


@grocery.event(part_of="Order")
class OrderConfirmed:
    """Payment was collected (or deferred to cash on delivery) and the order is confirmed."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    confirmed_at = DateTime(required=True)


@grocery.event(part_of="Order")
class OrderStatusChanged:
    """The order moved along the fulfillment path."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    actor = String(required=True)
    changed_at = DateTime(required=True)


@grocery.event(part_of="Order")
class OrderPaymentStatusChanged:
    """The order's view of its payment changed."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    changed_at = DateTime(required=True)


@grocery.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled before it left the shop."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_by = String(required=True)
    cancelled_at = DateTime(required=True)


@grocery.event(part_of="Order")
class OrderInventoryReleased:
    """Every unit the order held has been returned to stock."""

    __version__ = 1

    order_id = Identifier(required=True)
    released_at = DateTime(required=True)
