"""Order aggregate (CQRS) — the core of the order lifecycle.

The Order owns two pieces of state that nobody else writes: ``status`` (where
the groceries are) and ``payment_status`` (what we know about the money).
Line items carry the name and unit price captured when the order was placed,
so later catalogue changes never alter an order. Every status change is
appended to ``status_history`` with the actor that caused it.

State Machine:
    PENDING → CONFIRMED → PREPARING → READY_FOR_PICKUP → OUT_FOR_DELIVERY → DELIVERED
    {PENDING, CONFIRMED, PREPARING, READY_FOR_PICKUP} → CANCELLED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
)

from grocery.domain import grocery
from grocery.exceptions import IllegalTransitionError
from grocery.order.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderInventoryReleased,
    OrderPaymentStatusChanged,
    OrderPlaced,
    OrderStatusChanged,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    READY_FOR_PICKUP = "Ready_For_Pickup"
    OUT_FOR_DELIVERY = "Out_For_Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderPaymentStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED},
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@grocery.entity(part_of="Order")
class OrderLineItem:
    """A product line with the name and price captured at order time."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    subtotal = Float(required=True, min_value=0.0)


@grocery.entity(part_of="Order")
class StatusChange:
    """One entry in the order's audit trail."""

    from_status = String(max_length=50)
    to_status = String(required=True, max_length=50)
    actor = String(required=True, max_length=100)
    notes = String(max_length=500)
    changed_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@grocery.aggregate
class Order:
    order_number = String(required=True, max_length=50)
    customer_id = Identifier(required=True)
    status = String(
        max_length=50,
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    payment_status = String(
        max_length=50,
        choices=OrderPaymentStatus,
        default=OrderPaymentStatus.PENDING.value,
    )
    payment_method = String(required=True, max_length=50)

    subtotal = Float(default=0.0)
    tax = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    discount = Float(default=0.0)
    total_amount = Float(default=0.0)
    currency = String(max_length=3, default="TZS")

    delivery_address = String(required=True, max_length=500)
    delivery_phone = String(required=True, max_length=20)
    delivery_date = Date()
    delivery_time_window = String(max_length=50)
    delivery_notes = String(max_length=1000)

    line_items = HasMany(OrderLineItem)
    status_history = HasMany(StatusChange)

    inventory_reserved = Boolean(default=False)
    delivery_id = Identifier()
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=100)

    created_at = DateTime()
    updated_at = DateTime()
    confirmed_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_id: str,
        order_number: str,
        customer_id: str,
        items_data: list[dict],
        pricing: dict,
        delivery: dict,
        payment_method: str,
        actor: str,
    ):
        """Create a pending order whose lines are already reserved."""
        now = datetime.now(UTC)
        order = cls(
            id=order_id,
            order_number=order_number,
            customer_id=customer_id,
            status=OrderStatus.PENDING.value,
            payment_status=OrderPaymentStatus.PENDING.value,
            payment_method=payment_method,
            subtotal=pricing["subtotal"],
            tax=pricing["tax"],
            delivery_fee=pricing["delivery_fee"],
            discount=pricing["discount"],
            total_amount=pricing["total"],
            currency=pricing["currency"],
            delivery_address=delivery["address"],
            delivery_phone=delivery["phone"],
            delivery_date=delivery.get("date"),
            delivery_time_window=delivery.get("time_window"),
            delivery_notes=delivery.get("notes"),
            inventory_reserved=True,
            created_at=now,
            updated_at=now,
        )
        for item in items_data:
            order.add_line_items(OrderLineItem(**item))
        order.add_status_history(
            StatusChange(
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                actor=actor,
                changed_at=now,
            )
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                customer_id=customer_id,
                total_amount=order.total_amount,
                currency=order.currency,
                payment_method=payment_method,
                item_count=len(items_data),
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise IllegalTransitionError("order", current.value, target_status.value)

    def _move_to(self, target_status: OrderStatus, actor: str, notes: str | None = None) -> datetime:
        self._assert_can_transition(target_status)
        now = datetime.now(UTC)
        previous = self.status
        self.status = target_status.value
        self.updated_at = now
        self.add_status_history(
            StatusChange(
                from_status=previous,
                to_status=target_status.value,
                actor=actor,
                notes=notes,
                changed_at=now,
            )
        )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=previous,
                to_status=target_status.value,
                actor=actor,
                changed_at=now,
            )
        )
        return now

    def _set_payment_status(self, target: OrderPaymentStatus) -> None:
        if self.payment_status == target.value:
            return
        if self.payment_status == OrderPaymentStatus.COMPLETED.value:
            raise IllegalTransitionError("order payment", self.payment_status, target.value)
        previous = self.payment_status
        now = datetime.now(UTC)
        self.payment_status = target.value
        self.updated_at = now
        self.raise_(
            OrderPaymentStatusChanged(
                order_id=str(self.id),
                from_status=previous,
                to_status=target.value,
                changed_at=now,
            )
        )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def lines_total(self) -> float:
        return sum(item.subtotal for item in self.line_items)

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def record_payment_pending(self) -> None:
        self._set_payment_status(OrderPaymentStatus.PENDING)

    def record_payment_processing(self) -> None:
        self._set_payment_status(OrderPaymentStatus.PROCESSING)

    def record_payment_failed(self) -> None:
        self._set_payment_status(OrderPaymentStatus.FAILED)

    def confirm_payment(self, actor: str, notes: str | None = None) -> None:
        """Money collected (or deferred to the doorstep): PENDING → CONFIRMED."""
        self._assert_can_transition(OrderStatus.CONFIRMED)
        self._set_payment_status(OrderPaymentStatus.COMPLETED)
        now = self._move_to(OrderStatus.CONFIRMED, actor, notes)
        self.confirmed_at = now
        self.raise_(
            OrderConfirmed(
                order_id=str(self.id),
                order_number=self.order_number,
                confirmed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfillment path
    # -------------------------------------------------------------------
    def start_preparing(self, actor: str, notes: str | None = None) -> None:
        self._move_to(OrderStatus.PREPARING, actor, notes)

    def mark_ready_for_pickup(self, actor: str, notes: str | None = None) -> None:
        self._move_to(OrderStatus.READY_FOR_PICKUP, actor, notes)

    def hand_to_courier(self, delivery_id: str, actor: str, notes: str | None = None) -> None:
        """Attach a delivery. A second delivery replaces a failed one while out for delivery."""
        if self.status == OrderStatus.OUT_FOR_DELIVERY.value:
            now = datetime.now(UTC)
            self.add_status_history(
                StatusChange(
                    from_status=self.status,
                    to_status=self.status,
                    actor=actor,
                    notes=notes or f"Courier reassigned (delivery {delivery_id})",
                    changed_at=now,
                )
            )
            self.delivery_id = delivery_id
            self.updated_at = now
            return

        self._move_to(OrderStatus.OUT_FOR_DELIVERY, actor, notes)
        self.delivery_id = delivery_id

    def mark_delivered(self, actor: str, notes: str | None = None) -> None:
        if not self.delivery_id:
            raise IllegalTransitionError("order", self.status, OrderStatus.DELIVERED.value)
        self.delivered_at = self._move_to(OrderStatus.DELIVERED, actor, notes)

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel(self, reason: str, actor: str) -> None:
        previous = self.status
        now = self._move_to(OrderStatus.CANCELLED, actor, reason)
        self.cancellation_reason = reason
        self.cancelled_by = actor
        self.cancelled_at = now
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                reason=reason,
                cancelled_by=actor,
                cancelled_at=now,
            )
        )

    def mark_inventory_released(self) -> None:
        if not self.inventory_reserved:
            return
        now = datetime.now(UTC)
        self.inventory_reserved = False
        self.updated_at = now
        self.raise_(OrderInventoryReleased(order_id=str(self.id), released_at=now))


@grocery.repository(part_of=Order)
class OrderRepository:
    def with_status(self, status: str) -> list[Order]:
        return self._dao.query.filter(status=status).all().items

    def holding_inventory(self, status: str) -> list[Order]:
        return self._dao.query.filter(status=status, inventory_reserved=True).all().items
