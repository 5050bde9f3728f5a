"""Read views assembled from the aggregates.

These are plain query functions rather than projectors: every view reads the
current state of the owning aggregates, so it can never lag behind a write.
"""

from dataclasses import dataclass, field

from protean.utils.globals import current_domain

from grocery.delivery.delivery import Delivery, LocationUpdate
from grocery.order.order import Order
from grocery.payment.payment import Payment
from grocery.reconciliation.receipt import WebhookReceipt
from grocery.utils.time import utc


@dataclass
class OrderTrackingView:
    order: Order
    payments: list[Payment] = field(default_factory=list)
    delivery: Delivery | None = None
    current_location: LocationUpdate | None = None

    @property
    def latest_payment(self) -> Payment | None:
        return self.payments[-1] if self.payments else None


def order_tracking(order_id: str) -> OrderTrackingView:
    """Everything a customer sees on the order page."""
    order = current_domain.repository_for(Order).get(str(order_id))
    payments = current_domain.repository_for(Payment).for_order(str(order.id))

    delivery = None
    location = None
    if order.delivery_id:
        delivery = current_domain.repository_for(Delivery).get(str(order.delivery_id))
        location = current_domain.repository_for(LocationUpdate).latest(str(delivery.id))

    return OrderTrackingView(order=order, payments=payments, delivery=delivery, current_location=location)


def orders_by_status(status: str) -> list[Order]:
    orders = current_domain.repository_for(Order).with_status(status)
    return sorted(orders, key=lambda o: utc(o.created_at))


def active_deliveries() -> list[Delivery]:
    return current_domain.repository_for(Delivery).active()


def reconciliation_anomalies() -> list[WebhookReceipt]:
    """Receipts that need a human: orphans, mismatches, anomalies, malformed bodies."""
    return current_domain.repository_for(WebhookReceipt).escalated()
