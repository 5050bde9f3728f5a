"""Order cancellation — commands and handler.

Cancelling closes every open payment attempt in the same unit of work. The
stock the order holds is returned afterwards by the engine, one product at a
time, and ``MarkInventoryReleased`` records that the order holds nothing.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from grocery.domain import grocery
from grocery.order.order import Order, OrderStatus
from grocery.order.progress import assert_expected_status
from grocery.payment.payment import Payment

logger = structlog.get_logger(__name__)


@grocery.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    expected_status = String(required=True, max_length=50, choices=OrderStatus)
    reason = String(required=True, max_length=500)
    actor = String(required=True, max_length=100)


@grocery.command(part_of="Order")
class MarkInventoryReleased:
    order_id = Identifier(required=True)


@grocery.command_handler(part_of=Order)
class CancellationHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        order = order_repo.get(command.order_id)
        assert_expected_status(order, command.expected_status, OrderStatus.CANCELLED.value)

        order.cancel(command.reason, command.actor)

        for payment in payment_repo.for_order(str(order.id)):
            if payment.is_open():
                payment.cancel(f"Order cancelled: {command.reason}")
                payment_repo.add(payment)
                logger.info(
                    "Open payment cancelled with its order",
                    order_id=str(order.id),
                    payment_id=str(payment.id),
                )

        order_repo.add(order)
        return order.status

    @handle(MarkInventoryReleased)
    def mark_inventory_released(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_inventory_released()
        repo.add(order)
