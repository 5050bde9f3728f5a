"""Order progress — command and handler for the fulfillment path.

CONFIRMED is reached only through a completed payment and CANCELLED only
through cancellation; this handler covers the remaining forward moves.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from grocery.delivery.delivery import Delivery
from grocery.domain import grocery
from grocery.exceptions import IllegalTransitionError
from grocery.order.order import Order, OrderStatus


@grocery.command(part_of="Order")
class AdvanceOrderStatus:
    order_id = Identifier(required=True)
    expected_status = String(required=True, max_length=50, choices=OrderStatus)
    target_status = String(required=True, max_length=50, choices=OrderStatus)
    actor = String(required=True, max_length=100)
    notes = String(max_length=500)
    delivery_id = Identifier()


def assert_expected_status(order: Order, expected_status: str, target_status: str) -> None:
    """Compare-and-set guard: refuse if the order moved since the caller read it."""
    if order.status != expected_status:
        raise IllegalTransitionError("order", order.status, target_status)


@grocery.command_handler(part_of=Order)
class AdvanceOrderStatusHandler:
    @handle(AdvanceOrderStatus)
    def advance_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        assert_expected_status(order, command.expected_status, command.target_status)

        target = OrderStatus(command.target_status)
        if target == OrderStatus.PREPARING:
            order.start_preparing(command.actor, command.notes)
        elif target == OrderStatus.READY_FOR_PICKUP:
            order.mark_ready_for_pickup(command.actor, command.notes)
        elif target == OrderStatus.OUT_FOR_DELIVERY:
            self._assert_delivery_exists(order, command.delivery_id, target)
            order.hand_to_courier(str(command.delivery_id), command.actor, command.notes)
        elif target == OrderStatus.DELIVERED:
            order.mark_delivered(command.actor, command.notes)
        else:
            raise IllegalTransitionError("order", order.status, target.value)

        repo.add(order)
        return order.status

    def _assert_delivery_exists(self, order: Order, delivery_id: str | None, target: OrderStatus) -> None:
        if not delivery_id:
            raise IllegalTransitionError("order", order.status, target.value)
        try:
            delivery = current_domain.repository_for(Delivery).get(delivery_id)
        except ObjectNotFoundError:
            raise IllegalTransitionError("order", order.status, target.value) from None
        if str(delivery.order_id) != str(order.id):
            raise IllegalTransitionError("order", order.status, target.value)
