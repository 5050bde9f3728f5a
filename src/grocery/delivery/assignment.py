"""Courier assignment and pickup — commands and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from grocery.delivery.delivery import Delivery
from grocery.domain import grocery


@grocery.command(part_of="Delivery")
class AssignCourier:
    order_id = Identifier(required=True)
    courier_id = Identifier(required=True)
    courier_name = String(required=True, max_length=100)
    courier_phone = String(max_length=20)
    actor = String(required=True, max_length=100)


@grocery.command(part_of="Delivery")
class PickUpDelivery:
    delivery_id = Identifier(required=True)


@grocery.command_handler(part_of=Delivery)
class AssignmentHandler:
    @handle(AssignCourier)
    def assign_courier(self, command):
        delivery = Delivery.create(
            order_id=command.order_id,
            courier_id=command.courier_id,
            courier_name=command.courier_name,
            courier_phone=command.courier_phone,
            actor=command.actor,
        )
        current_domain.repository_for(Delivery).add(delivery)
        return str(delivery.id)

    @handle(PickUpDelivery)
    def pick_up(self, command):
        repo = current_domain.repository_for(Delivery)
        delivery = repo.get(command.delivery_id)
        delivery.mark_picked_up()
        repo.add(delivery)
