"""Stock movements — commands and handler.

Each handler updates the StockItem's cached quantity and appends the
matching InventoryMovement inside a single unit of work.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from grocery.domain import grocery
from grocery.exceptions import InsufficientStockError
from grocery.inventory.stock import InventoryMovement, MovementReason, StockItem


@grocery.command(part_of="StockItem")
class ReceiveStock:
    """Put units on the shelf, creating the stock item on first receipt."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    actor = String(max_length=100)
    note = String(max_length=500)


@grocery.command(part_of="StockItem")
class ReserveStock:
    """Take units off the shelf for an order."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    actor = String(max_length=100)
    order_id = Identifier()
    note = String(max_length=500)


@grocery.command(part_of="StockItem")
class ReleaseStock:
    """Return units that an order no longer needs."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    actor = String(max_length=100)
    order_id = Identifier()
    note = String(max_length=500)


@grocery.command_handler(part_of=StockItem)
class StockMovementHandler:
    @handle(ReceiveStock)
    def receive_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        try:
            item = repo.get(command.product_id)
        except ObjectNotFoundError:
            item = StockItem.create(command.product_id)

        resulting = item.receive(command.quantity, actor=command.actor)
        movement = InventoryMovement.record(
            product_id=command.product_id,
            delta=command.quantity,
            reason=MovementReason.RESTOCK,
            resulting_quantity=resulting,
            actor=command.actor,
            note=command.note,
        )
        repo.add(item)
        current_domain.repository_for(InventoryMovement).add(movement)
        return str(movement.id)

    @handle(ReserveStock)
    def reserve_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        try:
            item = repo.get(command.product_id)
        except ObjectNotFoundError:
            raise InsufficientStockError(str(command.product_id), command.quantity, 0) from None

        resulting = item.reserve(command.quantity, order_id=command.order_id, actor=command.actor)
        movement = InventoryMovement.record(
            product_id=command.product_id,
            delta=-command.quantity,
            reason=MovementReason.ORDER_RESERVATION,
            resulting_quantity=resulting,
            actor=command.actor,
            order_id=command.order_id,
            note=command.note,
        )
        repo.add(item)
        current_domain.repository_for(InventoryMovement).add(movement)
        return str(movement.id)

    @handle(ReleaseStock)
    def release_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        item = repo.get(command.product_id)

        resulting = item.release(command.quantity, order_id=command.order_id, actor=command.actor)
        movement = InventoryMovement.record(
            product_id=command.product_id,
            delta=command.quantity,
            reason=MovementReason.ORDER_RELEASE,
            resulting_quantity=resulting,
            actor=command.actor,
            order_id=command.order_id,
            note=command.note,
        )
        repo.add(item)
        current_domain.repository_for(InventoryMovement).add(movement)
        return str(movement.id)
