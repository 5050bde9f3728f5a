"""InventoryLedger — serialized access to stock per product.

Every call holds the product's lock across the whole unit of work, so two
orders competing for the last units of a product are decided one at a time
and the cached quantity can never go negative.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from grocery.inventory.movements import ReceiveStock, ReleaseStock, ReserveStock
from grocery.inventory.stock import InventoryMovement, StockItem
from grocery.locks import product_locks

logger = structlog.get_logger(__name__)


class InventoryLedger:
    def reserve(
        self,
        product_id: str,
        quantity: int,
        reason: str,
        actor: str,
        order_id: str | None = None,
    ) -> str:
        """Reserve units, returning the movement id. Raises ``InsufficientStockError``."""
        with product_locks.hold(product_id):
            movement_id = current_domain.process(
                ReserveStock(
                    product_id=product_id,
                    quantity=quantity,
                    actor=actor,
                    order_id=order_id,
                    note=reason,
                ),
                asynchronous=False,
            )
        logger.info("Stock reserved", product_id=str(product_id), quantity=quantity, order_id=order_id)
        return movement_id

    def release(
        self,
        product_id: str,
        quantity: int,
        reason: str,
        actor: str,
        order_id: str | None = None,
    ) -> str:
        """Write a compensating positive movement."""
        with product_locks.hold(product_id):
            movement_id = current_domain.process(
                ReleaseStock(
                    product_id=product_id,
                    quantity=quantity,
                    actor=actor,
                    order_id=order_id,
                    note=reason,
                ),
                asynchronous=False,
            )
        logger.info("Stock released", product_id=str(product_id), quantity=quantity, order_id=order_id)
        return movement_id

    def release_for_order(self, order_id: str, product_id: str, quantity: int, reason: str, actor: str) -> int:
        """Release whatever ``order_id`` still holds of ``product_id``, up to ``quantity``.

        Safe to repeat: units already returned for the order are not
        returned twice. Returns the number of units released.
        """
        with product_locks.hold(product_id):
            held = current_domain.repository_for(InventoryMovement).held_for_order(order_id, product_id)
            to_release = min(quantity, held)
            if to_release <= 0:
                return 0
            self.release(product_id, to_release, reason, actor, order_id=order_id)
        return to_release

    def restock(self, product_id: str, quantity: int, actor: str, reason: str = "restock") -> str:
        with product_locks.hold(product_id):
            movement_id = current_domain.process(
                ReceiveStock(product_id=product_id, quantity=quantity, actor=actor, note=reason),
                asynchronous=False,
            )
        logger.info("Stock received", product_id=str(product_id), quantity=quantity, actor=actor)
        return movement_id

    def quantity(self, product_id: str) -> int:
        try:
            return current_domain.repository_for(StockItem).get(str(product_id)).quantity
        except ObjectNotFoundError:
            return 0

    def movements(self, product_id: str) -> list[InventoryMovement]:
        return current_domain.repository_for(InventoryMovement).for_product(product_id)


ledger = InventoryLedger()
