"""Stock aggregates — live quantity per product plus the movement ledger.

``StockItem`` holds the cached quantity that reservations check against.
``InventoryMovement`` is the append-only log: every change to a StockItem's
quantity is written alongside a movement carrying the signed delta and the
quantity that resulted, so the cached figure can always be audited.

A StockItem's identity is the product id it tracks.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from grocery.domain import grocery
from grocery.exceptions import InsufficientStockError
from grocery.inventory.events import StockReceived, StockReleased, StockReserved


class MovementReason(Enum):
    RESTOCK = "Restock"
    ORDER_RESERVATION = "Order_Reservation"
    ORDER_RELEASE = "Order_Release"


def _require_positive(quantity: int) -> None:
    if quantity is None or quantity <= 0:
        raise ValidationError({"quantity": ["Quantity must be positive"]})


@grocery.aggregate
class StockItem:
    product_id = Identifier(required=True)
    quantity = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, product_id: str):
        now = datetime.now(UTC)
        return cls(id=str(product_id), product_id=str(product_id), quantity=0, created_at=now, updated_at=now)

    def receive(self, quantity: int, actor: str | None = None) -> int:
        _require_positive(quantity)
        now = datetime.now(UTC)
        self.quantity = self.quantity + quantity
        self.updated_at = now
        self.raise_(
            StockReceived(
                product_id=self.product_id,
                quantity=quantity,
                resulting_quantity=self.quantity,
                actor=actor,
                occurred_at=now,
            )
        )
        return self.quantity

    def reserve(self, quantity: int, order_id: str | None = None, actor: str | None = None) -> int:
        _require_positive(quantity)
        if quantity > self.quantity:
            raise InsufficientStockError(self.product_id, quantity, self.quantity)

        now = datetime.now(UTC)
        self.quantity = self.quantity - quantity
        self.updated_at = now
        self.raise_(
            StockReserved(
                product_id=self.product_id,
                quantity=quantity,
                resulting_quantity=self.quantity,
                order_id=order_id,
                actor=actor,
                occurred_at=now,
            )
        )
        return self.quantity

    def release(self, quantity: int, order_id: str | None = None, actor: str | None = None) -> int:
        _require_positive(quantity)
        now = datetime.now(UTC)
        self.quantity = self.quantity + quantity
        self.updated_at = now
        self.raise_(
            StockReleased(
                product_id=self.product_id,
                quantity=quantity,
                resulting_quantity=self.quantity,
                order_id=order_id,
                actor=actor,
                occurred_at=now,
            )
        )
        return self.quantity


@grocery.aggregate
class InventoryMovement:
    product_id = Identifier(required=True)
    delta = Integer(required=True)
    reason = String(max_length=50, choices=MovementReason, required=True)
    resulting_quantity = Integer(required=True, min_value=0)
    actor = String(max_length=100)
    order_id = Identifier()
    note = String(max_length=500)
    recorded_at = DateTime(required=True)

    @classmethod
    def record(
        cls,
        product_id: str,
        delta: int,
        reason: MovementReason,
        resulting_quantity: int,
        actor: str | None = None,
        order_id: str | None = None,
        note: str | None = None,
    ):
        return cls(
            product_id=str(product_id),
            delta=delta,
            reason=reason.value,
            resulting_quantity=resulting_quantity,
            actor=actor,
            order_id=order_id,
            note=note,
            recorded_at=datetime.now(UTC),
        )


@grocery.repository(part_of=InventoryMovement)
class InventoryMovementRepository:
    """Read helpers over the append-only movement log."""

    def for_product(self, product_id: str) -> list[InventoryMovement]:
        movements = self._dao.query.filter(product_id=str(product_id)).all().items
        return sorted(movements, key=lambda m: m.recorded_at)

    def for_order(self, order_id: str, product_id: str | None = None) -> list[InventoryMovement]:
        criteria = {"order_id": str(order_id)}
        if product_id is not None:
            criteria["product_id"] = str(product_id)
        movements = self._dao.query.filter(**criteria).all().items
        return sorted(movements, key=lambda m: m.recorded_at)

    def held_for_order(self, order_id: str, product_id: str) -> int:
        """Units currently held by ``order_id`` for ``product_id``.

        Reservations are negative deltas and releases positive ones, so the
        held amount is the negated sum.
        """
        return -sum(m.delta for m in self.for_order(order_id, product_id))
