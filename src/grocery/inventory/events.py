"""Inventory domain events — immutable facts about stock movements."""

from protean.fields import DateTime, Identifier, Integer, String

from grocery.domain import grocery


@grocery.event(part_of="StockItem")
class StockReceived:
    """Units were added to the shelf (delivery from a supplier or a correction)."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    resulting_quantity = Integer(required=True)
    actor = String(max_length=100)
    occurred_at = DateTime(required=True)


@grocery.event(part_of="StockItem")
class StockReserved:
    """Units were set aside for an order."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    resulting_quantity = Integer(required=True)
    order_id = Identifier()
    actor = String(max_length=100)
    occurred_at = DateTime(required=True)


@grocery.event(part_of="StockItem")
class StockReleased:
    """Previously reserved units were returned to the shelf."""

    __version__ = 1

    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    resulting_quantity = Integer(required=True)
    order_id = Identifier()
    actor = String(max_length=100)
    occurred_at = DateTime(required=True)
