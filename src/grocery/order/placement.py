"""Order placement — command and handler."""

import json
from datetime import date

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from grocery.domain import grocery
from grocery.order.order import Order


@grocery.command(part_of="Order")
class PlaceOrder:
    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of line snapshots
    pricing = Text(required=True)  # JSON: PriceBreakdown.as_dict()
    delivery = Text(required=True)  # JSON: address, phone, date, time_window, notes
    payment_method = String(required=True, max_length=50)
    actor = String(required=True, max_length=100)


@grocery.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        pricing = json.loads(command.pricing) if isinstance(command.pricing, str) else command.pricing
        delivery = json.loads(command.delivery) if isinstance(command.delivery, str) else command.delivery
        if delivery.get("date"):
            delivery["date"] = date.fromisoformat(delivery["date"])

        order = Order.create(
            order_id=command.order_id,
            order_number=command.order_number,
            customer_id=command.customer_id,
            items_data=items_data,
            pricing=pricing,
            delivery=delivery,
            payment_method=command.payment_method,
            actor=command.actor,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
