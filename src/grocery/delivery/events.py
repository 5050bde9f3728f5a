"""Delivery domain events."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from grocery.domain import grocery


@grocery.event(part_of="Delivery")
class CourierAssigned:
    """A courier was given an order to deliver."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    courier_id = Identifier(required=True)
    courier_name = String(required=True)
    assigned_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryPickedUp:
    """The courier collected the bags from the shop."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    picked_up_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryInTransit:
    """The first location report after pickup arrived."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    started_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryCompleted:
    """The customer received the order."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    proof_of_delivery = String()
    delivered_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryFailed:
    """The courier could not complete the delivery."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryEtaUpdated:
    __version__ = 1

    delivery_id = Identifier(required=True)
    estimated_arrival = DateTime()
    distance_remaining_km = Float()
    updated_at = DateTime(required=True)


@grocery.event(part_of="Delivery")
class DeliveryRated:
    """The customer rated a completed delivery."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    order_id = Identifier(required=True)
    rating = Integer(required=True)
    rated_at = DateTime(required=True)


@grocery.event(part_of="LocationUpdate")
class LocationRecorded:
    """A courier's GPS position was reported."""

    __version__ = 1

    delivery_id = Identifier(required=True)
    latitude = Float(required=True)
    longitude = Float(required=True)
    recorded_at = DateTime(required=True)
